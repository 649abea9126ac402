from gymaccess import db
from gymaccess.clock import utcnow


class AuditLog(db.Model):
    """Who or what changed a record, and why"""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)

    # Operator ID, or 'system:<job>' for time-driven actions
    actor = db.Column(db.String(64), nullable=False)
    details = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        db.Index('idx_audit_entity', 'entity_type', 'entity_id', 'created_at'),
    )

    def __repr__(self):
        return f'<AuditLog {self.action} {self.entity_type}:{self.entity_id}>'

    @classmethod
    def record(cls, action, entity_type, entity_id, actor, details=None, now=None):
        """Add an entry to the current session; the caller commits"""
        entry = cls(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor=actor or 'unknown',
            details=details or {},
            created_at=now or utcnow()
        )
        db.session.add(entry)
        return entry

    @classmethod
    def for_entity(cls, entity_type, entity_id):
        return cls.query.filter_by(
            entity_type=entity_type,
            entity_id=str(entity_id)
        ).order_by(cls.created_at.asc(), cls.id.asc()).all()
