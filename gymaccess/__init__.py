import logging
import os

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .config import config

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()


def create_app(config_name=None, clock=None, notifier=None, config_overrides=None):
    """
    Application factory

    `clock` and `notifier` replace the wall clock and the configured
    SMS/email transport (tests pass fixed ones). `config_overrides` is
    applied on top of the named configuration.
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions with app
    db.init_app(app)
    migrate.init_app(app, db)

    from .clock import SystemClock
    app.extensions['clock'] = clock or SystemClock()

    from .services.notifier import build_notifier
    app.extensions['notifier'] = notifier or build_notifier(app.config)

    # Models must be imported before create_all / migrations see the metadata
    from . import models  # noqa: F401

    # Create instance folder for the default SQLite database
    os.makedirs(os.path.join(app.root_path, '..', 'instance'), exist_ok=True)

    # Register blueprints
    from .routes.api import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    # Register error handlers
    register_error_handlers(app)

    # Register CLI commands
    register_cli_commands(app)

    if app.config.get('SCHEDULER_ENABLED'):
        from .scheduler import ReconciliationScheduler
        scheduler = ReconciliationScheduler(app)
        scheduler.start()

    return app


def configure_logging(app):
    """Log format shared by the web process and the scheduler worker"""
    handlers = [logging.StreamHandler()]
    if app.config.get('LOG_FILE'):
        handlers.append(logging.FileHandler(app.config['LOG_FILE']))

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    package_logger = logging.getLogger(__name__)
    package_logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    if not package_logger.handlers:
        for handler in handlers:
            handler.setFormatter(formatter)
            package_logger.addHandler(handler)


def register_error_handlers(app):
    """Register error handlers"""

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'success': False, 'message': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'success': False, 'message': 'Internal server error'}), 500


def register_cli_commands(app):
    """Register CLI commands"""
    import click

    @app.cli.command('init-db')
    def init_db():
        """Create all tables"""
        db.create_all()
        click.echo('Database initialized successfully!')

    @app.cli.command('add-device')
    @click.option('--device-id', prompt='Device ID', help='Identifier the door controller sends')
    @click.option('--name', prompt='Name', help='Display name')
    @click.option('--location', prompt='Location', help='Where the door is')
    @click.option('--ip', 'ip_address', prompt='IP address', help='Controller IP address')
    @click.option('--port', default=5005, show_default=True, help='Controller port')
    @click.option('--type', 'device_type', type=click.Choice(['entry', 'exit', 'both']), default='both')
    def add_device(device_id, name, location, ip_address, port, device_type):
        """Register a door controller"""
        from .models.device import AttendanceDevice

        if AttendanceDevice.find_by_device_id(device_id):
            click.echo(f'Device {device_id.upper()} already exists!')
            return

        device = AttendanceDevice(
            device_id=device_id.upper(),
            name=name,
            location=location,
            ip_address=ip_address,
            port=port,
            type=device_type,
            created_by='cli'
        )
        db.session.add(device)
        db.session.commit()
        click.echo(f'Created device: {device.device_id}')

    @app.cli.command('run-job')
    @click.argument('name')
    def run_job(name):
        """Run one reconciliation job now"""
        from .scheduler import ReconciliationScheduler
        from .services.jobs import JOBS

        if name not in JOBS:
            raise click.BadParameter(f"choose from {', '.join(sorted(JOBS))}", param_hint='NAME')

        scheduler = ReconciliationScheduler(app)
        result = scheduler.run_job(name)
        if result is None:
            click.echo(f'{name}: failed, see log')
        else:
            click.echo(f'{name}: {result}')

    @app.cli.command('start-scheduler')
    def start_scheduler():
        """Run the reconciliation scheduler in the foreground"""
        import time
        from .scheduler import ReconciliationScheduler

        scheduler = ReconciliationScheduler(app)
        scheduler.start()
        click.echo('Scheduler started, press Ctrl+C to stop')
        try:
            while True:
                time.sleep(60)
        except (KeyboardInterrupt, SystemExit):
            scheduler.shutdown()
