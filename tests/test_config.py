"""
Tests for configuration: datastore timeouts and app overrides.
"""
from gymaccess import create_app
from gymaccess.config import engine_options


class TestEngineOptions:
    def test_sqlite_busy_timeout(self):
        assert engine_options('sqlite:///gym.db', 10) == {'connect_args': {'timeout': 10}}

    def test_postgres_bounds_connect_and_locks(self):
        options = engine_options('postgresql://gym@db/gym', 2.5)

        assert options['pool_pre_ping'] is True
        assert options['pool_timeout'] == 2.5
        assert options['connect_args']['connect_timeout'] == 2
        assert options['connect_args']['options'] == \
            '-c statement_timeout=2500 -c lock_timeout=2500'

    def test_other_databases_bound_pool_checkout(self):
        options = engine_options('mysql://gym@db/gym', 5)
        assert options == {'pool_pre_ping': True, 'pool_timeout': 5}

    def test_testing_config_uses_short_timeout(self, app):
        assert app.config['DB_TIMEOUT'] == 1
        assert app.config['SQLALCHEMY_ENGINE_OPTIONS']['connect_args']['timeout'] == 1


class TestConfigOverrides:
    def test_overrides_applied(self):
        app = create_app('testing', config_overrides={'ITEMS_PER_PAGE': 7})
        assert app.config['ITEMS_PER_PAGE'] == 7
        assert app.config['TESTING'] is True
