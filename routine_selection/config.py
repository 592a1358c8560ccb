"""
Settings for the routine selection service, one class per APP_ENV value.

    app.config.from_object(config[os.getenv("APP_ENV", "development")])

Selection behaviour (new-member placement, memory horizon, default
algorithm, page size) is tunable through SELECTION_* environment variables.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_LOCAL_DB = f"sqlite:///{os.path.join(basedir, 'instance', 'routine_selection_dev.db')}"

_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _database_url(default=None):
    """DATABASE_URL with a legacy postgres:// scheme rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return default
    return url.replace("postgres://", "postgresql://", 1)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOL_OPTIONS)

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    SELECTION_NEW_MEMBER_PLACEMENT = os.getenv("SELECTION_NEW_MEMBER_PLACEMENT", "end")
    SELECTION_MEMORY_HORIZON_DAYS = int(os.getenv("SELECTION_MEMORY_HORIZON_DAYS", "90"))
    SELECTION_DEFAULT_ALGORITHM = os.getenv("SELECTION_DEFAULT_ALGORITHM", "manual")
    SELECTION_LIST_DEFAULT_LIMIT = int(os.getenv("SELECTION_LIST_DEFAULT_LIMIT", "50"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_LOCAL_DB)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    # StaticPool rejects pool sizing options
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Requires DATABASE_URL, SECRET_KEY and an explicit CORS_ORIGINS.

    Statements are cut off after 30 seconds on PostgreSQL.
    """

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOL_OPTIONS,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("APP_ENV=production needs DATABASE_URL pointing at PostgreSQL")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("APP_ENV=production needs a fixed SECRET_KEY")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
