import os
from pathlib import Path

from dotenv import load_dotenv

from crm.constants import BusinessRules

basedir = Path(__file__).parent.parent.absolute()

load_dotenv(basedir / '.env')


def _database_url(default):
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        return default
    # SQLAlchemy wants postgresql:// not postgres://
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    return database_url


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Put database in project root
    database_file = basedir / 'crm.db'
    SQLALCHEMY_DATABASE_URI = _database_url(f'sqlite:///{database_file}')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JSON overlay on the built-in pricing table; empty means defaults only
    PRICING_TABLE_PATH = os.environ.get('PRICING_TABLE_PATH', '')

    # Calendar months for commissions and revenue are cut in this timezone
    BUSINESS_TIMEZONE = os.environ.get('BUSINESS_TIMEZONE', BusinessRules.BUSINESS_TIMEZONE)

    # 'flag' reports estimates under the service minimum, 'block' refuses them
    MINIMUM_JOB_VALUE_POLICY = os.environ.get('MINIMUM_JOB_VALUE_POLICY', 'flag')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'testing-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    PRICING_TABLE_PATH = ''
    MINIMUM_JOB_VALUE_POLICY = 'flag'
    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    DEBUG = False


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig,
}


def get_config_name():
    flask_env = os.environ.get('FLASK_ENV', '').lower()
    if flask_env in config:
        return flask_env
    return 'default'
