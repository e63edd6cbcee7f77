"""
Configuration for the school library service
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _database_url():
    url = os.environ.get('DATABASE_URL')
    if url:
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        return url

    # Database connection details
    username = os.environ.get('DB_USER', 'root')
    password = os.environ.get('DB_PASSWORD', '')
    host = os.environ.get('DB_HOST', 'localhost:3306')
    database = os.environ.get('DB_NAME', 'Library')
    return f'mysql+pymysql://{username}:{password}@{host}/{database}'


class Config:
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key')

    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ECHO = False
    CREATE_TABLES = os.environ.get('CREATE_TABLES', '1') == '1'

    # Daily sweeps (reservation expiry, overdue marking)
    SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', '1') == '1'
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'UTC')
    SWEEP_HOUR = int(os.environ.get('SWEEP_HOUR', 0))
    SWEEP_MINUTE = int(os.environ.get('SWEEP_MINUTE', 0))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get('SQLALCHEMY_ECHO', '0') == '1'


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    CREATE_TABLES = True
    SCHEDULER_ENABLED = False
    LOG_LEVEL = 'WARNING'


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': Config,
}
