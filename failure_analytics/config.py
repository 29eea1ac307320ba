import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY', 'a_default_secret_key')
    DEBUG = False
    TESTING = False
    DATABASE_PATH = os.environ.get('DATABASE_PATH')
    DATABASE_URL = os.environ.get('DATABASE_URL')
    DATABASE_TYPE = os.environ.get('DATABASE_TYPE', 'sqlite')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'text')
    PORT = int(os.environ.get('PORT', 5001))
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*')
    INIT_DB = True


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True


class ProductionConfig(Config):
    """Production configuration."""
    # In production, DATABASE_URL should point to a PostgreSQL database
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')


config_by_name = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
