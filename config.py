import os

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL', 'sqlite:///' + os.path.join(basedir, 'phishsim.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get('SECRET_KEY', 'change-me')

    # --- LOGGING ---
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'console')  # or "json"

    # --- ANALYTICS ---
    RISK_WINDOW_DAYS = 30
    ANALYSIS_EVENT_LIMIT = 50
    SCORE_HISTORY_MAX = 50


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'WARNING'


CONFIGS = {
    'production': Config,
    'development': DevelopmentConfig,
    'testing': TestingConfig,
}


def get_config(name=None):
    """Pick the config class from PHISHSIM_ENV (defaults to development)."""
    name = name or os.environ.get('PHISHSIM_ENV', 'development')
    return CONFIGS.get(name, DevelopmentConfig)
