"""
Application configuration classes.

Values come from the environment (optionally populated from a .env file).
"""

import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    """Base configuration shared by every environment"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or os.urandom(24).hex()
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL', 'sqlite:///' + os.path.join(BASE_DIR, 'messenger.db')
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Generative model retries (model name comes from GROQ_MODEL)
    TRANSLATION_MAX_RETRIES = 2
    SUMMARY_MAX_ATTEMPTS = 3

    # Audio uploads
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'uploads'))
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
    ALLOWED_AUDIO_EXTENSIONS = {'webm', 'wav', 'mp3', 'ogg', 'm4a'}

    # Guest access
    GUEST_SESSION_HOURS = 24

    # Server-sent events keepalive
    STREAM_KEEPALIVE_SECONDS = 15

    LOG_LEVEL = 'INFO'
    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    LOG_LEVEL = 'INFO'


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'testing-secret'
    LOG_FILE = None
    LOG_LEVEL = 'DEBUG'
    STREAM_KEEPALIVE_SECONDS = 1


config = {
    'default': DevelopmentConfig,
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}
