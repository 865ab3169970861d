import os

from dotenv import load_dotenv

# .env is a development convenience; production reads the real environment
if os.getenv('APP_ENV') != 'production':
    load_dotenv()


class Config:
    APP_ENV = os.getenv('APP_ENV', 'development')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///splitbill.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Receipt extraction workflow
    EXTRACTION_WEBHOOK_URL = os.getenv('EXTRACTION_WEBHOOK_URL', '')
    EXTRACTION_TIMEOUT_SECONDS = float(os.getenv('EXTRACTION_TIMEOUT_SECONDS', '30'))

    # Uploads
    UPLOAD_FOLDER = os.getenv('UPLOAD_FOLDER', 'uploads')
    MAX_IMAGE_SIZE_BYTES = int(os.getenv('MAX_IMAGE_SIZE_BYTES', str(10 * 1024 * 1024)))
    SAVE_UPLOADED_IMAGES = os.getenv('SAVE_UPLOADED_IMAGES', 'true').lower() == 'true'

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()


class TestingConfig(Config):
    APP_ENV = 'testing'
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    EXTRACTION_WEBHOOK_URL = 'http://extraction.test/webhook'
    SAVE_UPLOADED_IMAGES = False
    LOG_LEVEL = 'DEBUG'


def get_config():
    """Pick the config class for the current APP_ENV"""
    if os.getenv('APP_ENV') == 'testing':
        return TestingConfig
    return Config
