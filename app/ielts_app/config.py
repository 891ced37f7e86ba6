"""Flask application configuration."""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except ValueError:
        return default


class Config:
    """Base configuration."""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        'DATABASE_URL',
        'sqlite:///ielts_practice.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 300,
    }

    # Session
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Feedback provider (OpenAI-compatible chat completions)
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '')
    FEEDBACK_MODEL = os.environ.get('FEEDBACK_MODEL', 'gpt-4')
    FEEDBACK_API_URL = os.environ.get(
        'FEEDBACK_API_URL',
        'https://api.openai.com/v1/chat/completions'
    )
    FEEDBACK_TIMEOUT_SECONDS = _env_int('FEEDBACK_TIMEOUT_SECONDS', 30)
    FEEDBACK_TEMPERATURE = _env_float('FEEDBACK_TEMPERATURE', 0.2)
    WRITING_MAX_TOKENS = _env_int('WRITING_MAX_TOKENS', 1500)
    SPEAKING_MAX_TOKENS = _env_int('SPEAKING_MAX_TOKENS', 1200)
    FEEDBACK_MAX_ATTEMPTS = _env_int('FEEDBACK_MAX_ATTEMPTS', 1)

    # CORS (for development)
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True


class TestingConfig(Config):
    """Test configuration: in-memory database, no real provider key."""
    DEBUG = False
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    OPENAI_API_KEY = 'test-key'
    FEEDBACK_MAX_ATTEMPTS = 1


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class ProviderSettings:
    """Feedback provider settings, resolved once and passed to each service."""

    api_key: str
    model: str = 'gpt-4'
    api_url: str = 'https://api.openai.com/v1/chat/completions'
    timeout: int = 30
    temperature: float = 0.2
    writing_max_tokens: int = 1500
    speaking_max_tokens: int = 1200
    max_attempts: int = 1

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_config(cls, values: Mapping[str, Any]) -> 'ProviderSettings':
        return cls(
            api_key=values.get('OPENAI_API_KEY') or '',
            model=values.get('FEEDBACK_MODEL', 'gpt-4'),
            api_url=values.get('FEEDBACK_API_URL', cls.api_url),
            timeout=int(values.get('FEEDBACK_TIMEOUT_SECONDS', 30)),
            temperature=float(values.get('FEEDBACK_TEMPERATURE', 0.2)),
            writing_max_tokens=int(values.get('WRITING_MAX_TOKENS', 1500)),
            speaking_max_tokens=int(values.get('SPEAKING_MAX_TOKENS', 1200)),
            max_attempts=max(1, int(values.get('FEEDBACK_MAX_ATTEMPTS', 1))),
        )
