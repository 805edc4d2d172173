"""Application configuration loaded from the environment."""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str = 'False') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class Settings:
    """Runtime settings. Every field can be overridden with an env var of the same name."""
    jwt_secret: str = 'dev-secret-key-change-me'
    access_token_expire_minutes: int = 60 * 24
    admin_username: str = 'administrator'
    admin_password: str = 'administratormatkhau'
    admin_name: str = 'Administrator'
    allow_origins: List[str] = field(default_factory=lambda: ['*'])
    max_upload_size_mb: int = 10
    tts_api_url: str = 'https://api.fpt.ai/hmi/tts/v5'
    tts_api_key: str = ''
    tts_timeout_seconds: float = 15.0
    audit_retention_days: int = 90
    debug: bool = False
    log_level: str = 'INFO'

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            jwt_secret=os.getenv('JWT_SECRET', cls.jwt_secret),
            access_token_expire_minutes=int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', str(cls.access_token_expire_minutes))),
            admin_username=os.getenv('ADMIN_USERNAME', cls.admin_username),
            admin_password=os.getenv('ADMIN_PASSWORD', cls.admin_password),
            admin_name=os.getenv('ADMIN_NAME', cls.admin_name),
            allow_origins=[o.strip() for o in os.getenv('ALLOW_ORIGINS', '*').split(',') if o.strip()],
            max_upload_size_mb=int(os.getenv('MAX_UPLOAD_SIZE_MB', str(cls.max_upload_size_mb))),
            tts_api_url=os.getenv('TTS_API_URL', cls.tts_api_url),
            tts_api_key=os.getenv('TTS_API_KEY', cls.tts_api_key),
            tts_timeout_seconds=float(os.getenv('TTS_TIMEOUT_SECONDS', str(cls.tts_timeout_seconds))),
            audit_retention_days=int(os.getenv('AUDIT_RETENTION_DAYS', str(cls.audit_retention_days))),
            debug=_env_bool('DEBUG'),
            log_level=os.getenv('LOG_LEVEL', cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
