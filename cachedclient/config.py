"""Process-wide settings powered by Pydantic BaseSettings."""

from pathlib import Path
import tempfile
from typing import Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .throttle import DEFAULT_GUARD_INTERVAL

_DISABLED = {'false', '0', 'no', 'off'}


class Settings(BaseSettings):
    """Defaults every client falls back to when nothing more specific is set."""

    model_config = SettingsConfigDict(env_prefix='CACHEDCLIENT_', case_sensitive=False)

    sleep_time: Optional[float] = Field(default=None, ge=0)
    ssl_cert: Union[bool, str, None] = None
    throttle_guard: float = Field(default=DEFAULT_GUARD_INTERVAL, gt=0)
    cache_dir: Path = Path(tempfile.gettempdir()) / 'cachedclient'
    cache_levels: int = Field(default=2, ge=0, le=20)

    @field_validator('ssl_cert', mode='before')
    @classmethod
    def parse_ssl_cert(cls, v):
        """`false` disables verification, any other non-empty string is a CA path."""
        if isinstance(v, str):
            if v.strip().lower() in _DISABLED:
                return False
            return v.strip() or None
        if v is True:
            return None
        return v


def get_settings() -> Settings:
    """Get a settings instance."""
    return Settings()
