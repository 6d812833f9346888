"""
Configuration (environment-driven, with defaults).

Values are read once at process start. A ``.env`` file in the working
directory is loaded first when present.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


class ConfigError(ValueError):
    pass


def _env_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    magic_key: str
    upstream_api: str = "https://cbiz.yanhekt.cn"
    video_host: str = "cvideo.yanhekt.cn"
    chunk_size: int = 131072  # 128 KB per chunk
    connect_timeout: float = 5.0  # seconds
    read_timeout: float = 30.0  # seconds, per socket read
    trust_proxy_headers: bool = False
    intranet_mappings: str = ""  # path to the mappings JSON; empty disables
    intranet_timeout: float = 8.0  # seconds, connect and per read
    log_level: str = "INFO"
    log_format: str = "console"

    def __post_init__(self):
        if not self.magic_key:
            raise ConfigError("MAGIC_KEY must be set")
        if not self.video_host:
            raise ConfigError("VIDEO_HOST must not be empty")
        if self.chunk_size <= 0:
            raise ConfigError("CHUNK_SIZE must be positive")
        if self.intranet_timeout <= 0:
            raise ConfigError("INTRANET_TIMEOUT must be positive")
        if self.log_format not in ("console", "json"):
            raise ConfigError("LOG_FORMAT must be 'console' or 'json'")
        # Normalised so "https://api.example/" and "https://api.example" agree
        object.__setattr__(self, "upstream_api", self.upstream_api.rstrip("/"))
        object.__setattr__(self, "video_host", self.video_host.strip().lower())

    @property
    def timeout(self):
        """Connect/read timeout pair in the form ``requests`` expects."""
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ

        defaults = cls.__dataclass_fields__
        try:
            return cls(
                magic_key=environ.get("MAGIC_KEY", ""),
                upstream_api=environ.get("UPSTREAM_API") or defaults["upstream_api"].default,
                video_host=environ.get("VIDEO_HOST") or defaults["video_host"].default,
                chunk_size=int(environ.get("CHUNK_SIZE", defaults["chunk_size"].default)),
                connect_timeout=float(
                    environ.get("CONNECT_TIMEOUT", defaults["connect_timeout"].default)
                ),
                read_timeout=float(
                    environ.get("READ_TIMEOUT", defaults["read_timeout"].default)
                ),
                trust_proxy_headers=_env_bool(environ.get("TRUST_PROXY_HEADERS")),
                intranet_mappings=environ.get("INTRANET_MAPPINGS", "").strip(),
                intranet_timeout=float(
                    environ.get("INTRANET_TIMEOUT", defaults["intranet_timeout"].default)
                ),
                log_level=environ.get("LOG_LEVEL", "INFO").upper(),
                log_format=environ.get("LOG_FORMAT", "console").lower(),
            )
        except ConfigError:
            raise
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc
