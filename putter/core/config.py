import hashlib
import ipaddress
import logging
import os
from datetime import datetime, timezone

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "wiki-putter"
    APP_VERSION: str = "1.0.0"
    HOST: str = Field(default="127.0.0.1", validation_alias=AliasChoices("HOST", "BIND"))
    SERVICE_PORT: int = Field(default=8080, validation_alias=AliasChoices("SERVICE_PORT", "PORT"))

    WIKI_PATH: str = Field(default="index.html", validation_alias=AliasChoices("WIKI_PATH", "WIKI"))

    ARCHIVE_ENABLED: bool = True
    ARCHIVE_DIR: str = "old"
    ARCHIVE_FORMAT: str = "%Y-%m-%d-%H-%M-%S.%f.html"
    SERVE_ARCHIVE: bool = True
    ARCHIVE_PATH: str = "/old/"

    COMPRESS_ENABLED: bool = True

    HASH_ALGORITHM: str = "md5"
    CHUNK_SIZE: int = 64 * 1024
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("HOST")
    @classmethod
    def validate_host(cls, value: str) -> str:
        try:
            return str(ipaddress.ip_address(value.strip()))
        except ValueError as exc:
            raise ValueError("HOST must be a valid IP address") from exc

    @field_validator("ARCHIVE_PATH")
    @classmethod
    def normalize_archive_path(cls, value: str) -> str:
        path = value.strip()
        if not path.startswith("/"):
            path = "/" + path
        if not path.endswith("/"):
            path = path + "/"
        if path == "/":
            raise ValueError("ARCHIVE_PATH must not be the document root")
        return path

    @field_validator("ARCHIVE_FORMAT")
    @classmethod
    def validate_archive_format(cls, value: str) -> str:
        rendered = datetime(2000, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc).strftime(value)
        if not rendered or rendered in {".", ".."} or "/" in rendered or os.sep in rendered:
            raise ValueError("ARCHIVE_FORMAT must render to a plain file name")
        following = datetime(2000, 1, 2, 3, 4, 5, 678001, tzinfo=timezone.utc).strftime(value)
        if following == rendered:
            logging.getLogger(__name__).warning(
                "ARCHIVE_FORMAT %r has no sub-second field; a second save within the same period fails because archive entries are never overwritten",
                value,
            )
        return value

    @field_validator("HASH_ALGORITHM")
    @classmethod
    def validate_hash_algorithm(cls, value: str) -> str:
        normalized = value.lower().strip()
        if normalized not in hashlib.algorithms_available:
            raise ValueError(f"HASH_ALGORITHM {value!r} is not supported by hashlib")
        return normalized

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper().strip()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return normalized

    @model_validator(mode="after")
    def validate_numeric_ranges(self) -> "Settings":
        if self.SERVICE_PORT < 1 or self.SERVICE_PORT > 65535:
            raise ValueError("SERVICE_PORT must be between 1 and 65535")
        if self.CHUNK_SIZE < 1:
            raise ValueError("CHUNK_SIZE must be >= 1")
        return self

    @model_validator(mode="after")
    def validate_deprecated_aliases(self) -> "Settings":
        logger = logging.getLogger(__name__)

        if os.getenv("PORT"):
            logger.warning("PORT is deprecated; use SERVICE_PORT")
        if os.getenv("BIND"):
            logger.warning("BIND is deprecated; use HOST")
        if os.getenv("WIKI"):
            logger.warning("WIKI is deprecated; use WIKI_PATH")

        if os.getenv("SERVICE_PORT") and os.getenv("PORT"):
            if os.getenv("SERVICE_PORT") != os.getenv("PORT"):
                raise ValueError("SERVICE_PORT and PORT are both set with different values")
        if os.getenv("HOST") and os.getenv("BIND"):
            if os.getenv("HOST") != os.getenv("BIND"):
                raise ValueError("HOST and BIND are both set with different values")

        return self

    @property
    def serves_archive(self) -> bool:
        return self.ARCHIVE_ENABLED and self.SERVE_ARCHIVE


settings = Settings()
