"""Unified configuration loaded from .mediadesk.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from mediadesk.integrations.spaces import SpacesConfig
from mediadesk.integrations.supabase import SupabaseConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".mediadesk.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG = Path.home() / ".config" / "mediadesk" / "config.toml"


class StorageSectionConfig(BaseModel):
    """[storage] section."""

    backend: Literal["local", "spaces"] = "local"
    local_path: str = "./media"
    public_base_url: str = ""
    endpoint: str = ""
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""


class RecordsSectionConfig(BaseModel):
    """[records] section."""

    backend: Literal["json", "postgrest"] = "json"
    directory: str = "."


class IdentitySectionConfig(BaseModel):
    """[identity] section."""

    url: str = ""
    service_role_key: str = ""
    jwt_secret: str = ""
    site_url: str = ""
    request_timeout: float = 20.0
    local_operator: str = ""  # email used as an admin session when no provider is configured

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.service_role_key)


class CoordinatorSectionConfig(BaseModel):
    """[coordinator] section."""

    max_attempts: int = Field(default=3, ge=1)
    step_timeout_seconds: float = Field(default=30.0, ge=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    max_workers: int = Field(default=4, ge=1)


class LoggingSectionConfig(BaseModel):
    """[logging] section."""

    level: str = "INFO"


class MediadeskConfig(BaseModel):
    """Top-level configuration model."""

    storage: StorageSectionConfig = Field(default_factory=StorageSectionConfig)
    records: RecordsSectionConfig = Field(default_factory=RecordsSectionConfig)
    identity: IdentitySectionConfig = Field(default_factory=IdentitySectionConfig)
    coordinator: CoordinatorSectionConfig = Field(default_factory=CoordinatorSectionConfig)
    logging: LoggingSectionConfig = Field(default_factory=LoggingSectionConfig)

    def to_spaces_config(self) -> SpacesConfig:
        """Convert to SpacesConfig for the object store."""
        return SpacesConfig(
            endpoint=self.storage.endpoint,
            bucket=self.storage.bucket,
            region=self.storage.region,
            access_key=self.storage.access_key,
            secret_key=self.storage.secret_key,
            public_base_url=self.storage.public_base_url,
        )

    def to_supabase_config(self) -> SupabaseConfig:
        """Convert to SupabaseConfig for the identity provider and PostgREST."""
        return SupabaseConfig(
            url=self.identity.url,
            service_role_key=self.identity.service_role_key,
            jwt_secret=self.identity.jwt_secret,
            site_url=self.identity.site_url,
            request_timeout=self.identity.request_timeout,
        )


def load_config(path: str | Path | None = None) -> MediadeskConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .mediadesk.toml in CWD
    3. ~/.config/mediadesk/config.toml

    Then overlay environment variables.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG.exists():
            data = _load_toml(GLOBAL_CONFIG)
            logger.info("Loaded config from %s", GLOBAL_CONFIG)

    config = MediadeskConfig.model_validate(data) if data else MediadeskConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: MediadeskConfig, **cli_kwargs: object) -> MediadeskConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "storage_backend": ("storage", "backend"),
        "media_dir": ("storage", "local_path"),
        "records_backend": ("records", "backend"),
        "records_dir": ("records", "directory"),
        "max_attempts": ("coordinator", "max_attempts"),
        "step_timeout": ("coordinator", "step_timeout_seconds"),
        "log_level": ("logging", "level"),
    }

    for key, value in cli_kwargs.items():
        if value is None:
            continue
        if key in mapping:
            section, field = mapping[key]
            data[section][field] = value

    return MediadeskConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: MediadeskConfig) -> MediadeskConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "DIGITAL_OCEAN_SPACES_ENDPOINT": ("storage", "endpoint"),
        "DIGITAL_OCEAN_SPACES_BUCKET": ("storage", "bucket"),
        "DIGITAL_OCEAN_SPACES_REGION": ("storage", "region"),
        "DIGITAL_OCEAN_SPACES_ACCESS_KEY": ("storage", "access_key"),
        "DIGITAL_OCEAN_SPACES_SECRET_KEY": ("storage", "secret_key"),
        "DIGITAL_OCEAN_SPACES_PUBLIC_URL": ("storage", "public_base_url"),
        "MEDIADESK_STORAGE_BACKEND": ("storage", "backend"),
        "MEDIADESK_MEDIA_DIR": ("storage", "local_path"),
        "MEDIADESK_RECORDS_BACKEND": ("records", "backend"),
        "MEDIADESK_RECORDS_DIR": ("records", "directory"),
        "SUPABASE_URL": ("identity", "url"),
        "SUPABASE_SERVICE_ROLE_KEY": ("identity", "service_role_key"),
        "SUPABASE_JWT_SECRET": ("identity", "jwt_secret"),
        "MEDIADESK_SITE_URL": ("identity", "site_url"),
        "MEDIADESK_LOCAL_OPERATOR": ("identity", "local_operator"),
        "MEDIADESK_LOG_LEVEL": ("logging", "level"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    # Numeric coordinator settings
    for env_var, field, cast in [
        ("MEDIADESK_MAX_ATTEMPTS", "max_attempts", int),
        ("MEDIADESK_STEP_TIMEOUT", "step_timeout_seconds", float),
        ("MEDIADESK_RETRY_BACKOFF", "retry_backoff_seconds", float),
    ]:
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        try:
            data["coordinator"][field] = cast(raw)
        except ValueError:
            logger.warning("Ignoring non-numeric %s=%r", env_var, raw)

    return MediadeskConfig.model_validate(data)
