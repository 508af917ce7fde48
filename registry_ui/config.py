"""
Application configuration.

Loaded from a YAML file into pydantic models. The registry password can come
from the file itself, from a separate password file, or from the Docker client
keychain (config.json "auths" entry of the registry host).
"""

import base64
import json
import os
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from croniter import croniter
from pydantic import BaseModel, Field, ValidationError, field_validator

from registry_ui.purge import PurgePolicy
from registry_ui.registry.models import RegistryConfig

DEFAULT_CONFIG_FILE = os.getenv("REGISTRY_UI_CONFIG", "config.yml")


class ConfigError(Exception):
    """Configuration is missing or invalid."""

    pass


class RegistrySettings(BaseModel):
    """Registry connection section."""

    url: str = "http://localhost:5000"
    username: str = ""
    password: str = ""
    password_file: str = ""
    auth_with_keychain: bool = False
    verify_tls: bool = True
    timeout: int = Field(30, gt=0)
    catalog_page_size: int = Field(100, gt=0)


class PerformanceSettings(BaseModel):
    """Background refresh intervals, in minutes."""

    catalog_refresh_interval: int = Field(10, ge=0)
    tags_count_refresh_interval: int = Field(60, ge=0)


class AccessControlSettings(BaseModel):
    anyone_can_delete: bool = False
    admins: List[str] = Field(default_factory=list)

    def can_delete(self, user: Optional[str]) -> bool:
        if self.anyone_can_delete:
            return True
        return bool(user) and user in self.admins


class PurgeSettings(PurgePolicy):
    """Purge policy plus its cron schedule."""

    schedule: str = Field("", description="Cron expression, empty disables")

    @field_validator("schedule")
    @classmethod
    def schedule_is_cron(cls, v):
        if v and not croniter.is_valid(v):
            raise ValueError(f"invalid cron expression {v!r}")
        return v

    def policy(self) -> PurgePolicy:
        return PurgePolicy(
            keep_days=self.keep_days,
            keep_count=self.keep_count,
            keep_regexp=self.keep_regexp,
            keep_from_file=self.keep_from_file,
        )


class AppConfig(BaseModel):
    listen_addr: str = "0.0.0.0:8000"
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    access_control: AccessControlSettings = Field(default_factory=AccessControlSettings)
    purge_tags: PurgeSettings = Field(default_factory=PurgeSettings)
    log_level: str = "INFO"

    @property
    def listen_host_port(self) -> Tuple[str, int]:
        host, _, port = self.listen_addr.rpartition(":")
        return host or "0.0.0.0", int(port)

    def registry_config(self) -> RegistryConfig:
        """Client settings with credentials resolved."""
        settings = self.registry
        username, password = resolve_credentials(settings)
        return RegistryConfig(
            url=settings.url,
            username=username,
            password=password,
            verify_tls=settings.verify_tls,
            timeout=settings.timeout,
            catalog_page_size=settings.catalog_page_size,
        )


def _registry_host(url: str) -> str:
    return url.split("://", 1)[-1].split("/", 1)[0]


def read_keychain(host: str, config_path: Optional[Path] = None) -> Tuple[str, str]:
    """
    Read credentials for host from the Docker client config.

    Raises:
        ConfigError: If there is no usable entry for the host
    """
    if config_path is None:
        docker_dir = os.getenv("DOCKER_CONFIG") or str(Path.home() / ".docker")
        config_path = Path(docker_dir) / "config.json"

    try:
        auths = json.loads(config_path.read_text()).get("auths", {})
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read Docker config {config_path}: {e}")

    for key in (host, f"https://{host}", f"http://{host}"):
        entry = auths.get(key) or auths.get(key + "/")
        if not entry:
            continue
        if entry.get("username"):
            return entry["username"], entry.get("password", "")
        if entry.get("auth"):
            decoded = base64.b64decode(entry["auth"]).decode("utf-8")
            username, _, password = decoded.partition(":")
            return username, password

    raise ConfigError(f"No credentials for {host} in {config_path}")


def resolve_credentials(settings: RegistrySettings) -> Tuple[str, str]:
    if settings.auth_with_keychain:
        return read_keychain(_registry_host(settings.url))

    password = settings.password
    if not password and settings.password_file:
        path = Path(settings.password_file)
        if not path.exists():
            raise ConfigError(f"Password file {path} does not exist")
        password = path.read_text().rstrip("\n")
    return settings.username, password


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load the YAML configuration file.

    Raises:
        ConfigError: If the file is missing or invalid
    """
    config_file = Path(path or DEFAULT_CONFIG_FILE)
    if not config_file.exists():
        raise ConfigError(f"Config file {config_file} not found")

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {config_file}: {e}")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_file}: {e}")
