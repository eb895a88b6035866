"""
Configuration Management Module

This module provides a centralized way to load and access configuration settings
from the config.yaml file, plus the secret values that are only ever read from
the environment.

The YAML configuration uses the Singleton pattern to ensure only one
configuration instance exists throughout the application. Secrets are resolved
once into an immutable SecuritySettings value.

Usage:
    from core.config import get_config, get_security_settings
    config = get_config()
    image_config = config["image"]

    settings = get_security_settings()
    settings.jwt_secret
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PWD_MANAGER_CONFIG"
INSECURE_DEFAULTS_ENV_VAR = "PWD_MANAGER_ALLOW_INSECURE_DEFAULTS"

# Fallback values used by the legacy Node service when the environment was not
# configured. They are publicly known and therefore only honoured when insecure
# defaults are explicitly allowed.
INSECURE_DEFAULT_SALT = "default"
INSECURE_DEFAULT_APP_SECRET = "default"
INSECURE_DEFAULT_JWT_SECRET = "your-secret-key"

_TRUTHY = {"1", "true", "yes", "on"}

# Store the singleton instances (module-level variables)
_config_instance: Optional[Dict[str, Any]] = None
_security_instance: Optional["SecuritySettings"] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        config_path = current_dir / "config.yaml"
        if config_path.exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def resolve_path(path: str) -> Path:
    """Resolve a config-relative path against the project root."""
    candidate = Path(path)
    if candidate.is_absolute():
        return candidate
    return get_project_root() / candidate


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file. If not provided, uses
                     $PWD_MANAGER_CONFIG or the config.yaml in project root.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)

    if config_path is None:
        config_path = get_project_root() / "config.yaml"
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return config


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.

    Returns:
        Dict containing all configuration values.
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "face_embedding", "image", "security")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


def get_face_embedding_config() -> Dict[str, Any]:
    """Get face embedding configuration."""
    return get_section("face_embedding")


def get_image_config() -> Dict[str, Any]:
    """Get image normalization configuration."""
    return get_section("image")


def get_storage_config() -> Dict[str, Any]:
    """Get storage configuration."""
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    """Get API configuration."""
    return get_section("api")


@dataclass(frozen=True)
class SecuritySettings:
    """
    Process-wide secret values. Read-only for the lifetime of the process.

    Attributes:
        jwt_secret: HMAC key used to sign session tokens.
        app_secret_key: Application secret mixed into the selfie encryption keys.
        encryption_salt: PBKDF2 salt shared with the client.
        jwt_algorithm: JWT signing algorithm (HMAC family).
        token_ttl_hours: Lifetime of issued session tokens.
        insecure_defaults_used: Names of secrets that fell back to a known default.
    """

    jwt_secret: str
    app_secret_key: str
    encryption_salt: str
    jwt_algorithm: str = "HS256"
    token_ttl_hours: float = 168.0
    insecure_defaults_used: tuple = ()

    def __repr__(self) -> str:
        return (
            f"SecuritySettings(jwt_algorithm={self.jwt_algorithm!r}, "
            f"token_ttl_hours={self.token_ttl_hours}, "
            f"insecure_defaults_used={self.insecure_defaults_used})"
        )


def _insecure_defaults_allowed(section: Mapping[str, Any], env: Mapping[str, str]) -> bool:
    if env.get(INSECURE_DEFAULTS_ENV_VAR, "").strip().lower() in _TRUTHY:
        return True
    return bool(section.get("allow_insecure_defaults", False))


def load_security_settings(
    env: Optional[Mapping[str, str]] = None,
    section: Optional[Mapping[str, Any]] = None,
) -> SecuritySettings:
    """
    Resolve secrets from the environment.

    Args:
        env: Environment mapping (defaults to os.environ).
        section: The "security" config section (defaults to config.yaml).

    Returns:
        SecuritySettings with every secret populated.

    Raises:
        ConfigurationError: If a secret is missing and insecure defaults
                            are not allowed.
    """
    if env is None:
        env = os.environ
    if section is None:
        section = get_config().get("security", {}) or {}

    allow_insecure = _insecure_defaults_allowed(section, env)

    required = {
        "JWT_SECRET": INSECURE_DEFAULT_JWT_SECRET,
        "APP_SECRET_KEY": INSECURE_DEFAULT_APP_SECRET,
        "ENCRYPTION_SALT": INSECURE_DEFAULT_SALT,
    }

    values: Dict[str, str] = {}
    missing = []
    defaulted = []
    for name, fallback in required.items():
        value = env.get(name)
        if value:
            values[name] = value
        elif allow_insecure:
            logger.warning(
                f"{name} environment variable is missing. "
                f"Using insecure default value (insecure defaults are enabled)."
            )
            values[name] = fallback
            defaulted.append(name)
        else:
            missing.append(name)

    if missing:
        raise ConfigurationError(
            f"Missing required secret(s): {', '.join(missing)}. "
            f"Set them in the environment, or set {INSECURE_DEFAULTS_ENV_VAR}=1 "
            f"for local development."
        )

    return SecuritySettings(
        jwt_secret=values["JWT_SECRET"],
        app_secret_key=values["APP_SECRET_KEY"],
        encryption_salt=values["ENCRYPTION_SALT"],
        jwt_algorithm=str(section.get("jwt_algorithm", "HS256")),
        token_ttl_hours=float(section.get("token_ttl_hours", 168)),
        insecure_defaults_used=tuple(defaulted),
    )


def get_security_settings(reload: bool = False) -> SecuritySettings:
    """Get the SecuritySettings singleton, resolving it on first use."""
    global _security_instance

    if _security_instance is None or reload:
        _security_instance = load_security_settings()

    return _security_instance


def get_server_config() -> Dict[str, Any]:
    """
    Get server configuration for the API.

    Returns:
        Dict with host and port for the API server.
    """
    api_config = get_api_config()
    base_url = api_config.get("base_url", "http://localhost:8000")

    host = "0.0.0.0"
    port = 8000

    try:
        url_part = base_url.split("//")[-1]
        if ":" in url_part:
            host_part, port_str = url_part.rsplit(":", 1)
            port = int(port_str.rstrip("/"))
            if host_part != "localhost":
                host = host_part
    except (ValueError, IndexError):
        pass

    return {"host": host, "port": port}
