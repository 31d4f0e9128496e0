from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from omegaconf.errors import OmegaConfBaseException
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import Settings
from .utils import parse_deadline

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [_HERE.parent / "config/config.yaml"] + [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

MAIL_TRANSPORTS = ("smtp", "ses")
EDIT_VIEWS = ("json", "html")

# Environment variable behind each required setting, for error messages
REQUIRED_ENV = {
    "database_url": "DATABASE_URL",
    "mail.user": "EMAIL_USER",
    "mail.admin_email": "ADMIN_EMAIL",
}


def _config_path() -> Path:
    explicit = os.environ.get("SUBMISSION_CONFIG")
    if explicit:
        return Path(explicit)
    path = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
    if path is None:
        raise ConfigurationError("Default config.yaml could not be located next to the package.")
    return path


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    path = _config_path()
    if not path.exists():
        raise ConfigurationError(f"Config file not found at {path}")
    return OmegaConf.load(path)


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    OmegaConf.set_struct(base, True)
    return DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))


def _missing_required(config: Dict[str, Any]) -> List[str]:
    missing = []
    for dotted, env_name in REQUIRED_ENV.items():
        value: Any = config
        for part in dotted.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value in (None, ""):
            missing.append(env_name)
    mail = config.get("mail") or {}
    if mail.get("transport", "smtp") == "smtp" and not mail.get("password"):
        missing.append("EMAIL_PASS")
    return missing


def load_settings(overrides: Optional[Dict[str, Any]] = None, *, use_dotenv: bool = True) -> Settings:
    """
    Build validated settings from config.yaml, the environment and overrides.

    A .env file in the working directory is loaded first without replacing
    variables that are already set. Missing store or mail credentials fail
    here, at process start, instead of on the first request.

    Raises:
        ConfigurationError: If a required value is missing or malformed
    """
    if use_dotenv:
        load_dotenv(override=False)

    try:
        container = OmegaConf.to_container(make_runtime_config(overrides), resolve=True)
    except OmegaConfBaseException as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    missing = _missing_required(container)  # type: ignore[arg-type]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    try:
        settings = Settings.model_validate(container)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    if settings.mail.transport not in MAIL_TRANSPORTS:
        raise ConfigurationError(f"MAIL_TRANSPORT must be one of {', '.join(MAIL_TRANSPORTS)}")
    if settings.server.edit_view not in EDIT_VIEWS:
        raise ConfigurationError(f"EDIT_VIEW must be one of {', '.join(EDIT_VIEWS)}")
    try:
        parse_deadline(settings.edit_deadline)
    except ValueError as exc:
        raise ConfigurationError(f"EDIT_DEADLINE is not an ISO date: {settings.edit_deadline}") from exc
    if not settings.database_url.startswith("sqlite:///"):
        raise ConfigurationError("DATABASE_URL must use the sqlite:/// scheme")

    return settings
