from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigError


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_PROFILE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

DEFAULT_IDP_URL = "https://account.activedirectory.windowsazure.com"


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number (got {raw!r})")


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so most users only need `.env`; YAML is an optional override (and holds profiles).
    """
    return {
        "idp": {
            "url": os.getenv("AZURE_IDP_URL", DEFAULT_IDP_URL),
            "app_id": os.getenv("AZURE_APP_ID", ""),
            "username": os.getenv("AZURE_USERNAME", ""),
            "password": os.getenv("AZURE_PASSWORD", ""),
            "mfa_token": os.getenv("AZURE_MFA_TOKEN", ""),
        },
        "http": {
            "timeout_seconds": _env_float("HTTP_TIMEOUT_SECONDS", 60.0),
            "verify_tls": _env_bool("HTTP_VERIFY_TLS", default=True),
        },
        "mfa": {
            "default_poll_interval_seconds": _env_float("MFA_POLL_INTERVAL_SECONDS", 2.0),
            "timeout_seconds": _env_float("MFA_TIMEOUT_SECONDS", 0.0),
        },
        "debug": {
            "capture_dir": os.getenv("DEBUG_CAPTURE_DIR", ""),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", ""),
        },
    }


class IdpConfig(BaseModel):
    """
    Azure AD tenant entry point + account.

    `app_id` is the enterprise application id shown in the My Apps portal link
    (`.../redirecttofederatedapplication.aspx?...&applicationId=<app_id>`).
    """

    url: str = DEFAULT_IDP_URL
    app_id: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    mfa_token: str = Field(default="", repr=False)

    @model_validator(mode="after")
    def _normalize(self) -> "IdpConfig":
        url = (self.url or "").strip().rstrip("/") or DEFAULT_IDP_URL
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"idp.url must be a full URL like {DEFAULT_IDP_URL!r}")
        self.url = url
        self.app_id = (self.app_id or "").strip()
        self.username = (self.username or "").strip()
        return self


class HttpConfig(BaseModel):
    timeout_seconds: float = Field(default=60.0, gt=0)
    verify_tls: bool = True


class MfaConfig(BaseModel):
    default_poll_interval_seconds: float = Field(default=2.0, gt=0)
    # 0 keeps polling until the server resolves the challenge (push approval can take a while).
    timeout_seconds: float = Field(default=0.0, ge=0)


class DebugConfig(BaseModel):
    capture_dir: str = ""


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = ""


class AppConfig(BaseModel):
    idp: IdpConfig = IdpConfig()
    http: HttpConfig = HttpConfig()
    mfa: MfaConfig = MfaConfig()
    debug: DebugConfig = DebugConfig()
    logging: LoggingConfig = LoggingConfig()
    profile: str = ""


def _read_yaml(p: Path) -> dict:
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {p} must contain a mapping at the top level")
    return _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML


def list_profiles(path: Union[str, Path]) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    profiles = _read_yaml(p).get("profiles") or {}
    if not isinstance(profiles, dict):
        raise ConfigError("'profiles' must be a mapping of name -> settings")
    return sorted(str(k) for k in profiles)


def load_config(path: Union[str, Path], *, profile: Optional[str] = None) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = _read_yaml(p)

    profiles = raw.pop("profiles", None) or {}
    if not isinstance(profiles, dict):
        raise ConfigError("'profiles' must be a mapping of name -> settings")

    merged = _deep_merge(_default_config_from_env(), raw)

    name = (profile or "").strip()
    if name:
        if not _PROFILE_NAME_RE.match(name):
            raise ConfigError(f"Invalid profile name {name!r}")
        if name not in profiles:
            known = ", ".join(sorted(profiles)) or "(none)"
            raise ConfigError(f"Unknown profile {name!r}. Known profiles: {known}")
        overrides = profiles[name] or {}
        if not isinstance(overrides, dict):
            raise ConfigError(f"Profile {name!r} must be a mapping")
        # Profiles hold idp settings directly; nested sections (http/mfa/...) are allowed too.
        idp_keys = set(IdpConfig.model_fields)
        idp_part = {k: v for k, v in overrides.items() if k in idp_keys}
        rest = {k: v for k, v in overrides.items() if k not in idp_keys}
        merged = _deep_merge(merged, {"idp": idp_part, **rest})
        merged["profile"] = name

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
