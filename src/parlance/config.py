"""Configuration: one frozen Config, resolved once per process.

``load_config`` is the only place that reads the environment. Values are
layered (settings file, then environment, then explicit overrides), validated
by a pydantic schema, and frozen into plain dataclasses that every other
component receives by reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import tomllib
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from parlance.errors import ConfigurationError
from parlance.messages import GenerationConfig
from parlance.providers.classifier import ProviderId

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_FALLBACK_MODEL = "gemini-2.5-flash"
DEFAULT_MAX_SESSION_TURNS = 50

_ENV_FIELDS: dict[str, str] = {
    "PARLANCE_MODEL": "model",
    "PARLANCE_FALLBACK_MODEL": "fallback_model",
    "PARLANCE_MAX_SESSION_TURNS": "max_session_turns",
    "PARLANCE_TIMEOUT_S": "timeout_s",
}


def api_key_env_var(provider: ProviderId) -> str:
    """Environment variable holding the API key for *provider*."""
    return f"{provider.value.upper()}_API_KEY"


def base_url_env_var(provider: ProviderId) -> str:
    """Environment variable holding the base URL override for *provider*."""
    return f"{provider.value.upper()}_BASE_URL"


# --- Schema (pydantic wall) ---


class ProviderSettings(BaseModel):
    """Validated per-provider connection settings."""

    api_key: SecretStr | None = None
    base_url: str | None = None
    timeout_s: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)

    model_config = {"extra": "forbid"}

    @field_validator("api_key", mode="before")
    @classmethod
    def normalize_api_key(cls, v: Any) -> Any:
        """Trim whitespace and map empty keys to None."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            s = v.strip()
            return SecretStr(s) if s else None
        return v

    @field_validator("base_url", mode="before")
    @classmethod
    def normalize_base_url(cls, v: Any) -> Any:
        """Strip trailing slashes; empty means provider default."""
        if isinstance(v, str):
            s = v.strip().rstrip("/")
            return s or None
        return v


class Settings(BaseModel):
    """Schema for every configurable field, with defaults and constraints."""

    model: str = Field(default=DEFAULT_MODEL, min_length=1)
    fallback_model: str | None = Field(default=DEFAULT_FALLBACK_MODEL)
    max_session_turns: int = Field(default=DEFAULT_MAX_SESSION_TURNS, ge=1)
    timeout_s: float | None = Field(default=None, gt=0)
    stream: bool = True
    use_mock: bool = False
    system_instruction: str | None = None

    temperature: float | None = Field(default=None, ge=0)
    max_output_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0, le=1)
    top_k: int | None = Field(default=None, ge=1)
    stop_sequences: list[str] = Field(default_factory=list)

    providers: dict[ProviderId, ProviderSettings] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}

    @field_validator("model", "fallback_model", mode="before")
    @classmethod
    def normalize_model(cls, v: Any) -> Any:
        """Trim surrounding whitespace on model identifiers."""
        if isinstance(v, str):
            return v.strip() or None
        return v


# --- Immutable runtime payload ---


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for exactly one provider identity."""

    api_key: str | None = None
    base_url: str | None = None
    timeout_s: float = 60.0
    max_retries: int = 2

    def __str__(self) -> str:
        """Return a redacted representation safe for logs."""
        return (
            f"ProviderConfig(api_key={'[REDACTED]' if self.api_key else None}, "
            f"base_url={self.base_url!r}, timeout_s={self.timeout_s}, "
            f"max_retries={self.max_retries})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class Config:
    """Immutable configuration for a Parlance process.

    Example:
        config = load_config(model="claude-3-5-sonnet-latest")
        provider_cfg = config.provider_config(ProviderId.ANTHROPIC)
    """

    model: str = DEFAULT_MODEL
    fallback_model: str | None = DEFAULT_FALLBACK_MODEL
    providers: Mapping[ProviderId, ProviderConfig] = field(
        default_factory=lambda: MappingProxyType({})
    )
    max_session_turns: int = DEFAULT_MAX_SESSION_TURNS
    #: Wall-clock budget for a non-interactive session; ``None`` disables it.
    timeout_s: float | None = None
    stream: bool = True
    use_mock: bool = False
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    system_instruction: str | None = None

    def __post_init__(self) -> None:
        """Validate invariants that do not depend on the environment."""
        if not self.model:
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass --model or set PARLANCE_MODEL.",
            )
        if self.max_session_turns < 1:
            raise ConfigurationError(
                f"max_session_turns must be ≥ 1, got {self.max_session_turns}",
                hint="This is the hard ceiling on model calls per session.",
            )
        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="Omit the timeout to run without a wall-clock budget.",
            )
        if not isinstance(self.providers, MappingProxyType):
            object.__setattr__(
                self, "providers", MappingProxyType(dict(self.providers))
            )

    def provider_config(self, provider: ProviderId) -> ProviderConfig:
        """Return the settings for *provider* (defaults when unconfigured)."""
        return self.providers.get(provider) or ProviderConfig()

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        configured = sorted(p.value for p, c in self.providers.items() if c.api_key)
        return (
            f"Config(model={self.model!r}, fallback_model={self.fallback_model!r}, "
            f"max_session_turns={self.max_session_turns}, timeout_s={self.timeout_s}, "
            f"stream={self.stream}, use_mock={self.use_mock}, "
            f"providers_with_keys={configured})"
        )

    __repr__ = __str__


# --- Resolution ---


def _read_settings_file(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read settings file {str(path)!r}: {e.strerror or e}",
            hint="Check the path passed to --settings.",
        ) from e

    try:
        if path.suffix.lower() == ".toml":
            data: Any = tomllib.loads(raw.decode("utf-8"))
        else:
            data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            f"Settings file {str(path)!r} is not valid: {e}",
            hint="Settings files are JSON, or TOML when named *.toml.",
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Settings file {str(path)!r} must contain a table/object at top level",
        )
    return data


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, name in _ENV_FIELDS.items():
        value = env.get(key)
        if value is not None and value.strip():
            layer[name] = value.strip()

    providers: dict[str, dict[str, Any]] = {}
    for pid in ProviderId:
        entry: dict[str, Any] = {}
        key = env.get(api_key_env_var(pid))
        if key:
            entry["api_key"] = key
        url = env.get(base_url_env_var(pid))
        if url:
            entry["base_url"] = url
        if entry:
            providers[pid.value] = entry
    if providers:
        layer["providers"] = providers
    return layer


def _merge(base: dict[str, Any], layer: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in layer.items():
        if value is None:
            continue
        if key == "providers" and isinstance(value, dict):
            providers = dict(merged.get("providers") or {})
            for pid, entry in value.items():
                name = pid.value if isinstance(pid, ProviderId) else str(pid)
                current = dict(providers.get(name) or {})
                current.update({k: v for k, v in dict(entry).items() if v is not None})
                providers[name] = current
            merged["providers"] = providers
        else:
            merged[key] = value
    return merged


def _hint_for(error: ValidationError) -> str:
    first = error.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    env_keys = [k for k, v in _ENV_FIELDS.items() if v == loc]
    if env_keys:
        return f"Check '{loc}' in your settings file or the {env_keys[0]} variable."
    return f"Check '{loc}' in your settings file or command-line options."


def load_config(
    *,
    settings_file: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> Config:
    """Resolve, validate and freeze configuration.

    Precedence, lowest to highest: schema defaults, *settings_file*, the
    environment (``.env`` is loaded first when *env* is not given), then
    *overrides*. ``None`` overrides are ignored so CLI flags can be passed
    through unconditionally.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    merged: dict[str, Any] = {}
    if settings_file is not None:
        merged = _merge(merged, _read_settings_file(Path(settings_file)))
    merged = _merge(merged, _env_layer(env))
    merged = _merge(merged, overrides)

    try:
        settings = Settings.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.errors()[0].get('msg', e)}",
            hint=_hint_for(e),
        ) from e

    providers = {
        pid: ProviderConfig(
            api_key=(
                ps.api_key.get_secret_value() if ps.api_key is not None else None
            ),
            base_url=ps.base_url,
            timeout_s=ps.timeout_s,
            max_retries=ps.max_retries,
        )
        for pid, ps in settings.providers.items()
    }

    return Config(
        model=settings.model,
        fallback_model=settings.fallback_model,
        providers=providers,
        max_session_turns=settings.max_session_turns,
        timeout_s=settings.timeout_s,
        stream=settings.stream,
        use_mock=settings.use_mock,
        generation=GenerationConfig(
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            top_p=settings.top_p,
            top_k=settings.top_k,
            stop_sequences=tuple(settings.stop_sequences),
        ),
        system_instruction=settings.system_instruction,
    )
