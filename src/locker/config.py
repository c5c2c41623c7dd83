"""Configuration loading utilities for Locker."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .core.exceptions import ConfigError
from .core.policy import SECURE_ENCLAVE_TOKEN, SOFTWARE_TOKEN
from .crypto.ecies import CURVES, DEFAULT_ALGORITHM, EciesAlgorithm
from .paths import default_store_dir, runtime_config_dir

DEFAULT_IDENTITY = "SecretMessage"


class StoreConfig(BaseModel):
    root: Path = Field(default_factory=default_store_dir, description="Keystore directory")

    @field_validator("root")
    @classmethod
    def _expand_root(cls, value: Path) -> Path:
        return value.expanduser()


class KeyConfig(BaseModel):
    curve: str = Field(default="SECP256R1")
    key_size: int = Field(default=256, gt=0)
    token: Literal["software", "secure-enclave"] = Field(default=SOFTWARE_TOKEN)
    algorithm: EciesAlgorithm = Field(default=DEFAULT_ALGORITHM)

    @field_validator("curve")
    @classmethod
    def _validate_curve(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in CURVES:
            raise ValueError(f"unsupported curve {value!r}; expected one of {sorted(CURVES)}")
        return normalized

    def is_hardware(self) -> bool:
        return self.token == SECURE_ENCLAVE_TOKEN


class KdfConfig(BaseModel):
    """Parameters for deriving PIN verifiers with scrypt"""

    length: int = Field(default=32, ge=16)
    salt_length: int = Field(default=16, ge=16)
    n: int = Field(default=2**15)
    r: int = Field(default=8, ge=1)
    p: int = Field(default=1, ge=1)

    @field_validator("n")
    @classmethod
    def _validate_n(cls, value: int) -> int:
        if value < 2 or value & (value - 1):
            raise ValueError("scrypt n must be a power of two greater than 1")
        return value


class AuthConfig(BaseModel):
    gate: Literal["pin", "allow", "deny"] = Field(default="pin")
    max_attempts: int = Field(default=3, ge=1)
    pin_file: Optional[Path] = Field(default=None, description="Defaults to <store.root>/auth.json")
    kdf: KdfConfig = Field(default_factory=KdfConfig)


class LoggingConfig(BaseModel):
    level: str = Field(default="WARNING", description="Logging verbosity level")

    def normalized_level(self) -> str:
        return self.level.upper()


class AppConfig(BaseModel):
    identity: str = Field(default=DEFAULT_IDENTITY, min_length=1)
    store: StoreConfig = Field(default_factory=StoreConfig)
    keys: KeyConfig = Field(default_factory=KeyConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def pin_file(self) -> Path:
        return self.auth.pin_file or self.store.root / "auth.json"


def config_search_paths(explicit: Optional[Path] = None) -> Iterable[Path]:
    if explicit:
        yield explicit
    yield Path.cwd() / ".locker" / "config.yaml"
    yield runtime_config_dir() / "config.yaml"


def load_config(path: Optional[Path] = None) -> AppConfig:
    if path is not None and not path.is_file():
        raise ConfigError(f"Configuration file {path} does not exist")
    for candidate in config_search_paths(path):
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                try:
                    data = yaml.safe_load(handle) or {}
                except yaml.YAMLError as exc:
                    raise ConfigError(f"Invalid YAML in {candidate}: {exc}") from exc
            try:
                return AppConfig.model_validate(data)
            except ValidationError as exc:
                raise ConfigError(f"Invalid configuration in {candidate}: {exc}") from exc
    return AppConfig()


def dump_default_config(target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(AppConfig().model_dump(mode="json"), handle, sort_keys=False)


__all__ = [
    "AppConfig",
    "AuthConfig",
    "DEFAULT_IDENTITY",
    "KdfConfig",
    "KeyConfig",
    "LoggingConfig",
    "StoreConfig",
    "config_search_paths",
    "dump_default_config",
    "load_config",
]
