from enum import Enum
import configparser
from os import environ
from os.path import exists
from typing import Any
import logging

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

_PATH = "app{suffix}.conf"
_CONFIG = None


def _to_bool(v: Any, default: bool) -> bool:
    if v in (None, "", " "):
        return default
    if isinstance(v, str):
        return v.lower() in ("yes", "true", "t", "1")
    return bool(v)


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class ConfigApp(BaseModel):
    loglevel: LogLevel = Field(default=LogLevel.info)


class ConfigFhir(BaseModel):
    base_url: str
    authentication: str = Field(
        default="off",
        description="Authentication mode, can be 'off' or 'bearer'",
    )
    bearer_token: str | None = Field(default=None)
    timeout: float = Field(default=30, gt=0)
    connect_timeout: float = Field(default=10, gt=0)
    retries: int = Field(default=3, ge=1)
    backoff: float = Field(default=0.5, ge=0)
    chunk_size: int = Field(default=50, ge=1)
    # transaction (all-or-nothing) when true, batch (per entry) when false
    atomic: bool = Field(default=True)
    mtls_client_cert_path: str | None = Field(default=None)
    mtls_client_key_path: str | None = Field(default=None)
    verify_ca: str | bool = Field(default=True)

    @field_validator("authentication")
    def validate_authentication(cls, value: Any) -> str:
        if value not in {"off", "bearer"}:
            raise ValueError("authentication must be either 'off' or 'bearer'")
        return str(value)

    @field_validator("bearer_token", "mtls_client_cert_path", "mtls_client_key_path", mode="before")
    def validate_optional_str(cls, v: Any) -> str | None:
        if v in (None, "", " "):
            return None
        return str(v)

    @field_validator("timeout", mode="before")
    def validate_timeout(cls, v: Any) -> float:
        if v in (None, "", " "):
            return 30.0
        return float(v)

    @field_validator("connect_timeout", mode="before")
    def validate_connect_timeout(cls, v: Any) -> float:
        if v in (None, "", " "):
            return 10.0
        return float(v)

    @field_validator("retries", mode="before")
    def validate_retries(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 3
        return int(v)

    @field_validator("backoff", mode="before")
    def validate_backoff(cls, v: Any) -> float:
        if v in (None, "", " "):
            return 0.5
        return float(v)

    @field_validator("chunk_size", mode="before")
    def validate_chunk_size(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 50
        return int(v)

    @field_validator("atomic", mode="before")
    def validate_atomic(cls, v: Any) -> bool:
        return _to_bool(v, True)

    @field_validator("verify_ca", mode="before")
    def validate_verify_ca(cls, v: Any) -> str | bool:
        if v in (None, "", " "):
            return True
        if isinstance(v, str) and v.lower() in ("yes", "true", "t", "1", "no", "false", "f", "0"):
            return v.lower() in ("yes", "true", "t", "1")
        return v  # type: ignore


class ConfigMapping(BaseModel):
    identifier_system: str = Field(default="http://example.org/test-ids")
    tag_system: str = Field(
        default="http://terminology.hl7.org/CodeSystem/v3-ObservationValue"
    )
    tag_code: str = Field(default="SUBSET")
    tag_display: str = Field(default="Test Data")
    decorate_names: bool = Field(default=True)
    given_suffix: str = Field(default="-Test")
    family_suffix: str = Field(default=" [TEST]")
    profile: str | None = Field(default=None)
    workers: int = Field(default=1, ge=1, le=32)

    @field_validator("decorate_names", mode="before")
    def validate_decorate_names(cls, v: Any) -> bool:
        return _to_bool(v, True)

    @field_validator("profile", mode="before")
    def validate_profile(cls, v: Any) -> str | None:
        if v in (None, "", " "):
            return None
        return str(v)

    @field_validator("workers", mode="before")
    def validate_workers(cls, v: Any) -> int:
        if v in (None, "", " "):
            return 1
        return int(v)


class ConfigEtl(BaseModel):
    validate_before_load: bool = Field(default=False)
    verify_after_load: bool = Field(default=True)

    @field_validator("validate_before_load", mode="before")
    def validate_validate_before_load(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("verify_after_load", mode="before")
    def validate_verify_after_load(cls, v: Any) -> bool:
        return _to_bool(v, True)


class ConfigStats(BaseModel):
    enabled: bool = Field(default=False)
    host: str | None = Field(default=None)
    port: int | None = Field(default=None)
    module_name: str | None = Field(default="fhir_etl")

    @field_validator("enabled", mode="before")
    def validate_enabled(cls, v: Any) -> bool:
        return _to_bool(v, False)

    @field_validator("host", mode="before")
    def validate_host(cls, v: Any) -> str | None:
        if v in (None, "", " "):
            return None
        return str(v)

    @field_validator("port", mode="before")
    def validate_port(cls, v: Any) -> int | None:
        if v in (None, "", " "):
            return None
        return int(v)


class Config(BaseModel):
    app: ConfigApp = Field(default_factory=ConfigApp)
    fhir: ConfigFhir
    mapping: ConfigMapping = Field(default_factory=ConfigMapping)
    etl: ConfigEtl = Field(default_factory=ConfigEtl)
    stats: ConfigStats = Field(default_factory=ConfigStats)


def read_ini_file(path: str) -> Any:
    ini_data = configparser.ConfigParser()
    ini_data.read(path)

    ret = {}
    for section in ini_data.sections():
        ret[section] = dict(ini_data[section])

    return ret


def reset_config() -> None:
    global _CONFIG
    _CONFIG = None


def set_config(config: Config) -> None:
    global _CONFIG
    _CONFIG = config


def get_config(path: str | None = None) -> Config:
    global _CONFIG

    if _CONFIG is not None:
        return _CONFIG

    if path is None:
        suffix = environ.get("APP_ENV", "")
        if suffix:
            suffix = f".{suffix}"
        path = _PATH.replace("{suffix}", suffix)
        logger.info(f"Reading configuration using file: {path}")

    if not exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    # INI sections map one-to-one onto the pydantic sub models
    ini_data = read_ini_file(path)

    # The bearer token is a secret and may be supplied through the environment instead
    token = environ.get("FHIR_TOKEN")
    if token and "fhir" in ini_data and not ini_data["fhir"].get("bearer_token"):
        ini_data["fhir"]["bearer_token"] = token

    try:
        _CONFIG = Config(**ini_data)
    except ValidationError as e:
        logger.error(f"Configuration validation error: {e}")
        raise e

    return _CONFIG
