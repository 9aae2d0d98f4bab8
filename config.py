"""
Order manager settings (pydantic-settings).
Every field reads from the environment or a .env file; names are case-insensitive.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from acme_order.crypto import parse_key_type
from acme_order.errors import InvalidArgument, InvalidKeyType
from acme_order.order import validate_timestamp

_DIRECTORY_PRESETS = {
    "letsencrypt":         "https://acme-v02.api.letsencrypt.org/directory",
    "letsencrypt_staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
    "zerossl":             "https://acme.zerossl.com/v2/DV90",
}


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings ≥2.7 calls json.loads() on complex-typed fields
    (e.g. List[str]) before field_validators run.  A plain comma-separated
    value like ``example.org,www.example.org`` is not valid JSON, so the raw
    string is handed on to the parse_domains validator instead.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── CA Provider ────────────────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "zerossl", "custom"] = "letsencrypt_staging"
    # Required when CA_PROVIDER="custom", ignored otherwise
    ACME_DIRECTORY_URL: str = ""

    # ── Account (must already be registered) ───────────────────────────────
    ACCOUNT_KEY_PATH: str = "./account.key"
    ACME_ACCOUNT_URL: str = ""     # empty = look it up with onlyReturnExisting

    # ── Order ──────────────────────────────────────────────────────────────
    MANAGED_DOMAINS: List[str] = []
    PRIMARY_NAME: str = ""         # empty = first managed domain
    ORDER_STORE_PATH: str = "./orders"
    KEY_TYPE: str = "rsa-4096"
    NOT_BEFORE: str = ""
    NOT_AFTER: str = ""

    # ── Challenges ─────────────────────────────────────────────────────────
    CHALLENGE_TYPE: Literal["http-01", "dns-01"] = "http-01"
    HTTP_CHALLENGE_MODE: str = "standalone"   # "standalone" | "webroot"
    HTTP_CHALLENGE_PORT: int = 80
    WEBROOT_PATH: Optional[str] = None
    LOCAL_CHECK: bool = True
    DNS_PROPAGATION_WAIT_SECONDS: float = 10.0
    VERIFY_TIMEOUT_SECONDS: Optional[float] = 300.0

    # ── Directory TLS (private or self-signed test CAs) ───────────────────
    ACME_CA_BUNDLE: str = ""       # PEM bundle for the directory host; empty = requests default
    ACME_INSECURE: bool = False    # disables TLS verification of the CA

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("MANAGED_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v: object) -> List[str]:
        """MANAGED_DOMAINS may be a list or "a.org, b.org"."""
        if isinstance(v, str):
            return [d.strip() for d in v.split(",") if d.strip()]
        return v  # type: ignore[return-value]

    @field_validator("HTTP_CHALLENGE_MODE")
    @classmethod
    def validate_challenge_mode(cls, v: str) -> str:
        allowed = {"standalone", "webroot"}
        if v not in allowed:
            raise ValueError(f"HTTP_CHALLENGE_MODE must be one of {allowed}")
        return v

    @field_validator("KEY_TYPE")
    @classmethod
    def validate_key_type(cls, v: str) -> str:
        try:
            parse_key_type(v)
        except InvalidKeyType as exc:
            raise ValueError(str(exc)) from exc
        return v

    @field_validator("NOT_BEFORE", "NOT_AFTER")
    @classmethod
    def validate_window(cls, v: str) -> str:
        try:
            return validate_timestamp(v)
        except InvalidArgument as exc:
            raise ValueError(str(exc)) from exc

    @model_validator(mode="after")
    def validate_webroot(self) -> "Settings":
        if self.HTTP_CHALLENGE_MODE == "webroot" and not self.WEBROOT_PATH:
            raise ValueError(
                "WEBROOT_PATH must be set when HTTP_CHALLENGE_MODE='webroot'"
            )
        return self

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        if self.CA_PROVIDER in _DIRECTORY_PRESETS:
            self.ACME_DIRECTORY_URL = _DIRECTORY_PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self

    @property
    def primary_name(self) -> str:
        if self.PRIMARY_NAME:
            return self.PRIMARY_NAME
        return self.MANAGED_DOMAINS[0].removeprefix("*.") if self.MANAGED_DOMAINS else ""

    def order_directory(self, primary_name: str) -> Path:
        """Per-order artifact directory below ORDER_STORE_PATH."""
        return Path(self.ORDER_STORE_PATH) / primary_name.replace("*", "_")


# Module-level singleton, imported everywhere.
settings = Settings()
