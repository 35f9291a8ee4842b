import os
import re
import ssl
from enum import Enum
from pathlib import Path
from pydantic import (
    Field,
    FilePath,
    field_validator,
    field_serializer,
    HttpUrl,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources.providers.dotenv import DotEnvSettingsSource
from typing import Optional, Union

from magmaseller.errors import ConfigurationFatal

VERSION = '0.1.0'
HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")
AMBOSS_API_URL = 'https://api.amboss.space/graphql'
MEMPOOL_FEES_API_URL = 'https://mempool.space/api/v1/fees/recommended'


class Environment(str, Enum):
    PROD = 'production'
    DEV = 'development'


class LogLevel(str, Enum):
    DEBUG = 'DEBUG'
    INFO = 'INFO'
    WARNING = 'WARNING'
    ERROR = 'ERROR'
    CRITICAL = 'CRITICAL'


class MagmaSellerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )
    log_level: LogLevel = LogLevel.INFO

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings
    ):
        # 1) peek at the base .env for the ENVIRONMENT key
        base_path = Path(".env")
        if base_path.is_file():
            base_vars = DotEnvSettingsSource._static_read_env_file(
                base_path,
                encoding="utf-8",
                case_sensitive=False,
                ignore_empty=False,
                parse_none_str=None,
            )
        else:
            base_vars = {}

        # 2) choose .env.dev or .env
        env = (base_vars.get("environment") or Environment.PROD.value).lower()
        is_dev = env in (Environment.DEV.value, Environment.DEV.name.lower())
        chosen = ".env.dev" if is_dev else ".env"

        # 3) build a new DotEnvSettingsSource pointing at that file
        custom_dotenv = DotEnvSettingsSource(
            settings_cls=cls,
            env_file=chosen,
            env_file_encoding="utf-8",
        )

        def filtered_dotenv() -> dict[str, any]:
            data = custom_dotenv()
            # empty values fall through to the field defaults
            return {k: v for k, v in data.items() if v != ""}

        return (
            init_settings,
            filtered_dotenv,
            env_settings,
            file_secret_settings,
        )


class EnvironmentSettings(MagmaSellerSettings):
    environment: Environment = Environment.PROD

    @field_validator('environment', mode='before')
    def validate_env(cls, value):
        if isinstance(value, Environment):
            return value

        # accept "development", "DEV", "prod", ...
        if isinstance(value, str):
            for env in Environment:
                if value.lower() in (env.value, env.name.lower()):
                    return env
            raise ValueError(f"Invalid env: {value}")

        raise ValueError(f"Environment must be a str or Environment enum, got {value!r}")


class LnBackendSettings(MagmaSellerSettings):
    """
    LND REST connection, the macaroon and the tls certificate can each be
    given inline (hex / PEM) or as a path to the file lnd wrote
    """
    rest_host: Optional[HttpUrl] = Field(default=None)
    macaroon: Optional[str] = Field(default=None)
    macaroon_path: Optional[FilePath] = Field(default=None)
    tls_cert: Optional[str] = Field(default=None)
    tls_cert_path: Optional[FilePath] = Field(default=None)

    @field_validator("macaroon_path", "tls_cert_path", mode="before")
    def _expand_user_path(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str):
            return os.path.expanduser(v)
        return v

    @field_validator("macaroon", mode="after")
    def validate_macaroon_hex(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not HEX_RE.fullmatch(v):
            raise ValueError("inline macaroon must be hex encoded")
        return v

    @model_validator(mode="after")
    def require_node_credentials(self):
        if self.rest_host is None:
            raise ValueError("rest_host is required")
        if not self.macaroon and not self.macaroon_path:
            raise ValueError("either macaroon or macaroon_path is required")
        if not self.tls_cert and not self.tls_cert_path:
            raise ValueError("either tls_cert or tls_cert_path is required")
        return self

    def resolve_macaroon(self) -> str:
        """hex encoded macaroon, inline value wins over the file"""
        if self.macaroon:
            return self.macaroon
        try:
            return self.macaroon_path.read_bytes().hex()
        except OSError as e:
            raise ConfigurationFatal(
                f'could not read macaroon {self.macaroon_path}: {e}') from e

    def resolve_tls_verify(self) -> ssl.SSLContext:
        try:
            if self.tls_cert:
                return ssl.create_default_context(cadata=self.tls_cert)
            return ssl.create_default_context(cafile=self.tls_cert_path.as_posix())
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationFatal(f'could not load tls certificate: {e}') from e

    @field_serializer("rest_host", mode="plain")
    def _ser_rest_host(self, v: Optional[HttpUrl], info) -> Optional[str]:
        return None if v is None else v.unicode_string()

    @field_serializer("macaroon_path", 'tls_cert_path', mode="plain")
    def _ser_path(self, v: Optional[Path], info) -> Optional[str]:
        return None if v is None else v.as_posix()


class MagmaSettings(MagmaSellerSettings):
    magma_api_url: HttpUrl = Field(default=AMBOSS_API_URL)
    # a preset key skips the cache and the node signature login
    magma_api_key: Optional[str] = Field(default=None)
    credential_cache_path: str = Field(default='output/magma-api-key')
    api_key_lifetime_seconds: int = Field(default=90 * 24 * 60 * 60)
    api_key_description: str = Field(default='magmaseller')
    reject_if_buyer_offline: bool = Field(default=True)

    @field_validator("credential_cache_path", mode="before")
    def _expand_cache_path(cls, v: Union[str, Path]) -> str:
        return os.path.expanduser(str(v))

    @field_validator('api_key_lifetime_seconds')
    def validate_lifetime(cls, v: int) -> int:
        if v > 0:
            return v
        raise ValueError(f'{v} must be greater than 0')


class ServiceSettings(MagmaSellerSettings):
    loop_interval: int = Field(default=60)
    invoice_expiry_seconds: int = Field(default=48 * 60 * 60)
    min_utxo_confirmations: int = Field(default=3)
    mempool_fees_api_url: HttpUrl = Field(default=MEMPOOL_FEES_API_URL)

    @field_validator('loop_interval', 'invoice_expiry_seconds')
    def validate_greater_than_zero(cls, v: int) -> int:
        if v > 0:
            return v
        raise ValueError(f'{v} must be greater than 0')

    @field_validator('min_utxo_confirmations')
    def validate_greater_equal_to_zero(cls, v: int) -> int:
        if v >= 0:
            return v
        raise ValueError(f'{v} must be greater than or equal to 0')


class SellerSettings(
        EnvironmentSettings,
        LnBackendSettings,
        MagmaSettings,
        ServiceSettings,
        MagmaSellerSettings,
        ):
    version: str = Field(default=VERSION)
