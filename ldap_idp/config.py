"""
Configuration module for the LDAP identity provider.

This module uses Pydantic Settings to load and validate environment variables
for the Hydra admin API, the LDAP directory, attribute/claim mapping, the
remember-me cookie and the web listener.

Environment variables are loaded from .env file or system environment.
"""

import os
import re
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# OIDC standard claims that carry a single value
DEFAULT_SCALAR_CLAIMS = (
    "sub,name,given_name,family_name,middle_name,nickname,preferred_username,"
    "profile,picture,website,email,email_verified,gender,birthdate,zoneinfo,"
    "locale,phone_number,phone_number_verified,address,updated_at"
)


def parse_key_value_map(value: str) -> List[Tuple[str, str]]:
    """
    Parse a comma separated list of ``key:value`` pairs.

    Order is preserved and repeated keys are kept, so one key may map to
    several values (and several keys to one value).

    Args:
        value: Raw string such as ``"cn:name,mail:email"``

    Returns:
        List of ``(key, value)`` tuples

    Raises:
        ValueError: If an item has no ``:`` separator or an empty side

    Example:
        >>> parse_key_value_map("cn:name,mail:email,mail:contact")
        [('cn', 'name'), ('mail', 'email'), ('mail', 'contact')]
    """
    pairs: List[Tuple[str, str]] = []

    for item in value.split(","):
        item = item.strip()
        if not item:
            continue

        key, sep, val = item.partition(":")
        key, val = key.strip(), val.strip()
        if not sep or not key or not val:
            raise ValueError(f"invalid key:val format in: {item}")

        pairs.append((key, val))

    return pairs


def parse_listen_address(value: str) -> Tuple[str, int]:
    """Split ``<ip>:<port>`` into host and port."""
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"can't parse IP address and/or port from '{value}'")

    port_number = int(port)
    if not 1 <= port_number <= 65535:
        raise ValueError(f"port out of range in '{value}'")

    return host.strip("[]"), port_number


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the Hydra admin API, the LDAP directory, claim
    mapping and remember-me sessions is defined here.
    """

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Web Listener
    # =========================================================================

    WEB_LISTEN_ADDRESS: str = Field(
        default="0.0.0.0:8080",
        description="Address to listen on (in the form <ip>:<port>)",
    )

    WEB_TLS_CERT_FILE: Optional[str] = Field(
        None,
        description="Path to a certificate chain file in PEM format (enables TLS)",
    )

    WEB_TLS_KEY_FILE: Optional[str] = Field(
        None,
        description="Path to a private key file in PEM format (enables TLS)",
    )

    WEB_BASE_PATH: str = Field(
        default="/",
        description="Path prefix for endpoints",
    )

    # =========================================================================
    # Hydra Admin API
    # =========================================================================

    HYDRA_URL: HttpUrl = Field(
        ...,
        description="URL of the Hydra admin server (e.g., http://hydra:4445)",
    )

    HYDRA_API_PREFIX: str = Field(
        default="/oauth2/auth/requests",
        description="Path of the login/consent/logout request endpoints "
                    "(use /admin/oauth2/auth/requests for Hydra v2)",
    )

    HYDRA_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for Hydra admin API calls in seconds",
        gt=0,
    )

    HYDRA_CONNECT_RETRIES: int = Field(
        default=0,
        description="Connection retries performed by the HTTP transport",
        ge=0,
        le=5,
    )

    # =========================================================================
    # LDAP Directory
    # =========================================================================

    LDAP_URL: str = Field(
        ...,
        description="URL to the LDAP server (example: ldap://ldap.example.org:389)",
        min_length=1,
    )

    LDAP_BIND_DN: str = Field(
        ...,
        description="LDAP DN to bind to",
    )

    LDAP_BIND_PW: str = Field(
        ...,
        description="LDAP bind DN password",
    )

    LDAP_USERS_DN: str = Field(
        ...,
        description="Base DN to search for users",
        min_length=1,
    )

    LDAP_USERS_FILTER: str = Field(
        default="(&(objectClass=inetOrgPerson)(|(uid={login})(mail={login})))",
        description="Search filter for users (`{login}` is replaced by the user's provided login)",
    )

    LDAP_GROUPS_DN: Optional[str] = Field(
        None,
        description="Base DN to search for groups (groups lookup is skipped when unset)",
    )

    LDAP_GROUPS_FILTER: str = Field(
        default="(&(objectClass=groupOfNames)(member={user_dn}))",
        description="Search filter for groups (`{user_dn}` is replaced by the user's DN)",
    )

    LDAP_SUBJECT_ATTRIBUTE: str = Field(
        default="entryUUID",
        description="Attribute used as the OAuth2 subject (`dn` uses the entry DN)",
        min_length=1,
    )

    LDAP_TIMEOUT_SECONDS: int = Field(
        default=10,
        description="Connect and receive timeout for LDAP operations in seconds",
        ge=1,
        le=300,
    )

    # =========================================================================
    # OAuth2 / OIDC Behaviour
    # =========================================================================

    OAUTH_LOGIN_REMEMBER_FOR: int = Field(
        default=0,
        description="Time in seconds a successful login is remembered "
                    "(0 means until the browser session ends)",
        ge=0,
    )

    OAUTH_CONSENT_REMEMBER_FOR: int = Field(
        default=0,
        description="Time in seconds Hydra remembers a consent (0 means indefinitely)",
        ge=0,
    )

    OAUTH_ATTRS_MAP: str = Field(
        default="cn:name,sn:family_name,givenName:given_name,mail:email,groups:groups",
        description="Comma separated <LDAP attribute name>:<OAuth claim name>",
    )

    OAUTH_CLAIMS_MAP: str = Field(
        default="name:profile,family_name:profile,given_name:profile,email:email,groups:groups",
        description="Comma separated <OAuth claim name>:<OAuth scope name>",
    )

    OAUTH_SCALAR_CLAIMS: str = Field(
        default=DEFAULT_SCALAR_CLAIMS,
        description="Comma separated claims that only carry the first attribute value",
    )

    # =========================================================================
    # Remember-me Cookie
    # =========================================================================

    REMEMBER_SECRET: str = Field(
        ...,
        description="Secret key for signing remember tokens (must be cryptographically secure)",
        min_length=32,
    )

    REMEMBER_ALGORITHM: str = Field(
        default="HS256",
        description="JWT signing algorithm (HS256, HS384 or HS512)",
    )

    REMEMBER_COOKIE_NAME: str = Field(
        default="idp_remember",
        description="Name of the remember-me cookie",
        min_length=1,
    )

    REMEMBER_COOKIE_SECURE: bool = Field(
        default=True,
        description="Only send the remember-me cookie over HTTPS",
    )

    REMEMBER_MAX_LIFETIME: int = Field(
        default=30 * 24 * 3600,
        description="Server-side expiry bound for session-only remember tokens in seconds",
        ge=60,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def attribute_rules(self) -> List[Tuple[str, str]]:
        """(LDAP attribute, claim) pairs in configuration order."""
        return parse_key_value_map(self.OAUTH_ATTRS_MAP)

    @property
    def scope_rules(self) -> List[Tuple[str, str]]:
        """(claim, scope) pairs in configuration order."""
        return parse_key_value_map(self.OAUTH_CLAIMS_MAP)

    @property
    def scalar_claims(self) -> frozenset:
        return frozenset(
            claim.strip() for claim in self.OAUTH_SCALAR_CLAIMS.split(",") if claim.strip()
        )

    @property
    def listen_host(self) -> str:
        return parse_listen_address(self.WEB_LISTEN_ADDRESS)[0]

    @property
    def listen_port(self) -> int:
        return parse_listen_address(self.WEB_LISTEN_ADDRESS)[1]

    @property
    def tls_enabled(self) -> bool:
        return bool(self.WEB_TLS_CERT_FILE and self.WEB_TLS_KEY_FILE)

    @property
    def hydra_url_str(self) -> str:
        """
        Get Hydra admin URL as string (for HTTP client usage).

        Returns:
            Hydra URL as string without trailing slash.
        """
        return str(self.HYDRA_URL).rstrip("/")

    @property
    def cookie_path(self) -> str:
        return self.WEB_BASE_PATH

    @property
    def mapped_attributes(self) -> List[str]:
        """Directory attributes to request, without duplicates."""
        names: List[str] = []
        for attribute, _ in self.attribute_rules:
            if attribute.lower() not in (n.lower() for n in names):
                names.append(attribute)
        return names

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return v.upper()

    @field_validator("WEB_LISTEN_ADDRESS")
    @classmethod
    def validate_listen_address(cls, v: str) -> str:
        parse_listen_address(v)
        return v

    @field_validator("WEB_BASE_PATH")
    @classmethod
    def validate_base_path(cls, v: str) -> str:
        """
        Validate that the base path is absolute.

        Returns:
            Base path without trailing slash (``/`` is kept as is)

        Raises:
            ValueError: If the path does not start with ``/``
        """
        if not v.startswith("/"):
            raise ValueError("path must start with `/`")
        return v.rstrip("/") or "/"

    @field_validator("WEB_TLS_CERT_FILE", "WEB_TLS_KEY_FILE")
    @classmethod
    def validate_file(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not os.path.exists(v):
            raise ValueError(f"no such file or directory: '{v}'")
        if not os.path.isfile(v):
            raise ValueError(f"not a file: {v}")
        return v

    @field_validator("HYDRA_API_PREFIX")
    @classmethod
    def validate_api_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("path must start with `/`")
        return v.rstrip("/")

    @field_validator("LDAP_URL")
    @classmethod
    def validate_ldap_url(cls, v: str) -> str:
        if not re.match(r"^ldaps?://", v, re.IGNORECASE):
            raise ValueError(f"LDAP_URL must start with ldap:// or ldaps://, got: {v}")
        return v

    @field_validator("LDAP_USERS_FILTER")
    @classmethod
    def validate_users_filter(cls, v: str) -> str:
        if "{login}" not in v:
            raise ValueError("LDAP_USERS_FILTER must contain the `{login}` placeholder")
        return v

    @field_validator("LDAP_GROUPS_FILTER")
    @classmethod
    def validate_groups_filter(cls, v: str) -> str:
        if "{user_dn}" not in v:
            raise ValueError("LDAP_GROUPS_FILTER must contain the `{user_dn}` placeholder")
        return v

    @field_validator("OAUTH_ATTRS_MAP", "OAUTH_CLAIMS_MAP")
    @classmethod
    def validate_mapping(cls, v: str) -> str:
        parse_key_value_map(v)
        return v

    @field_validator("REMEMBER_ALGORITHM")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """
        Validate JWT algorithm is one of the supported HMAC algorithms.

        Raises:
            ValueError: If algorithm is not supported
        """
        allowed_algorithms = ["HS256", "HS384", "HS512"]

        if v not in allowed_algorithms:
            raise ValueError(
                f"JWT algorithm must be one of {allowed_algorithms}, got: {v}"
            )

        return v

    @model_validator(mode="after")
    def validate_tls_pair(self) -> "Settings":
        if bool(self.WEB_TLS_CERT_FILE) != bool(self.WEB_TLS_KEY_FILE):
            raise ValueError(
                "WEB_TLS_CERT_FILE and WEB_TLS_KEY_FILE must be set together"
            )
        return self


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.

    Example:
        >>> from ldap_idp.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.HYDRA_URL)
    """
    return Settings()
