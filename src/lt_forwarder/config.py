"""Configuration models for the forwarding engine."""

import ssl
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .common.exceptions import ConfigurationError
from .common.logging import get_logger
from .common.utils import format_host_port, validate_port

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 32 * 1024
HALF_CLOSE_TIMEOUT = 30.0


class DialFailurePolicy(str, Enum):
    """What to do when the upstream service cannot be reached."""

    DROP = "drop"  # Close the one downstream connection and keep serving
    FATAL = "fatal"  # Stop the whole forwarder


class UpstreamAddress(BaseModel):
    """Host and port of the local service being exposed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    host: str = Field(default="localhost", min_length=1, description="Upstream host")
    port: int = Field(description="Upstream port")

    @field_validator("port")
    @classmethod
    def validate_upstream_port(cls, v: int) -> int:
        validate_port(v, "Upstream port")
        return v

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        return v.strip("[]")

    def __str__(self) -> str:
        return format_host_port(self.host, self.port)


class TLSPolicy(BaseModel):
    """TLS settings for connections to a local HTTPS service.

    A client certificate pair is required unless certificate checks are
    disabled, in which case the cert/key/ca options are ignored.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    server_name: str = Field(min_length=1, description="SNI and hostname to verify")
    cert_file: str | None = Field(default=None, description="Client certificate PEM")
    key_file: str | None = Field(default=None, description="Client certificate key")
    ca_file: str | None = Field(
        default=None, description="CA bundle for self-signed upstream certificates"
    )
    allow_invalid_cert: bool = Field(
        default=False, description="Disable certificate checks for the upstream"
    )

    @field_validator("cert_file", "key_file", "ca_file")
    @classmethod
    def validate_file_exists(cls, v: str | None) -> str | None:
        if v is not None and not Path(v).is_file():
            raise ValueError(f"File not found: {v}")
        return v

    @model_validator(mode="after")
    def validate_key_pair(self) -> "TLSPolicy":
        if self.allow_invalid_cert:
            return self
        if not self.cert_file or not self.key_file:
            raise ValueError("--local-key or --local-cert is undefined")
        return self

    def build_ssl_context(self) -> ssl.SSLContext:
        """Create the client SSL context for upstream connections.

        Returns:
            Configured SSLContext

        Raises:
            ConfigurationError: If certificate material cannot be loaded
        """
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)

        if self.allow_invalid_cert:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            logger.debug("Upstream certificate checks disabled")
            return context

        try:
            if self.cert_file and self.key_file:
                context.load_cert_chain(self.cert_file, self.key_file)
            if self.ca_file:
                context.load_verify_locations(cafile=self.ca_file)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(f"Failed to load TLS material: {e}") from e

        return context


class ForwarderConfig(BaseModel):
    """Pydantic configuration for the forwarding engine."""

    model_config = ConfigDict(
        str_strip_whitespace=True, validate_assignment=True, extra="forbid"
    )

    upstream: UpstreamAddress
    tls: TLSPolicy | None = Field(default=None, description="Upstream TLS policy")

    dial_failure_policy: DialFailurePolicy = Field(default=DialFailurePolicy.DROP)
    connect_timeout: float = Field(
        default=10.0, ge=0.1, le=120.0, description="Upstream connect timeout"
    )
    keepalive: bool = Field(default=True, description="Enable TCP keep-alive upstream")
    buffer_size: int = Field(
        default=DEFAULT_BUFFER_SIZE,
        ge=1024,
        le=1024 * 1024,
        description="Relay read size per direction",
    )
    half_close_timeout: float = Field(
        default=HALF_CLOSE_TIMEOUT,
        ge=0.0,
        le=3600.0,
        description="How long a relay keeps one direction open after the other ends",
    )

    max_connections: int = Field(
        default=10, ge=1, le=1000, description="Max simultaneous connections"
    )
    drain_timeout: float = Field(
        default=5.0, ge=0.0, le=300.0, description="Grace period for active relays"
    )
    reconnect_attempts: int = Field(
        default=0, ge=0, le=100, description="Tunnel reopen attempts after loss"
    )
    reconnect_delay: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Delay between tunnel reopens"
    )

    def ssl_context(self) -> ssl.SSLContext | None:
        """Build the upstream SSL context, or None for plaintext."""
        if self.tls is None:
            return None
        return self.tls.build_ssl_context()
