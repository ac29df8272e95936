"""
Configuration module for cls-exporter: API credentials, cache and
concurrency tuning, listener and OpenTelemetry options.

Every field can be overridden through an environment variable of the same
name (case-insensitive); legacy ``NLS_*`` names are accepted for the
credentials.
"""

import re
import socket
from typing import Optional, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_BASE_URL = "https://api.licensing.nvidia.com"
DEFAULT_LISTEN_PORT = 9844

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style strings such as ``"20s"``,
    ``"1m30s"`` or ``"500ms"``.
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


def _hostname_or_unknown() -> str:
    try:
        host = socket.gethostname().strip()
    except OSError:
        return "unknown"
    return host or "unknown"


class Settings(BaseSettings):
    """
    Exporter settings using Pydantic for validation
    and environment variable support.
    """

    # HTTP listener
    listen_address: str = Field(
        default="",
        description="Address to listen on for HTTP requests (host:port or :port)",
    )
    port: Optional[str] = Field(
        default=None, description="Port used when listen_address is unset"
    )
    metrics_path: str = Field(
        default="/metrics", description="Path where metrics are exposed"
    )

    # CLS API
    nvidia_api_base_url: str = Field(
        default=DEFAULT_BASE_URL, description="NVIDIA CLS API base URL"
    )
    nvidia_org_name: str = Field(
        default="",
        validation_alias=AliasChoices("nvidia_org_name", "nls_org_name"),
        description="NVIDIA org name / ID (e.g. lic-...)",
    )
    nvidia_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("nvidia_api_key", "nls_api_key"),
        description="NVIDIA Licensing State API key",
    )
    nvidia_service_instance_id: str = Field(
        default="",
        description="Optional service instance ID sent as x-nv-service-instance-id",
    )

    # Fetch and cache tuning
    scrape_timeout: float = Field(
        default=20.0, description="Timeout in seconds for each CLS refresh"
    )
    cache_ttl: float = Field(
        default=60.0, description="In-memory cache TTL in seconds for CLS snapshots"
    )
    parallelism: int = Field(
        default=8, description="Max concurrent CLS API calls during a refresh"
    )
    request_timeout: float = Field(
        default=15.0, description="Timeout in seconds for a single CLS API call"
    )

    # OpenTelemetry push
    otel_enabled: bool = Field(default=False, description="Enable OTLP metrics export")
    otel_endpoint: str = Field(
        default="http://127.0.0.1:4318/v1/metrics",
        description="OTLP/HTTP metrics endpoint",
    )
    otel_service_name: str = Field(
        default="nvidia-license-server-exporter", description="OTEL service.name"
    )
    otel_service_instance_id: str = Field(
        default_factory=_hostname_or_unknown, description="OTEL service.instance.id"
    )
    otel_push_interval: float = Field(
        default=60.0, description="OTEL periodic push interval in seconds"
    )

    # General settings
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "scrape_timeout",
        "cache_ttl",
        "request_timeout",
        "otel_push_interval",
        mode="before",
    )
    @classmethod
    def _parse_duration(cls, v):
        return parse_duration(v)

    @field_validator("cache_ttl")
    @classmethod
    def _default_cache_ttl(cls, v: float) -> float:
        return v if v > 0 else 60.0

    @field_validator("otel_push_interval")
    @classmethod
    def _default_push_interval(cls, v: float) -> float:
        return v if v > 0 else 60.0

    @field_validator("scrape_timeout")
    @classmethod
    def _default_scrape_timeout(cls, v: float) -> float:
        return v if v > 0 else 20.0

    @field_validator("parallelism")
    @classmethod
    def _default_parallelism(cls, v: int) -> int:
        return v if v > 0 else 8

    @field_validator(
        "nvidia_org_name", "nvidia_api_key", "nvidia_service_instance_id", "metrics_path"
    )
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @property
    def effective_listen_address(self) -> str:
        """Listen address after applying the PORT fallback."""
        if self.listen_address.strip():
            return self.listen_address.strip()
        port = (self.port or "").strip()
        if port:
            return port if port.startswith(":") else f":{port}"
        return f":{DEFAULT_LISTEN_PORT}"

    def listen_host_port(self) -> Tuple[str, int]:
        """
        Split the listen address into a (host, port) pair for uvicorn.

        An empty host (``":9844"``) binds every interface.
        """
        address = self.effective_listen_address
        host, _, port = address.rpartition(":")
        if not port.isdigit():
            raise ConfigurationError(f"invalid listen address: {address!r}")
        host = host.strip("[]") or "0.0.0.0"
        return host, int(port)

    def require_credentials(self) -> None:
        """
        Fail fast when the org name or API key is missing.

        Raises:
            ConfigurationError: If a required credential is blank
        """
        if not self.nvidia_org_name:
            raise ConfigurationError(
                "missing required org name: set NVIDIA_ORG_NAME or pass --nvidia-org-name"
            )
        if not self.nvidia_api_key:
            raise ConfigurationError(
                "missing required API key: set NVIDIA_API_KEY or pass --nvidia-api-key"
            )

    def redacted(self) -> dict:
        """Settings as a dict with the API key masked, for display."""
        data = self.model_dump()
        if data.get("nvidia_api_key"):
            data["nvidia_api_key"] = "****"
        data["listen_address"] = self.effective_listen_address
        data.pop("port", None)
        return data

    def with_overrides(self, **overrides) -> "Settings":
        """
        Copy of these settings with every non-None override applied and
        validated like an environment value.
        """
        values = {key: value for key, value in overrides.items() if value is not None}
        if not values:
            return self
        data = self.model_dump()
        data.update(values)
        return type(self)(**data)
