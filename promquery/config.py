"""Environment-based configuration for promquery."""

import math
import os
import re
from dataclasses import dataclass, field

import httpx

from promquery.errors import ConfigError, OutputFormatError
from promquery.formatting import OUTPUT_FORMATS, validate_delimiter

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """Parse a duration such as "30s", "1m30s", "500ms" or "90" into seconds."""
    text = text.strip()
    try:
        seconds = float(text)
    except ValueError:
        parts = _DURATION_PART.findall(text)
        if not text or "".join(num + unit for num, unit in parts) != text:
            raise ConfigError(f"invalid duration '{text}'") from None
        seconds = sum(float(num) * _UNIT_SECONDS[unit] for num, unit in parts)
    if not math.isfinite(seconds):
        raise ConfigError(f"invalid duration '{text}'")
    return seconds


@dataclass(frozen=True)
class Config:
    # Base URL of the server, e.g. http://localhost:9090
    server_url: str = field(
        default_factory=lambda: os.getenv("PROMETHEUS_URL", "")
    )
    # Absolute deadline for one request/response exchange
    timeout_seconds: float = field(
        default_factory=lambda: parse_duration(os.getenv("PROMQUERY_TIMEOUT", "1m"))
    )

    # Output
    output_format: str = field(
        default_factory=lambda: os.getenv("PROMQUERY_FORMAT", "csv")
    )
    csv_delimiter: str = field(
        default_factory=lambda: os.getenv("PROMQUERY_CSV_DELIMITER", ";")
    )

    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "WARNING")
    )

    def __post_init__(self):
        if not self.server_url:
            raise ConfigError("Please provide a server URL (--server or PROMETHEUS_URL)")
        try:
            url = httpx.URL(self.server_url)
        except httpx.InvalidURL as e:
            raise ConfigError(f"Invalid server URL '{self.server_url}': {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigError(
                f"Invalid server URL '{self.server_url}': expected http(s)://host[:port]"
            )
        if self.timeout_seconds <= 0:
            raise ConfigError("Timeout must be positive")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"Unknown output format '{self.output_format}' (choose from {', '.join(OUTPUT_FORMATS)})"
            )
        try:
            validate_delimiter(self.csv_delimiter)
        except OutputFormatError as e:
            raise ConfigError(str(e)) from e


def load_config(**overrides) -> Config:
    """Build a Config from the environment, with non-None overrides applied on top."""
    return Config(**{k: v for k, v in overrides.items() if v is not None})
