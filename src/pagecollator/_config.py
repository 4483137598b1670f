"""
Configuration for the pagecollator package.

This module provides a simple configuration system following Convention over Configuration (CoC).
Every value has a sensible default; callers only override what they need.

Hierarchy of precedence (highest to lowest):
1. Values passed explicitly (CLI options, `with_overrides()`)
2. Environment variables (PAGECOLLATOR_*)
3. Settings file (`appsettings.json`, sections "PageCollator" and "RateLimiting")
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from pagecollator import PageCollatorConfig
    >>> config = PageCollatorConfig.load(settings_file="appsettings.json")
    >>> config.rate_limiting.requests_per_second
    5
    >>> config = config.with_section_overrides(collator={"total_pages": 10})
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, ClassVar, Self

# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


class ConfigFileError(ValueError):
    """Raised when the settings file exists but cannot be parsed."""

    def __init__(self, path: Path, cause: Exception):
        self.path = path
        super().__init__(f"Invalid settings file '{path}': {cause}")
        self.__cause__ = cause


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("PAGECOLLATOR_TOTAL_PAGES", type_hint=int)
        397
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return lambda v: v.lower() in ("true", "1", "yes")
        return str


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Fields declare where they can be read from via metadata:
    `env` (environment variable name) and `json` (key in the settings file
    section named by SECTION_NAME).
    """

    SECTION_NAME: ClassVar[str] = ""

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Return a new instance with specified fields overridden.

        None values are ignored, so optional CLI options can be passed as-is.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(var_name=env_var, type_hint=f.type)
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)

    def with_settings(self, settings: dict[str, Any]) -> Self:
        """
        Return new instance with values from this class' settings file section.

        Args:
            settings: The whole parsed settings document.

        Raises:
            ConfigValidationError: If a value has the wrong type.
        """
        section = settings.get(self.SECTION_NAME) or {}
        if not isinstance(section, dict):
            raise ConfigValidationError(
                self.SECTION_NAME, section, "Must be a JSON object.", section=self.SECTION_NAME
            )

        overrides: dict[str, Any] = {}
        for f in fields(self):
            key = f.metadata.get("json")
            if key and key in section:
                overrides[f.name] = _coerce(section[key], f.type, f.name, self.SECTION_NAME)
        return self.with_overrides(overrides)


def _coerce(value: Any, type_hint: Any, field_name: str, section: str) -> Any:
    """Coerce a JSON value into the field type (ints stay ints, etc)."""
    type_str = str(type_hint)
    try:
        if type_hint is int or type_str == "int":
            if isinstance(value, bool):
                raise TypeError("booleans are not integers")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError("fractional values are not integers")
            return int(value)
        if type_hint is float or type_str == "float":
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(field_name, value, f"Expected {type_str}.", section=section) from e
    return value if value is None else str(value)


def read_settings_file(path: str | Path) -> dict[str, Any]:
    """
    Read an `appsettings.json`-style file.

    A missing file is not an error (the file is optional); it yields an empty dict.

    Raises:
        ConfigFileError: If the file exists but is not a JSON object.
    """
    settings_path = Path(path)
    if not settings_path.is_file():
        return {}

    try:
        with settings_path.open(mode="r", encoding="utf-8") as file:
            data = json.load(file)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigFileError(settings_path, e) from e

    if not isinstance(data, dict):
        raise ConfigFileError(settings_path, TypeError("top-level value must be a JSON object"))
    return data


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class RateLimitingConfig(OverridableConfig):
    """
    Rate limiting and retry configuration.

    Attributes:
        requests_per_second: Token bucket capacity and tokens added per second.
            Env var: PAGECOLLATOR_RATE_LIMITING_REQUESTS_PER_SECOND
            Settings file: RateLimiting.RequestsPerSecond

        max_retry_attempts: Retries after the first attempt.
            Env var: PAGECOLLATOR_RATE_LIMITING_MAX_RETRY_ATTEMPTS
            Settings file: RateLimiting.MaxRetryAttempts

        median_first_retry_delay_seconds: Median delay before the first retry.
            Later retries grow exponentially, with jitter.
            Env var: PAGECOLLATOR_RATE_LIMITING_MEDIAN_FIRST_RETRY_DELAY_SECONDS
            Settings file: RateLimiting.MedianFirstRetryDelaySeconds

        queue_limit: Requests allowed to wait for a token before failing fast.
            Env var: PAGECOLLATOR_RATE_LIMITING_QUEUE_LIMIT
            Settings file: RateLimiting.QueueLimit
    """

    SECTION_NAME: ClassVar[str] = "RateLimiting"

    requests_per_second: int = field(
        default=5,
        metadata={"env": "PAGECOLLATOR_RATE_LIMITING_REQUESTS_PER_SECOND", "json": "RequestsPerSecond"},
    )
    max_retry_attempts: int = field(
        default=5,
        metadata={"env": "PAGECOLLATOR_RATE_LIMITING_MAX_RETRY_ATTEMPTS", "json": "MaxRetryAttempts"},
    )
    median_first_retry_delay_seconds: int = field(
        default=2,
        metadata={
            "env": "PAGECOLLATOR_RATE_LIMITING_MEDIAN_FIRST_RETRY_DELAY_SECONDS",
            "json": "MedianFirstRetryDelaySeconds",
        },
    )
    queue_limit: int = field(
        default=500,
        metadata={"env": "PAGECOLLATOR_RATE_LIMITING_QUEUE_LIMIT", "json": "QueueLimit"},
    )

    def validate(self) -> Self:
        """Validate rate limiting configuration fields."""
        if self.requests_per_second <= 0:
            raise ConfigValidationError(
                "requests_per_second", self.requests_per_second,
                "Must be greater than 0.", section="rate_limiting"
            )
        if self.max_retry_attempts < 0:
            raise ConfigValidationError(
                "max_retry_attempts", self.max_retry_attempts,
                "Must be >= 0.", section="rate_limiting"
            )
        if self.median_first_retry_delay_seconds < 0:
            raise ConfigValidationError(
                "median_first_retry_delay_seconds", self.median_first_retry_delay_seconds,
                "Must be >= 0.", section="rate_limiting"
            )
        if self.queue_limit < 0:
            raise ConfigValidationError(
                "queue_limit", self.queue_limit,
                "Must be >= 0.", section="rate_limiting"
            )
        return self


@dataclass(frozen=True)
class CollatorConfig(OverridableConfig):
    """
    Run configuration: where to fetch from and where to write.

    Attributes:
        base_url: API endpoint; pages are fetched from `{base_url}/page/{n}`.
            Env var: PAGECOLLATOR_BASE_URL

        bearer_token: Token sent as `Authorization: Bearer ...`.
            Env var: PAGECOLLATOR_BEARER_TOKEN

        total_pages: Number of pages to fetch (1..total_pages).
            Env var: PAGECOLLATOR_TOTAL_PAGES

        output_file: Destination file, replaced if it exists.
            Env var: PAGECOLLATOR_OUTPUT_FILE

        request_timeout: Per-request timeout in seconds.
            Env var: PAGECOLLATOR_REQUEST_TIMEOUT

        progress_interval: Log progress every N pages (and on the last page).
            Env var: PAGECOLLATOR_PROGRESS_INTERVAL
    """

    SECTION_NAME: ClassVar[str] = "PageCollator"

    base_url: str | None = field(default=None, metadata={"env": "PAGECOLLATOR_BASE_URL", "json": "BaseUrl"})
    bearer_token: str | None = field(default=None, metadata={"env": "PAGECOLLATOR_BEARER_TOKEN"})
    total_pages: int = field(default=397, metadata={"env": "PAGECOLLATOR_TOTAL_PAGES", "json": "TotalPages"})
    output_file: str = field(
        default="output.json", metadata={"env": "PAGECOLLATOR_OUTPUT_FILE", "json": "OutputFilePath"}
    )
    request_timeout: float = field(
        default=300.0, metadata={"env": "PAGECOLLATOR_REQUEST_TIMEOUT", "json": "RequestTimeoutSeconds"}
    )
    progress_interval: int = field(
        default=10, metadata={"env": "PAGECOLLATOR_PROGRESS_INTERVAL", "json": "ProgressInterval"}
    )

    def validate(self) -> Self:
        """Validate run configuration fields."""
        if not self.base_url:
            raise ConfigValidationError("base_url", self.base_url, "API endpoint URL is required.", section="collator")
        if not (self.base_url.startswith("http://") or self.base_url.startswith("https://")):
            raise ConfigValidationError(
                "base_url", self.base_url,
                "Must start with 'http://' or 'https://'.", section="collator"
            )
        if not self.bearer_token:
            raise ConfigValidationError("bearer_token", "***", "Bearer token is required.", section="collator")
        if self.total_pages <= 0:
            raise ConfigValidationError(
                "total_pages", self.total_pages,
                "Must be greater than 0.", section="collator"
            )
        if not self.output_file:
            raise ConfigValidationError("output_file", self.output_file, "Must not be empty.", section="collator")
        if self.request_timeout <= 0:
            raise ConfigValidationError(
                "request_timeout", self.request_timeout,
                "Must be greater than 0.", section="collator"
            )
        if self.progress_interval <= 0:
            raise ConfigValidationError(
                "progress_interval", self.progress_interval,
                "Must be greater than 0.", section="collator"
            )
        return self


@dataclass(frozen=True)
class PageCollatorConfig:
    """
    Root configuration.

    Attributes:
        collator: Run configuration (URL, token, pages, output file).
        rate_limiting: Rate limiting and retry configuration.
    """

    collator: CollatorConfig = field(default_factory=CollatorConfig)
    rate_limiting: RateLimitingConfig = field(default_factory=RateLimitingConfig)

    @classmethod
    def load(cls, settings_file: str | Path | None = "appsettings.json") -> PageCollatorConfig:
        """
        Build configuration from defaults, the settings file and env vars.

        Args:
            settings_file: Optional settings file. Missing files are ignored.

        Raises:
            ConfigFileError: If the settings file cannot be parsed.
            ConfigEnvVarError: If an env var has an invalid value.
        """
        settings = read_settings_file(settings_file) if settings_file else {}
        return cls(
            collator=CollatorConfig().with_settings(settings).with_env_vars(),
            rate_limiting=RateLimitingConfig().with_settings(settings).with_env_vars(),
        )

    def with_section_overrides(
        self,
        collator: dict[str, Any] | None = None,
        rate_limiting: dict[str, Any] | None = None,
    ) -> PageCollatorConfig:
        """Return a new instance with per-section overrides applied."""
        return PageCollatorConfig(
            collator=self.collator.with_overrides(collator or {}),
            rate_limiting=self.rate_limiting.with_overrides(rate_limiting or {}),
        )

    def validate(self) -> PageCollatorConfig:
        """
        Validate all sections.

        Raises:
            ConfigValidationError: If any value is invalid.
        """
        self.collator.validate()
        self.rate_limiting.validate()
        return self
