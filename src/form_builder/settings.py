from __future__ import annotations

import os
from dataclasses import dataclass

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    out_root: str = "generated"
    image_tag: str = "latest"
    provider_timeout: int = 120
    provider_max_retries: int = 3
    max_completion_tokens: int = 600
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            out_root=os.getenv("FORM_BUILDER_OUT_ROOT", "generated"),
            image_tag=os.getenv("FORM_BUILDER_IMAGE_TAG", "latest"),
            provider_timeout=_get_env_int("FORM_BUILDER_PROVIDER_TIMEOUT", default=120, minimum=1, maximum=3_600),
            provider_max_retries=_get_env_int("FORM_BUILDER_PROVIDER_MAX_RETRIES", default=3, minimum=0, maximum=20),
            max_completion_tokens=_get_env_int("FORM_BUILDER_MAX_COMPLETION_TOKENS", default=600, minimum=1),
            log_level=os.getenv("FORM_BUILDER_LOG_LEVEL", "INFO"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        out_root = self.out_root.strip()
        if not out_root:
            raise ValueError("FORM_BUILDER_OUT_ROOT must be non-empty")

        image_tag = self.image_tag.strip()
        if not image_tag:
            raise ValueError("FORM_BUILDER_IMAGE_TAG must be non-empty")
        if any(ch.isspace() for ch in image_tag):
            raise ValueError(f"FORM_BUILDER_IMAGE_TAG must not contain whitespace, got: {image_tag!r}")

        log_level = self.log_level.strip().upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(f"FORM_BUILDER_LOG_LEVEL must be one of: {', '.join(sorted(LOG_LEVELS))}")

        return RuntimeSettings(
            out_root=out_root,
            image_tag=image_tag,
            provider_timeout=self.provider_timeout,
            provider_max_retries=self.provider_max_retries,
            max_completion_tokens=self.max_completion_tokens,
            log_level=log_level,
        )


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
