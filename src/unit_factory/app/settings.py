"""Unit factory configuration settings.

FactorySettings is the single configuration object accepted by create_factory().
It is a plain dataclass (not env-coupled); tests construct it directly
without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

COMPLETION_DENOMINATOR_SNAPSHOT = "snapshot"
COMPLETION_DENOMINATOR_LIVE = "live"

_DENOMINATOR_POLICIES = frozenset({
    COMPLETION_DENOMINATOR_SNAPSHOT,
    COMPLETION_DENOMINATOR_LIVE,
})

DEFAULT_SERIAL_PREFIX = "SV"
DEFAULT_SERIAL_PAD_WIDTH = 5
DEFAULT_ALLOCATION_MAX_ATTEMPTS = 5
DEFAULT_APP_BASE_URL = "https://app.example.com"
DEFAULT_QR_BUCKET = "qr-codes"
DEFAULT_QR_SIZE_PX = 512


@dataclass(frozen=True, slots=True)
class FactorySettings:
    """Configuration for the provisioning and step-completion engine.

    All fields have sensible defaults for local development.
    Non-local environments must supply real values for supabase_url and
    supabase_service_role_key.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    """Supabase project URL (e.g. https://xyz.supabase.co)."""

    supabase_service_role_key: str = ""
    """Service-role key for PostgREST and Storage calls. Never log this."""

    supabase_timeout_seconds: float = 30.0

    # ── Serial numbers ─────────────────────────────────────────────
    serial_prefix: str = DEFAULT_SERIAL_PREFIX
    serial_pad_width: int = DEFAULT_SERIAL_PAD_WIDTH

    allocation_max_attempts: int = DEFAULT_ALLOCATION_MAX_ATTEMPTS
    """Bound on optimistic serial allocation attempts per create_unit."""

    # ── QR artifacts ───────────────────────────────────────────────
    app_base_url: str = DEFAULT_APP_BASE_URL
    """Base URL encoded in QR payloads as {app_base_url}/unit/{uuid}."""

    qr_bucket: str = DEFAULT_QR_BUCKET
    qr_size_px: int = DEFAULT_QR_SIZE_PX
    qr_mark_path: str = ""
    """Optional image embedded at the QR center. Empty uses a plain disc."""

    # ── Step completion ────────────────────────────────────────────
    completion_denominator: str = COMPLETION_DENOMINATOR_SNAPSHOT
    """'snapshot' freezes the step set at first completion; 'live' re-reads it."""

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
        if not self.serial_prefix or "-" in self.serial_prefix:
            errors.append("serial_prefix must be non-empty and contain no '-'")
        if self.serial_pad_width < 1:
            errors.append("serial_pad_width must be >= 1")
        if self.allocation_max_attempts < 1:
            errors.append("allocation_max_attempts must be >= 1")
        if self.qr_size_px < 21:
            errors.append("qr_size_px must be >= 21")
        if self.completion_denominator not in _DENOMINATOR_POLICIES:
            errors.append(
                "completion_denominator must be one of: "
                + ", ".join(sorted(_DENOMINATOR_POLICIES))
            )
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> FactorySettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct FactorySettings directly.
        """
        if env is None:
            env = dict(os.environ)

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            supabase_timeout_seconds=float(env.get("SUPABASE_TIMEOUT_SECONDS", "30")),
            serial_prefix=env.get("SERIAL_PREFIX", DEFAULT_SERIAL_PREFIX),
            serial_pad_width=int(env.get("SERIAL_PAD_WIDTH", DEFAULT_SERIAL_PAD_WIDTH)),
            allocation_max_attempts=int(
                env.get("ALLOCATION_MAX_ATTEMPTS", DEFAULT_ALLOCATION_MAX_ATTEMPTS)
            ),
            app_base_url=env.get("APP_BASE_URL", DEFAULT_APP_BASE_URL).rstrip("/"),
            qr_bucket=env.get("QR_BUCKET", DEFAULT_QR_BUCKET),
            qr_size_px=int(env.get("QR_SIZE_PX", DEFAULT_QR_SIZE_PX)),
            qr_mark_path=env.get("QR_MARK_PATH", ""),
            completion_denominator=env.get(
                "COMPLETION_DENOMINATOR", COMPLETION_DENOMINATOR_SNAPSHOT
            ),
        )
