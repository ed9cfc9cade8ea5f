"""Billing engine configuration."""

import os

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Behavioral settings for the billing core.

    Secrets live in Vault; this holds the knobs that are safe to keep in the
    environment.
    """

    # Public sharing
    public_base_url: str = Field(
        default="http://localhost:5173",
        description="Base URL of the client app; public links are {base}/invoice/{public_id}",
    )
    public_id_length: int = Field(default=12, ge=8, le=32)

    # Defaults for new organizations
    default_invoice_prefix: str = Field(default="INV", min_length=1, max_length=20)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)

    # Concurrency
    number_allocation_attempts: int = Field(
        default=5,
        description="Invoice inserts retried on invoice_number collisions",
        ge=1,
        le=50,
    )
    optimistic_retries: int = Field(
        default=5,
        description="Re-read/re-validate rounds when a versioned update loses a race",
        ge=1,
        le=50,
    )

    # Recurrence scheduler
    scheduler_interval_hours: int = Field(default=24, ge=1, le=168)
    scheduler_lock_key: str = Field(default="billing:lock:recurrence")
    scheduler_lock_ttl_seconds: int = Field(
        default=3600,
        description="Run-lock expiry; must exceed the longest expected run",
        ge=60,
    )
    scheduler_batch_size: int = Field(default=500, ge=1, le=10000)

    def public_url(self, public_id: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/invoice/{public_id}"

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Build config from BILLING_* environment variables, defaults elsewhere."""
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"BILLING_{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)
