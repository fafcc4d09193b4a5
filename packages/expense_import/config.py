"""Typed configuration for the import pipeline.

Every tunable the pipeline reads lives on one of these models with a
documented default. Models are frozen; derive variants with
``model.model_copy(update={...})``.
"""

from __future__ import annotations

import os
from datetime import date
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DateFormat = Literal["auto", "MM/DD/YYYY", "DD/MM/YYYY"]

DEFAULT_CATEGORY_KEYS: tuple[str, ...] = ("food", "groceries", "transport", "home", "fun", "other")
MAX_IMPORT_TRANSACTIONS = 1000


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RetryPolicy(_Frozen):
    """Exponential backoff for transient failures.

    Delay for attempt ``n`` (0-based) is ``min(initial_delay * multiplier**n,
    max_delay)`` plus up to ``jitter_ratio`` of that delay at random.
    """

    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    jitter_ratio: float = Field(default=0.3, ge=0, le=1)
    retryable_markers: tuple[str, ...] = (
        "network",
        "timeout",
        "timed out",
        "unavailable",
        "deadline-exceeded",
        "deadline exceeded",
        "resource-exhausted",
        "resource exhausted",
        "connection reset",
        "temporarily",
    )


class DuplicateOptions(_Frozen):
    """Duplicate detector gates, weights and policy bands."""

    strict_date: bool = False
    date_tolerance_days: int = Field(default=2, ge=0)
    amount_tolerance_pct: float = Field(default=1.0, ge=0)
    description_similarity: float = Field(default=0.8, ge=0, le=1)
    partial_similarity: float = Field(default=0.5, ge=0, le=1)
    # Same-day, identical-amount repeats count as duplicates on a partial
    # description match.
    exact_repeat_override: bool = True
    lookback_days: int = Field(default=90, ge=0)
    high_confidence: float = Field(default=0.8, ge=0, le=1)
    auto_skip_confidence: float = Field(default=0.95, ge=0, le=1)

    @model_validator(mode="after")
    def _bands_ordered(self) -> DuplicateOptions:
        if self.auto_skip_confidence < self.high_confidence:
            raise ValueError("auto_skip_confidence must be >= high_confidence")
        return self


class TransactionFilters(_Frozen):
    start_date: date | None = None
    end_date: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    exclude_credits: bool = False
    exclude_descriptions: tuple[str, ...] = ()


class SplitConfig(_Frozen):
    """How an expense is shared between the two partners.

    Values are intentionally not range-checked here: an unusable split falls
    back to 50/50 with a warning at mapping time instead of failing the import.
    """

    type: str = "50/50"
    percentage: Decimal | None = None


class ImportConfig(_Frozen):
    """Per-run settings for processing parsed transactions into expenses."""

    couple_id: str
    paid_by: str
    partner_id: str
    split: SplitConfig = SplitConfig()
    default_category_key: str = "other"
    available_categories: tuple[str, ...] = DEFAULT_CATEGORY_KEYS
    custom_keywords: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    # source_ref -> category key, set by the user during preview.
    category_overrides: dict[str, str] = Field(default_factory=dict)
    filters: TransactionFilters = TransactionFilters()
    detect_duplicates: bool = True
    skip_auto_duplicates: bool = True
    duplicates: DuplicateOptions = DuplicateOptions()
    primary_currency: str = "USD"
    # Overrides any currency detected in the file.
    currency: str | None = None
    exchange_rates: dict[str, Decimal] = Field(default_factory=dict)
    date_format: DateFormat = "auto"
    max_transactions: int = Field(default=MAX_IMPORT_TRANSACTIONS, gt=0)

    @field_validator("couple_id", "paid_by", "partner_id")
    @classmethod
    def _non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty identifier")
        return v.strip()

    @field_validator("available_categories")
    @classmethod
    def _has_categories(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("at least one category must be available")
        return v

    @field_validator("primary_currency", "currency")
    @classmethod
    def _iso_code(cls, v: str | None) -> str | None:
        if v is None:
            return None
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"not an ISO 4217 currency code: {v!r}")
        return code

    @field_validator("exchange_rates")
    @classmethod
    def _positive_rates(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        out: dict[str, Decimal] = {}
        for code, rate in v.items():
            if rate <= 0:
                raise ValueError(f"exchange rate for {code} must be positive")
            out[code.upper()] = rate
        return out

    @model_validator(mode="after")
    def _partner_differs(self) -> ImportConfig:
        if self.partner_id == self.paid_by:
            raise ValueError("partner_id must differ from paid_by")
        return self


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


class EngineSettings(_Frozen):
    """Settings for the batch import engine.

    ``batch_size`` of ``None`` uses the store's own per-call operation limit;
    a configured value is still capped by that limit.
    """

    batch_size: int | None = Field(default=None, gt=0)
    integrity_sample_size: int = Field(default=5, ge=0)
    retry: RetryPolicy = RetryPolicy()

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Build settings from ``EXPENSE_IMPORT_*`` environment variables."""

        values: dict[str, object] = {}
        if (batch := _env_int("EXPENSE_IMPORT_BATCH_SIZE")) is not None:
            values["batch_size"] = batch
        if (retries := _env_int("EXPENSE_IMPORT_MAX_RETRIES")) is not None:
            values["retry"] = RetryPolicy(max_retries=retries)
        return cls.model_validate(values)


__all__ = [
    "DEFAULT_CATEGORY_KEYS",
    "MAX_IMPORT_TRANSACTIONS",
    "DateFormat",
    "DuplicateOptions",
    "EngineSettings",
    "ImportConfig",
    "RetryPolicy",
    "SplitConfig",
    "TransactionFilters",
]
