"""
Engine configuration.

Settings come from environment variables prefixed ``VAT_ENGINE_`` (for
example ``VAT_ENGINE_VAT_RATE=0.15``). The VAT rate is published to the
engine as an immutable, numbered snapshot so each command works against
exactly one rate from start to finish.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from vat_engine.errors import ValidationError
from vat_engine.models import utc_now

logger = logging.getLogger(__name__)

DEFAULT_VAT_RATE = Decimal("0.20")


class EngineSettings(BaseSettings):
    """Process-wide settings loaded from the environment."""

    model_config = SettingsConfigDict(env_prefix="VAT_ENGINE_")

    vat_rate: Decimal = Field(
        default=DEFAULT_VAT_RATE,
        description="VAT rate as a decimal fraction, e.g. 0.20",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding vat_returns.json, transactions.json, vendors.json",
    )
    output_dir: Path = Field(
        default=Path("reports"),
        description="Directory export files are written to",
    )
    log_level: str = Field(default="WARNING")

    @field_validator("vat_rate")
    @classmethod
    def _rate_in_range(cls, value: Decimal) -> Decimal:
        if not Decimal("0") <= value < Decimal("1"):
            raise ValueError("vat_rate must be a fraction in [0, 1)")
        return value


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()


def validate_rate(rate: Any) -> Decimal:
    try:
        rate = Decimal(str(rate).strip())
    except InvalidOperation as e:
        raise ValidationError([f"VAT rate is not a number: {rate!r}"]) from e
    if not rate.is_finite() or not Decimal("0") <= rate < Decimal("1"):
        raise ValidationError([f"VAT rate must be in [0, 1), got {rate}"])
    return rate


@dataclass(frozen=True)
class RateSnapshot:
    """A published VAT rate."""

    rate: Decimal
    revision: int
    effective_at: datetime


class RateConfig:
    """
    Holder of the current VAT rate.

    Readers get a whole snapshot; a rate change publishes a new one and
    never alters earlier snapshots or anything computed from them.
    """

    def __init__(self, rate: Decimal = DEFAULT_VAT_RATE) -> None:
        self._lock = Lock()
        self._current = RateSnapshot(validate_rate(rate), 1, utc_now())

    def current(self) -> RateSnapshot:
        with self._lock:
            return self._current

    def set_rate(self, rate: Decimal) -> RateSnapshot:
        rate = validate_rate(rate)
        with self._lock:
            self._current = RateSnapshot(
                rate, self._current.revision + 1, utc_now()
            )
            snapshot = self._current
        logger.info("VAT rate set to %s (revision %d)", rate, snapshot.revision)
        return snapshot

    @classmethod
    def from_settings(cls, settings: Optional[EngineSettings] = None) -> "RateConfig":
        settings = settings or get_settings()
        return cls(settings.vat_rate)
