from __future__ import annotations
import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, field_validator

from catalog_sync.domain.errors import UnknownCurrency

# Currencies the marketplace prices in; the matrix itself may carry more
SUPPORTED_CURRENCIES: FrozenSet[str] = frozenset({"RUB", "EUR", "USD", "BTC", "ETH", "STQ"})


class CurrencyMatrix(BaseModel):
    """
    One immutable version of the conversion matrix.
    rates[src][dst] = units of `dst` for one unit of `src`; a literal table, never symmetrized.
    """
    id: Optional[str] = None
    created_at: datetime
    rates: Dict[str, Dict[str, float]]
    model_config = {"frozen": True}

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @field_validator("rates", mode="before")
    @classmethod
    def _normalize_codes(cls, value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            value = json.loads(value)
        if not isinstance(value, dict):
            return value
        return {
            str(src).upper(): ({str(dst).upper(): rate for dst, rate in row.items()} if isinstance(row, dict) else row)
            for src, row in value.items()
        }

    @field_validator("rates")
    @classmethod
    def _positive_finite(cls, value: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        for src, row in value.items():
            for dst, rate in row.items():
                if not math.isfinite(rate) or rate <= 0:
                    raise ValueError(f"rate {src}->{dst} must be a positive finite number, got {rate}")
        return value

    @property
    def currencies(self) -> FrozenSet[str]:
        return frozenset(self.rates)

    def rate(self, src: str, dst: str) -> float:
        row = self.rates.get(src)
        if row is None:
            raise UnknownCurrency(src)
        if dst not in self.rates or dst not in row:
            raise UnknownCurrency(dst)
        return row[dst]
