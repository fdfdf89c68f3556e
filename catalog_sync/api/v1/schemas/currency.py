# api/v1/schemas/currency.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class RatesOut(BaseModel):
    id: Optional[str] = None
    created_at: datetime
    currencies: List[str]
    rates: Dict[str, Dict[str, float]]


class RatesIn(BaseModel):
    rates: Dict[str, Dict[str, float]] = Field(..., description="rates[src][dst] = units of dst for one src")


class ConversionOut(BaseModel):
    amount: float
    src: str
    dst: str
    converted: float
    matrix_id: Optional[str] = None


class RatesVersionOut(BaseModel):
    id: Optional[str] = None
    created_at: datetime
    currencies: List[str]


class RatesHistoryOut(BaseModel):
    items: List[RatesVersionOut]
    count: int
