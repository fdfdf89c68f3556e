# catalog_sync/api/v1/routers/currency.py
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from catalog_sync.api.deps import currency_repo, currency_table
from catalog_sync.api.v1.schemas.currency import ConversionOut, RatesHistoryOut, RatesIn, RatesOut, RatesVersionOut
from catalog_sync.domain.errors import SourceUnavailable, StaleMatrix, UnknownCurrency
from catalog_sync.domain.models.currency import CurrencyMatrix
from catalog_sync.domain.services.currency_svc import convert

import logging
logger = logging.getLogger(__name__)

router = APIRouter(tags=["currency"])


def _rates_out(matrix: CurrencyMatrix) -> RatesOut:
    return RatesOut(
        id=matrix.id,
        created_at=matrix.created_at,
        currencies=sorted(matrix.currencies),
        rates=matrix.rates,
    )


@router.get("/currency/rates", response_model=RatesOut, summary="Current conversion matrix")
async def get_rates(table = Depends(currency_table)):
    try:
        return _rates_out(table.snapshot())
    except StaleMatrix as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/currency/rates/history", response_model=RatesHistoryOut,
            summary="Matrix versions loaded by this process, newest first")
async def get_rates_history(table = Depends(currency_table)):
    items = [
        RatesVersionOut(id=m.id, created_at=m.created_at, currencies=sorted(m.currencies))
        for m in reversed(table.history())
    ]
    return RatesHistoryOut(items=items, count=len(items))


@router.put("/currency/rates", response_model=RatesOut, summary="Install a new conversion matrix version")
async def put_rates(
    body: RatesIn,
    table = Depends(currency_table),
    repo = Depends(currency_repo),
):
    """
    Persists the full matrix as a new version and makes it current for this process.
    Other processes pick it up on their next refresh.
    """
    try:
        matrix = await repo.insert(body.rates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    table.load(matrix)
    logger.info("currency matrix %s installed via API", matrix.id)
    return _rates_out(matrix)


@router.get("/currency/convert", response_model=ConversionOut, summary="Convert an amount between currencies")
async def convert_amount(
    amount: float = Query(..., description="Amount in the source currency"),
    src: str = Query(..., alias="from", min_length=3, max_length=3),
    dst: str = Query(..., alias="to", min_length=3, max_length=3),
    table = Depends(currency_table),
):
    try:
        converted = convert(amount, src, dst, table)
    except UnknownCurrency as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StaleMatrix as e:
        raise HTTPException(status_code=503, detail=str(e))
    current = table.current
    return ConversionOut(
        amount=amount,
        src=src.upper(),
        dst=dst.upper(),
        converted=converted,
        matrix_id=current.id if current else None,
    )
