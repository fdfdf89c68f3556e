# catalog_sync/domain/services/rates_ticker_svc.py
from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Mapping

import requests

from catalog_sync.domain.models.currency import SUPPORTED_CURRENCIES
from catalog_sync.domain.services.currency_svc import CurrencyTable

logger = logging.getLogger(__name__)

Rates = Dict[str, Dict[str, float]]


def _quote(info: Mapping[str, Any], field: str) -> float:
    try:
        return float(info[field])
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"quote field {field!r} missing or not a number: {info.get(field)!r}") from e


def fold_exmo_pairs(payload: Mapping[str, Mapping[str, Any]]) -> Rates:
    """
    Fold an EXMO ticker payload ({"BTC_USD": {"buy_price": ..., "sell_price": ...}, ...})
    into a conversion matrix, rates[src][dst] = units of dst for one src.

    For a pair L_R:
        rates[L][R] = buy_price        (R received for one L)
        rates[R][L] = 1 / sell_price   (L received for one R)
    Pairs with a zero quote or a currency outside SUPPORTED_CURRENCIES are skipped.
    ETH <-> STQ is derived through USD when the exchange does not quote it.
    """
    rates: Rates = {}
    for name, info in payload.items():
        codes = name.split("_")
        if len(codes) != 2:
            raise ValueError(f"Failed to parse currency pair {name!r}")
        left, right = codes[0].upper(), codes[1].upper()
        buy, sell = _quote(info, "buy_price"), _quote(info, "sell_price")

        if buy == 0 or sell == 0:
            continue
        if left not in SUPPORTED_CURRENCIES or right not in SUPPORTED_CURRENCIES:
            continue

        rates.setdefault(left, {left: 1.0})
        rates.setdefault(right, {right: 1.0})
        if left == right:
            continue
        rates[left][right] = buy
        rates[right][left] = 1.0 / sell

    usd_per_eth = rates.get("ETH", {}).get("USD")
    usd_per_stq = rates.get("STQ", {}).get("USD")
    if usd_per_eth and usd_per_stq:
        rates["ETH"].setdefault("STQ", usd_per_eth / usd_per_stq)
        rates["STQ"].setdefault("ETH", usd_per_stq / usd_per_eth)
    return rates


def fetch_exmo_payload(url: str, timeout: float) -> Dict[str, Any]:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"Unrecognized ticker response: expected an object, got {type(data).__name__}")
    return data


async def update_rates_from_ticker(url: str, repo, table: CurrencyTable, *, timeout: float = 15) -> bool:
    """Fetch quotes, persist them as a new matrix version and install it. Returns False when nothing usable came back."""
    payload = await asyncio.to_thread(fetch_exmo_payload, url, timeout)
    logger.debug("ticker payload pairs=%d", len(payload))
    rates = fold_exmo_pairs(payload)
    if not rates:
        logger.warning("ticker returned no usable currency pairs")
        return False
    matrix = await repo.insert(rates)
    table.load(matrix)
    return True


async def run_rates_ticker(
    url: str,
    repo,
    table: CurrencyTable,
    *,
    interval_s: float,
    timeout_s: float,
    stop: asyncio.Event,
) -> None:
    logger.info("rates ticker started url=%s interval=%ss", url, interval_s)
    while not stop.is_set():
        logger.info("updating currency pairs")
        try:
            if await update_rates_from_ticker(url, repo, table, timeout=timeout_s):
                logger.info("currency pairs updated")
        except Exception as e:
            logger.error("currency pairs update failed: %s", e)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            pass
    logger.info("rates ticker stopped")
