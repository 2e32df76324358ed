# utils/charts.py
import asyncio
import json
from typing import Any, Dict, List, Sequence

from utils.logging import logger
from stats.models import PaymentRow


class ChartsProvider:
    """Source of chart series shown next to the live statistics"""

    async def get_pool_charts_data(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_user_charts_data(self, address: str, payments: Sequence[PaymentRow]) -> Dict[str, Any]:
        raise NotImplementedError


def payments_chart(payments: Sequence[PaymentRow]) -> List[List[int]]:
    """[timestamp, amount] pairs, oldest first"""
    return [[payment.timestamp, payment.amount] for payment in sorted(payments, key=lambda p: p.timestamp)]


class StoredChartsProvider(ChartsProvider):
    """
    Reads chart series that the charts collector stores as JSON strings
    under `coin:charts:<name>` (pool) and `coin:charts:<name>:<address>` (user).
    """

    def __init__(self, store, pool_charts: Sequence[str], user_charts: Sequence[str]):
        self.store = store
        self.pool_charts = list(pool_charts)
        self.user_charts = list(user_charts)

    async def _load(self, key: str):
        raw = await self.store.get_json_text(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Chart data under {key} is not valid JSON")
            return None

    async def get_pool_charts_data(self) -> Dict[str, Any]:
        series = await asyncio.gather(*(self._load(self.store.keys.chart(name)) for name in self.pool_charts))
        return dict(zip(self.pool_charts, series))

    async def get_user_charts_data(self, address: str, payments: Sequence[PaymentRow]) -> Dict[str, Any]:
        series = await asyncio.gather(*(self._load(self.store.keys.chart(name, address)) for name in self.user_charts))
        charts = dict(zip(self.user_charts, series))
        charts["payments"] = payments_chart(payments)
        return charts
