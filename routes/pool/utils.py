# routes/pool/utils.py
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import Response

from stats.broadcast import encode_payload
from stats.keys import mask_address
from stats.models import TopMiner
from stats.registry import Subscription
from utils.logging import logger

NO_CACHE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-cache",
}


def json_response(data: Any) -> Response:
    """JSON response with the no-cache headers every stats endpoint sends"""
    return raw_json_response(encode_payload(data))


def raw_json_response(payload: str) -> Response:
    return Response(content=payload, media_type="application/json", headers=NO_CACHE_HEADERS)


async def wait_for_payload(request: Request, subscription: Subscription, poll_interval: float) -> Optional[str]:
    """
    Hold a long-poll request open until the next broadcast delivers to it.

    Returns None if the client went away first. The subscription is closed
    on every exit path, including cancellation of the request task.
    """
    try:
        while True:
            finished, payload = await subscription.wait(timeout=poll_interval)
            if finished:
                return payload
            if await request.is_disconnected():
                logger.debug(
                    f"{subscription.registry.name} subscriber {subscription.key} disconnected before delivery"
                )
                return None
    finally:
        subscription.close()


def format_top_miners(rows, metrics, limit: int = 10):
    """Top miners by current hashrate, addresses masked"""
    miners = []
    for address, last_share, hashes in rows:
        metric = metrics.get(address)
        miners.append(TopMiner(
            miner=mask_address(address),
            hashrate=metric.hashrate if metric else 0,
            lastShare=_optional_int(last_share),
            hashes=_optional_int(hashes),
        ))
    miners.sort(key=lambda miner: miner.hashrate, reverse=True)
    return [miner.model_dump() for miner in miners[:limit]]


def _optional_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None
