# routes/pool/routes.py
from fastapi import APIRouter, Depends, Query, HTTPException, Request
from fastapi.responses import Response
from fastapi_cache.decorator import cache
from typing import Optional, List, Dict, Any

from config import settings
from database import StoreUnavailable
from dependencies import get_stats_service, verify_api_key
from stats.broadcast import pool_payload
from stats.models import NO_ADDRESS, ParticipantKey
from stats.resolver import NOT_FOUND
from stats.service import PoolStatsService
from utils.cache import POOL_CACHE
from utils.logging import logger

from .utils import json_response, raw_json_response, wait_for_payload, format_top_miners

router = APIRouter()

QUERY_FAILED = {"error": "Query failed"}


@router.get("/stats")
async def get_stats(
    address: Optional[str] = Query(None),
    service: PoolStatsService = Depends(get_stats_service)
):
    """Current pool snapshot, with the miner section filled in when an address is given"""
    current = service.cache.current()
    if current.snapshot is None:
        raise HTTPException(status_code=503, detail="Pool statistics have not been collected yet")
    data = pool_payload(current.snapshot.model_dump(mode="json"), current.metrics, address or NO_ADDRESS)
    return json_response(data)


@router.get("/live_stats")
async def get_live_stats(
    request: Request,
    address: Optional[str] = Query(None),
    service: PoolStatsService = Depends(get_stats_service)
):
    """Long-poll: answers with the next snapshot broadcast"""
    subscription = service.live_registry.subscribe(address or NO_ADDRESS)
    payload = await wait_for_payload(request, subscription, service.settings.LONGPOLL_DISCONNECT_POLL)
    if payload is None:
        return Response(status_code=204)
    return raw_json_response(payload)


@router.get("/stats_address")
async def get_address_stats(
    request: Request,
    address: Optional[str] = Query(None),
    longpoll: bool = Query(False),
    service: PoolStatsService = Depends(get_stats_service)
):
    """Worker-detail view of one address, now or (longpoll=true) after the next broadcast"""
    if not address:
        return json_response(NOT_FOUND)

    if not longpoll:
        payload = await service.resolver.resolve_or_not_found(address, service.cache.metrics)
        return json_response(payload)

    try:
        exists = await service.store.address_exists(address)
    except StoreUnavailable as e:
        logger.error(f"Error checking address {address}: {str(e)}")
        exists = False
    if not exists:
        return json_response(NOT_FOUND)

    subscription = service.address_registry.subscribe(address)
    payload = await wait_for_payload(request, subscription, service.settings.LONGPOLL_DISCONNECT_POLL)
    if payload is None:
        return Response(status_code=204)
    return raw_json_response(payload)


@router.get("/get_payments")
async def get_payments(
    address: Optional[str] = Query(None),
    time: Optional[int] = Query(None),
    service: PoolStatsService = Depends(get_stats_service)
):
    """Payments older than `time`, for the whole pool or one address"""
    try:
        payments = await service.store.fetch_payments(address, time, service.settings.PAYMENTS_PAGE_SIZE)
    except StoreUnavailable as e:
        logger.error(f"Error retrieving payments: {str(e)}")
        return json_response(QUERY_FAILED)
    return json_response([payment.model_dump() for payment in payments])


@router.get("/get_blocks")
async def get_blocks(
    height: Optional[int] = Query(None),
    service: PoolStatsService = Depends(get_stats_service)
):
    """Matured blocks below `height`"""
    try:
        blocks = await service.store.fetch_blocks(height, service.settings.BLOCKS_PAGE_SIZE)
    except StoreUnavailable as e:
        logger.error(f"Error retrieving blocks: {str(e)}")
        return json_response(QUERY_FAILED)
    return json_response([block.model_dump() for block in blocks])


@router.get("/get_top10miners")
@cache(expire=settings.LISTING_CACHE_EXPIRE, key_builder=POOL_CACHE)
async def get_top_miners(service: PoolStatsService = Depends(get_stats_service)) -> List[Dict[str, Any]]:
    """Ten miners with the highest current hashrate"""
    try:
        rows = await service.store.fetch_miner_activity()
    except StoreUnavailable as e:
        logger.error(f"Error collecting top 10 miners stats: {str(e)}")
        raise HTTPException(status_code=500, detail="Error collecting top 10 miners stats")
    return format_top_miners(rows, service.cache.metrics)


@router.get("/miners_hashrate", dependencies=[Depends(verify_api_key)])
async def get_miners_hashrate(service: PoolStatsService = Depends(get_stats_service)):
    """Current hashrate of every address (workers excluded)"""
    data = {
        key: metric.hashrate
        for key, metric in service.cache.metrics.items()
        if not ParticipantKey.parse(key).is_worker and metric.hashrate
    }
    return json_response({"minersHashrate": data})
