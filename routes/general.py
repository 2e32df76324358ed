# routes/general.py
from fastapi import APIRouter, Depends
from fastapi_limiter.depends import RateLimiter

from config import settings

router = APIRouter()


@router.get("/", dependencies=[Depends(RateLimiter(times=10, seconds=60))])
async def root():
    return {
        "app": f"{settings.SYMBOL} Pool Stats API",
        "version": settings.VERSION,
        "status": "operational"
    }
