# api.py
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from fastapi_limiter import FastAPILimiter
import asyncio
import uvicorn
from typing import Dict, Any
import psutil
import time

from database import RedisPool
from routes import general
from routes.pool import routes as pool_routes
from middleware import setup_middleware
from stats.service import PoolStatsService, create_service
from utils.cache import setup_cache
from utils.logging import logger, start_telegram_handler, stop_telegram_handler
from config import settings


async def monitor_system_health(service: PoolStatsService):
    """Watch process resources and the freshness of the cached snapshot"""
    unhealthy_count = 0
    process = psutil.Process()
    while True:
        try:
            cpu_percent = process.cpu_percent(interval=None)
            memory = psutil.virtual_memory()
            snapshot_age = service.cache.age()

            metrics = {
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
                "rss_mb": round(process.memory_info().rss / 1024 / 1024, 1),
                **service.health(),
            }

            reasons = []
            if memory.percent > 90:
                reasons.append(f"Memory usage critical: {memory.percent}%")
            if snapshot_age is None:
                reasons.append("No snapshot collected yet")
            elif snapshot_age > settings.MAX_SNAPSHOT_AGE:
                reasons.append(f"Snapshot is {snapshot_age:.0f}s old")

            if reasons:
                unhealthy_count += 1
                logger.warning(f"Stats service degraded: {metrics}\nReasons: {', '.join(reasons)}")
                if unhealthy_count >= settings.MAX_UNHEALTHY_COUNT:
                    logger.error(
                        f"Stats service consistently unhealthy!\nMetrics: {metrics}\n"
                        f"Reasons: {', '.join(reasons)}"
                    )
                    # Reset counter to avoid spam
                    unhealthy_count = 0
            else:
                unhealthy_count = 0
                logger.debug(f"Stats service healthy - Metrics: {metrics}")

            await asyncio.sleep(settings.HEALTH_CHECK_INTERVAL)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in health monitoring: {str(e)}")
            await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect to Redis, start the aggregation loop, tear everything down on exit"""
    redis = await RedisPool.get_client()
    start_telegram_handler(RedisPool.current)
    setup_cache(redis, settings.COIN)
    await FastAPILimiter.init(redis)

    service = create_service(redis, settings)
    app.state.stats_service = service
    service.start()
    monitor_task = asyncio.create_task(monitor_system_health(service))
    logger.info("Application startup completed successfully")

    try:
        yield
    finally:
        logger.info("Starting application shutdown")
        monitor_task.cancel()
        await asyncio.gather(monitor_task, return_exceptions=True)
        await service.stop()
        app.state.stats_service = None
        await stop_telegram_handler()
        await RedisPool.close()
        logger.info("Application shutdown completed")


def create_application(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title=f"{settings.SYMBOL} Pool Stats API",
        description="Live mining pool statistics with long-poll broadcast feeds",
        version=settings.VERSION,
        lifespan=lifespan if use_lifespan else None
    )

    origins = ["*"]
    if not settings.DEBUG and settings.ALLOWED_ORIGINS:
        origins = settings.ALLOWED_ORIGINS.split(',')

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,  # Cache preflight requests for 24 hours
    )

    app.include_router(general.router)
    app.include_router(pool_routes.router)

    setup_middleware(app)

    @app.get("/health")
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint for the API"""
        service = getattr(request.app.state, "stats_service", None)
        if service is None:
            raise HTTPException(status_code=503, detail="Stats service is not running")
        age = service.cache.age()
        return {
            "status": "healthy" if age is not None and age <= settings.MAX_SNAPSHOT_AGE else "degraded",
            "stats": service.health(),
            "redis": RedisPool.get_pool_stats(),
            "time": int(time.time()),
            "version": settings.VERSION,
        }

    return app


# Create the application instance
app = create_application()

if __name__ == "__main__":
    # In-process snapshot and subscriber registries: one worker only
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=8117,
        workers=1,
        loop="uvloop",
        timeout_keep_alive=30,
        access_log=False
    )
