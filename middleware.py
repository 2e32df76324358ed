# middleware.py
from fastapi import FastAPI, Request
from utils.logging import logger
import time

# Long-poll endpoints legitimately stay open for a whole aggregation interval
LONGPOLL_PATHS = ("/live_stats", "/stats_address")


async def add_process_time_header(request: Request, call_next):
    """Middleware to track request processing time"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


class LoggingMiddleware:
    """Middleware for request logging"""
    def __init__(self, app: FastAPI, slow_request_seconds: float = 2.0):
        self.app = app
        self.slow_request_seconds = slow_request_seconds

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        start_time = time.time()

        async def wrapped_send(message):
            if message["type"] == "http.response.start":
                process_time = time.time() - start_time
                status_code = message["status"]
                text = (
                    f"Request: {scope['method']} {scope['path']} "
                    f"Status: {status_code} "
                    f"Duration: {process_time:.3f}s"
                )
                if scope["path"] in LONGPOLL_PATHS:
                    logger.debug(text)
                elif process_time > self.slow_request_seconds:
                    logger.warning(f"Slow {text}")
                else:
                    logger.info(text)
            await send(message)

        return await self.app(scope, receive, wrapped_send)


def setup_middleware(app: FastAPI):
    """Setup all middleware for the application"""
    # CORS middleware is already added in create_application()
    app.middleware("http")(add_process_time_header)
    app.add_middleware(LoggingMiddleware)

    logger.info("Middleware setup completed")
