# utils/cache.py
from typing import Any, Callable, Dict, Optional, Tuple
from fastapi import Request, Response
from fastapi_cache import FastAPICache
from fastapi_cache.backends.redis import RedisBackend
from fastapi_cache.coder import Coder
from redis import asyncio as aioredis
import hashlib
import json
from decimal import Decimal
import datetime
from pydantic import BaseModel


class JSONEncoder(json.JSONEncoder):
    """JSON encoder for pydantic rows and the odd Decimal / datetime"""
    def default(self, obj):
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, bytes):
            return obj.decode('utf-8')
        return super().default(obj)


class CustomCoder(Coder):
    """Stores cached responses as plain JSON text, whatever the backend hands back"""
    @classmethod
    def decode(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            return json.loads(value)
        return value

    @classmethod
    def decode_as_type(cls, value: Any, *, type_: Optional[Any]) -> Any:
        return cls.decode(value)

    @classmethod
    def encode(cls, value: Any) -> str:
        return json.dumps(value, cls=JSONEncoder)


def is_json_serializable(obj: Any) -> bool:
    try:
        json.dumps(obj, cls=JSONEncoder)
        return True
    except (TypeError, ValueError, OverflowError):
        return False


def create_cache_key_builder(namespace: str) -> Callable:
    """Creates a cache key builder that only looks at plain query parameters"""
    def key_builder(
        func: Callable,
        namespace: str = namespace,
        *,
        request: Optional[Request] = None,
        response: Optional[Response] = None,
        args: Tuple[Any, ...] = (),
        kwargs: Optional[Dict[str, Any]] = None,
    ) -> str:
        cache_params = {}
        for key, value in (kwargs or {}).items():
            # Skip injected services, requests and anything else that is not a parameter
            if (
                not isinstance(value, (Request, Response))
                and not key.startswith("_")
                and is_json_serializable(value)
            ):
                cache_params[key] = value

        param_str = json.dumps(cache_params, sort_keys=True, cls=JSONEncoder)
        param_hash = hashlib.md5(param_str.encode()).hexdigest()[:8]
        return f"{namespace}:{func.__module__}:{func.__name__}:{param_hash}"

    return key_builder


# Cache key builder for the listing endpoints
POOL_CACHE = create_cache_key_builder("pool")


def setup_cache(redis: aioredis.Redis, coin: str):
    """Initialize the Redis response cache on the shared client"""
    FastAPICache.init(
        RedisBackend(redis),
        prefix=f"{coin}:api-cache:",
        key_builder=POOL_CACHE,
        coder=CustomCoder
    )
