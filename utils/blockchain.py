import aiohttp
import asyncio
import time
from typing import Any, Dict, Optional

from utils.logging import logger
from stats.models import NetworkInfo


class DaemonUnavailable(Exception):
    """The coin daemon did not answer with a usable block header"""

    def __init__(self, method: str, elapsed_ms: float, reason: str):
        self.method = method
        self.elapsed_ms = elapsed_ms
        super().__init__(f"Daemon call '{method}' failed after {elapsed_ms:.0f} ms: {reason}")


class DaemonClient:
    """
    Minimal JSON-RPC client for the coin daemon.

    Args:
        url: The daemon's json_rpc endpoint
        timeout: Seconds before a call is given up
    """

    def __init__(self, url: str, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": "0", "method": method, "params": params or {}}
        start_time = time.monotonic()

        def failure(reason: str) -> DaemonUnavailable:
            return DaemonUnavailable(method, (time.monotonic() - start_time) * 1000, reason)

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status != 200:
                        raise failure(f"HTTP {response.status}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise failure(str(e) or e.__class__.__name__) from e

        if not isinstance(data, dict):
            raise failure("malformed response")
        if data.get("error"):
            raise failure(f"RPC error {data['error']}")
        if "result" not in data:
            raise failure("response without result")
        return data["result"]

    async def get_latest_block_header(self) -> NetworkInfo:
        """Current chain head: difficulty, height, timestamp, reward and hash"""
        start_time = time.monotonic()
        result = await self.call("getlastblockheader")
        elapsed_ms = (time.monotonic() - start_time) * 1000
        header = result.get("block_header") if isinstance(result, dict) else None
        if not header:
            raise DaemonUnavailable("getlastblockheader", elapsed_ms, "no block_header in result")
        try:
            return NetworkInfo(
                difficulty=header["difficulty"],
                height=header["height"],
                timestamp=header["timestamp"],
                reward=header["reward"],
                hash=header["hash"],
            )
        except (KeyError, ValueError) as e:
            logger.debug(f"Unexpected block header from daemon: {header}")
            raise DaemonUnavailable("getlastblockheader", elapsed_ms, f"bad block header: {e}") from e
