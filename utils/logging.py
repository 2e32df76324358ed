# utils/logging.py
import logging
import telegram
import asyncio
from typing import Callable, Optional
from config import settings
from redis import asyncio as aioredis
import hashlib


class TelegramHandler(logging.Handler):
    """Forwards ERROR and CRITICAL records to a Telegram chat.

    Similar errors are counted in Redis and suppressed once they exceed
    MAX_SIMILAR_NOTIFICATIONS inside NOTIFICATION_WINDOW seconds.
    """

    def __init__(self, token: str, chat_id: str, level: int = logging.ERROR):
        super().__init__(level)
        self.bot = telegram.Bot(token=token)
        self.chat_id = chat_id
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._redis_getter: Optional[Callable[[], aioredis.Redis]] = None
        self._notification_window = settings.NOTIFICATION_WINDOW
        self._max_similar_notifications = settings.MAX_SIMILAR_NOTIFICATIONS

    def _get_error_key(self, record: logging.LogRecord) -> str:
        error_content = f"{record.levelname}:{record.module}:{record.funcName}:{record.msg}"
        return f"{settings.COIN}:alerts:{hashlib.md5(error_content.encode()).hexdigest()}"

    async def _should_send_notification(self, record: logging.LogRecord) -> bool:
        if self._redis_getter is None:
            return True
        redis = self._redis_getter()
        error_key = self._get_error_key(record)
        count = await redis.incr(error_key)
        if count == 1:
            await redis.expire(error_key, self._notification_window)

        if count <= self._max_similar_notifications:
            return True
        if count == self._max_similar_notifications + 1:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=(
                    f"*Rate Limited*\nSimilar {settings.COIN} pool errors are being suppressed "
                    f"for {self._notification_window // 60} minutes."
                ),
                parse_mode="Markdown",
            )
        return False

    async def _sender(self):
        while True:
            record = await self._queue.get()
            try:
                if await self._should_send_notification(record):
                    message = self.format(record)
                    if len(message) > 4000:
                        message = message[:3997] + "..."
                    await self.bot.send_message(
                        chat_id=self.chat_id,
                        text=f"*{settings.SYMBOL} pool stats ALERT*\n```\n{message}\n```",
                        parse_mode="Markdown",
                    )
            except Exception as e:
                # Never route this through the logger itself
                print(f"Error sending Telegram message: {e}")
            finally:
                self._queue.task_done()

    def emit(self, record):
        if self._queue is None:
            return
        try:
            self._queue.put_nowait(record)
        except Exception:
            self.handleError(record)

    def start(self, redis_getter: Optional[Callable[[], aioredis.Redis]] = None):
        """Start the background sender task (needs a running event loop)"""
        self._redis_getter = redis_getter
        if not self._task:
            self._queue = asyncio.Queue()
            self._task = asyncio.create_task(self._sender())

    async def stop(self):
        if self._task:
            self._task.cancel()
            self._task = None
        self._queue = None
        self._redis_getter = None


# Create logger
logger = logging.getLogger("pool-stats")
logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

# Console handler
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.DEBUG)
formatter = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
console_handler.setFormatter(formatter)
logger.addHandler(console_handler)

telegram_handler: Optional[TelegramHandler] = None

# Telegram handler (only for ERROR and CRITICAL)
if settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
    telegram_handler = TelegramHandler(
        token=settings.TELEGRAM_BOT_TOKEN,
        chat_id=settings.TELEGRAM_CHAT_ID,
        level=logging.ERROR
    )
    telegram_handler.setFormatter(formatter)
    logger.addHandler(telegram_handler)


def start_telegram_handler(redis_getter: Optional[Callable[[], aioredis.Redis]] = None):
    if telegram_handler is not None:
        telegram_handler.start(redis_getter)


async def stop_telegram_handler():
    if telegram_handler is not None:
        await telegram_handler.stop()
