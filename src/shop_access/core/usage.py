"""Usage logging for calls made with an API key."""

import logging

import anyio
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from shop_access.core.database import Database
from shop_access.core.models import UsageLog

logger = logging.getLogger("usage")


class UsageLogger:
    """Writes one ``UsageLog`` row per proxied call. Failures are logged and dropped."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def record(self, api_key_id: str, endpoint: str, method: str, status_code: int) -> None:
        db = self.database.session()
        try:
            db.add(
                UsageLog(
                    api_key_id=api_key_id,
                    endpoint=endpoint,
                    method=method,
                    status_code=status_code,
                )
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                "Failed to log API usage for key %s on %s %s: %s: %s",
                api_key_id,
                method,
                endpoint,
                type(e).__name__,
                e,
            )
        finally:
            db.close()


class UsageLoggingMiddleware:
    """
    Records usage after the response has been sent.

    The final status is taken from the ``http.response.start`` message. The
    API key id is whatever the key resolution dependency left in the request
    state; requests without one are not recorded.
    """

    def __init__(self, app: ASGIApp, usage_logger: UsageLogger) -> None:
        self.app = app
        self.usage_logger = usage_logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # request.state writes into this dict
        state = scope.setdefault("state", {})
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            api_key_id = state.get("api_key_id")
            if api_key_id:
                await self._record(api_key_id, scope["path"], scope["method"], status_code)

    async def _record(self, api_key_id: str, endpoint: str, method: str, status_code: int) -> None:
        try:
            await anyio.to_thread.run_sync(
                self.usage_logger.record, api_key_id, endpoint, method, status_code
            )
        except Exception as e:
            logger.error("Usage logging task failed: %s: %s", type(e).__name__, e)
