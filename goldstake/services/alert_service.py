"""
Alert service posting operator notifications to Discord webhooks.
"""

import asyncio
from enum import Enum
from typing import Dict, Optional, Set

import aiohttp
import structlog

from goldstake.core.config import settings

logger = structlog.get_logger(__name__)


class AlertLevel(str, Enum):
    """Alert severity, one webhook per level."""
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class AlertService:
    """Fire-and-forget Discord alerts.

    ``notify`` never blocks the caller and never raises: delivery failures are
    only logged. Alerts are dropped in development mode.
    """

    def __init__(
        self,
        webhooks: Optional[Dict[AlertLevel, Optional[str]]] = None,
        enabled: Optional[bool] = None,
        timeout: float = 10.0
    ):
        if webhooks is None:
            webhooks = {
                AlertLevel.INFO: settings.discord_webhook_info,
                AlertLevel.WARN: settings.discord_webhook_warn,
                AlertLevel.ERROR: settings.discord_webhook_error,
            }
        self.webhooks = webhooks
        self.enabled = (not settings.is_development) if enabled is None else enabled
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._pending: Set[asyncio.Task] = set()
        self.logger = logger.bind(service="alert_service")

    def notify(self, level: AlertLevel, message: str) -> None:
        """Schedule an alert without waiting for delivery."""
        level = AlertLevel(level)
        if not self.enabled or not self.webhooks.get(level):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("No running event loop, alert dropped", level=level.value)
            return

        task = loop.create_task(self.send(level, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send(self, level: AlertLevel, message: str) -> bool:
        """Post one alert and wait for the webhook to answer."""
        level = AlertLevel(level)
        webhook = self.webhooks.get(level)
        if not webhook:
            return False

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(webhook, json={"content": message}) as response:
                    if response.status >= 400:
                        self.logger.warning(
                            "Discord webhook rejected alert",
                            level=level.value,
                            status=response.status
                        )
                        return False
            return True

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error("Failed to send alert", level=level.value, error=str(e))
            return False

    async def drain(self) -> None:
        """Wait for alerts still in flight, used on shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
