from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .settings import settings

logger = logging.getLogger(__name__)


def send_webhook(url: str, payload: Dict[str, Any], timeout: float = 5.0) -> bool:
    try:
        resp = httpx.post(url, json=payload, timeout=timeout)
        resp.raise_for_status()
        return True
    except httpx.HTTPError as exc:
        logger.warning("Webhook delivery to %s failed: %s", url, exc)
        return False


class DemandNotificationPort(Protocol):
    def notify_demand_update(self, *, load_id: str, enable_notifications: bool, enable_llm_insights: bool) -> None:
        ...


class WebhookDemandNotifier:
    """Posts demand update events to ``DEMAND_WEBHOOK_URL``; a no-op when unset."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = settings.DEMAND_WEBHOOK_URL if url is None else url
        self.timeout = settings.DEMAND_WEBHOOK_TIMEOUT_SECONDS if timeout is None else timeout

    def notify_demand_update(self, *, load_id: str, enable_notifications: bool, enable_llm_insights: bool) -> None:
        if not self.url:
            return
        payload = {
            "event": "demand.updated",
            "load_id": load_id,
            "enable_notifications": enable_notifications,
            "enable_llm_insights": enable_llm_insights,
        }
        if not send_webhook(self.url, payload, timeout=self.timeout):
            raise RuntimeError(f"Demand notification webhook failed for load {load_id}")


def get_notifier() -> DemandNotificationPort:
    return WebhookDemandNotifier()
