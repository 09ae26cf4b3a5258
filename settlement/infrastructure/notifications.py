"""Best-effort order notifications.

Calls to the notification service are submitted to a thread pool and never
awaited by the request that triggered them; a failed call is logged and
dropped.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict

import httpx

from shared.core import get_logger

logger = get_logger(__name__)


class NotificationClient:
    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, payload: Dict[str, Any]) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(f"{self.base_url}{path}", json=payload)
            response.raise_for_status()

    def notify_buyer_order_confirmed(self, order: Dict[str, Any]) -> None:
        self._post("/notifications/buyer/order-confirmed", order)

    def notify_seller_new_order(self, order: Dict[str, Any]) -> None:
        self._post("/notifications/seller/new-order", order)


class NotificationDispatcher:
    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(self._run, fn, *args)

    @staticmethod
    def _run(fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(
                "Notification dispatch failed",
                extra={"extra_fields": {"task": getattr(fn, "__name__", repr(fn))}},
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
