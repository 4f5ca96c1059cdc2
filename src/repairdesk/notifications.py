from __future__ import annotations

import logging
import threading
import time
from enum import StrEnum
from queue import Queue
from typing import Any, Protocol

import requests

from .config import NotificationConfig
from .repositories.base import Repository

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class EventType(StrEnum):
    SERVICE_ASSIGNED = "service_assigned"
    SERVICE_COMPLETED = "service_completed"
    SERVICE_CANCELED = "service_canceled"
    PARTS_ALLOCATED = "parts_allocated"
    PARTS_REMOVED = "parts_removed"
    CLIENT_NOT_AVAILABLE = "client_not_available"


class NotificationDispatcher(Protocol):
    def notify(self, event_type: str, payload: dict[str, Any]) -> None: ...


def dispatch(dispatcher: NotificationDispatcher | None, event_type: EventType, payload: dict[str, Any]) -> None:
    """Hand an event to the dispatcher; a failing dispatcher never fails the caller."""
    if dispatcher is None:
        return
    try:
        dispatcher.notify(event_type.value, payload)
    except Exception:
        logger.exception("Notification %s failed, payload=%s", event_type.value, payload)


def dispatch_after_commit(
    repo: Repository,
    dispatcher: NotificationDispatcher | None,
    event_type: EventType,
    payload: dict[str, Any],
) -> None:
    """Queue ``dispatch`` to run once ``repo``'s unit of work has committed."""
    if dispatcher is None:
        return
    repo.after_commit(lambda: dispatch(dispatcher, event_type, payload))


class LoggingDispatcher:
    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("[notify] %s %s", event_type, payload)


def post_with_retries(
    url: str,
    body: dict[str, Any],
    *,
    timeout: float,
    max_retries: int,
    retry_backoff: float,
) -> bool:
    attempts = max_retries + 1
    last_exc = None
    for attempt in range(1, attempts + 1):
        try:
            response = requests.post(url, json=body, timeout=timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            last_exc = e
            if attempt < attempts:
                sleep_for = retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Retry %d/%d for %s event in %.1fs due to: %s",
                    attempt,
                    attempts - 1,
                    body.get("event"),
                    sleep_for,
                    e,
                )
                time.sleep(sleep_for)
    logger.error("Giving up on %s event after %d attempt(s): %s", body.get("event"), attempts, last_exc)
    return False


class WebhookDispatcher:
    """Posts events as JSON to a webhook from a background worker thread.

    ``notify`` only enqueues, so the calling operation never waits on the
    network. ``start`` must be called before events are delivered and
    ``stop`` drains the queue.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._queue: Queue = Queue()
        self._worker: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._worker = threading.Thread(target=self._run, name="webhook-dispatcher", daemon=True)
        self._worker.start()
        logger.info("Webhook dispatcher started for %s", self.url)

    def stop(self) -> None:
        if not self.running:
            return
        self._queue.put(None)
        self._queue.join()
        self._worker.join()
        self._worker = None
        logger.info("Webhook dispatcher stopped")

    def notify(self, event_type: str, payload: dict[str, Any]) -> None:
        if not self.running:
            raise RuntimeError("WebhookDispatcher.notify called before start()")
        self._queue.put({"event": event_type, "payload": payload})

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                self._queue.task_done()
                break
            try:
                post_with_retries(
                    self.url,
                    item,
                    timeout=self.timeout,
                    max_retries=self.max_retries,
                    retry_backoff=self.retry_backoff,
                )
            finally:
                self._queue.task_done()


def build_dispatcher(cfg: NotificationConfig) -> LoggingDispatcher | WebhookDispatcher:
    if not cfg.webhook_url:
        return LoggingDispatcher()
    return WebhookDispatcher(
        cfg.webhook_url,
        timeout=cfg.timeout,
        max_retries=cfg.max_retries,
        retry_backoff=cfg.retry_backoff,
    )
