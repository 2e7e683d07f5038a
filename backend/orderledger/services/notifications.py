# Overview: After-commit, best-effort delivery of lifecycle events to the notification collaborator.

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from flask import current_app


EVENT_ORDER_STATUS_CHANGED = "order_status_changed"
EVENT_REFUND_CREATED = "refund_created"

VALID_EVENTS = (EVENT_ORDER_STATUS_CHANGED, EVENT_REFUND_CREATED)


class Notifier:
    """
    Notification collaborator interface (email / SMS live outside this service).

    Implementations receive plain dict payloads; they never see ORM objects,
    so delivery can happen on another thread after the session is gone.
    """

    def order_status_changed(self, payload: dict) -> None:
        raise NotImplementedError

    def refund_created(self, payload: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default notifier: writes each event to the application log."""

    def __init__(self, logger):
        self.logger = logger

    def order_status_changed(self, payload: dict) -> None:
        self.logger.info(
            "Order %s (%s) status changed %s -> %s",
            payload["order_id"], payload["order_number"], payload["previous_status"], payload["new_status"],
        )

    def refund_created(self, payload: dict) -> None:
        self.logger.info(
            "Refund %s created for order %s (%s cents)",
            payload["refund_id"], payload["order_id"], payload["amount"],
        )


class NotificationDispatcher:
    """
    Fire-and-forget event dispatch.

    Called only after the lifecycle change has committed. A notifier failure
    is logged and dropped; it can never roll back or fail the request.
    """

    def __init__(self, app, notifier: Notifier, *, async_delivery: bool = True, workers: int = 2):
        self.app = app
        self.notifier = notifier
        self._executor = (
            ThreadPoolExecutor(max_workers=workers, thread_name_prefix="orderledger-notify")
            if async_delivery
            else None
        )

    @property
    def is_async(self) -> bool:
        return self._executor is not None

    def dispatch(self, event: str, payload: dict):
        if event not in VALID_EVENTS:
            raise ValueError(f"Unknown notification event: {event}")
        if self._executor is None:
            self._deliver(event, payload)
            return None
        return self._executor.submit(self._deliver, event, payload)

    def _deliver(self, event: str, payload: dict) -> None:
        with self.app.app_context():
            try:
                getattr(self.notifier, event)(payload)
            except Exception:
                self.app.logger.exception("Notification %s failed for payload %r", event, payload)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


def init_notifications(app, notifier: Notifier | None = None) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher(
        app,
        notifier or LoggingNotifier(app.logger),
        async_delivery=app.config.get("NOTIFICATIONS_ASYNC", True),
        workers=app.config.get("NOTIFICATION_WORKERS", 2),
    )
    app.extensions["notifier"] = dispatcher
    return dispatcher


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["notifier"]


def notify_status_changed(order, previous_status: str) -> None:
    get_dispatcher().dispatch(
        EVENT_ORDER_STATUS_CHANGED,
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "previous_status": previous_status,
            "new_status": order.status,
        },
    )


def notify_refund_created(refund) -> None:
    get_dispatcher().dispatch(
        EVENT_REFUND_CREATED,
        {
            "order_id": refund.order_id,
            "refund_id": refund.id,
            "amount": refund.amount_cents,
        },
    )
