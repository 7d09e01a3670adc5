"""Staff notifications dispatched after a booking transaction commits.

Callers hand work to :class:`NotificationQueue` and return straight away. The
worker writes in-app notifications for admin and staff users and sends web
push to their stored subscriptions. Failures end up in the log, never in the
request that queued them.
"""
from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait

from flask import Flask, current_app
from pywebpush import WebPushException, webpush

from .extensions import db
from .models import ELEVATED_ROLES, Notification, PushSubscription, User

logger = logging.getLogger(__name__)

EXPIRED_STATUSES = {404, 410}


class NotificationQueue:
    def __init__(self, app: Flask | None = None) -> None:
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self.app: Flask | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.app = app
        self._executor = ThreadPoolExecutor(
            max_workers=app.config.get("NOTIFICATION_WORKERS", 2),
            thread_name_prefix="notify",
        )
        app.extensions["notification_queue"] = self

    def submit(self, fn, *args, **kwargs) -> Future:
        future = self._executor.submit(self._run, fn, args, kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, fn, args, kwargs):
        with self.app.app_context():
            try:
                return fn(*args, **kwargs)
            except Exception:
                db.session.rollback()
                logger.exception("Notification task %s failed", getattr(fn, "__name__", fn))
                return None

    def join(self, timeout: float | None = None) -> None:
        """Block until everything queued so far has run. Used by tests and shutdown."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


def get_queue() -> NotificationQueue:
    return current_app.extensions["notification_queue"]


def enqueue_staff_notification(title: str, body: str, url: str) -> None:
    """Queue :func:`notify_staff`; a failure to even queue is logged and dropped."""
    try:
        get_queue().submit(notify_staff, title, body, url)
    except RuntimeError as exc:
        current_app.logger.warning("Could not queue notification %r: %s", title, exc)


def notify_staff(title: str, body: str, url: str) -> dict[str, int]:
    staff = User.query.filter(User.role.in_(ELEVATED_ROLES)).all()
    for user in staff:
        db.session.add(Notification(user_id=user.user_id, title=title, message=body, link=url))
    db.session.commit()

    sent, removed = send_push(title, body, url)
    return {"in_app": len(staff), "pushed": sent, "removed": removed}


def send_push(title: str, body: str, url: str) -> tuple[int, int]:
    config = current_app.config
    private_key = config.get("VAPID_PRIVATE_KEY")
    public_key = config.get("VAPID_PUBLIC_KEY")
    email = config.get("WEB_PUSH_EMAIL")
    if not (private_key and public_key and email):
        logger.warning("VAPID keys or email not set. Skipping push notification.")
        return 0, 0

    subscriptions = PushSubscription.query.filter(PushSubscription.role.in_(ELEVATED_ROLES)).all()
    if not subscriptions:
        logger.info("No push subscriptions found for admins or staff.")
        return 0, 0

    payload = json.dumps({"title": title, "body": body, "url": url})
    sent = 0
    expired = []
    for subscription in subscriptions:
        try:
            webpush(
                subscription_info=subscription.subscription_info(),
                data=payload,
                vapid_private_key=private_key,
                vapid_claims={"sub": f"mailto:{email}"},
            )
            sent += 1
        except WebPushException as exc:
            status = exc.response.status_code if exc.response is not None else None
            if status in EXPIRED_STATUSES:
                logger.info("Subscription %s for user %s expired. Removing.", subscription.subscription_id, subscription.user_id)
                expired.append(subscription)
            else:
                logger.error("Error sending notification to user %s: %s", subscription.user_id, exc)

    for subscription in expired:
        db.session.delete(subscription)
    if expired:
        db.session.commit()
    return sent, len(expired)


def save_subscription(user: User, subscription: dict) -> PushSubscription:
    endpoint = subscription.get("endpoint")
    keys = subscription.get("keys") or {}
    record = PushSubscription.query.filter_by(endpoint=endpoint).first()
    if record is None:
        record = PushSubscription(endpoint=endpoint)
        db.session.add(record)
    record.user_id = user.user_id
    record.role = user.role
    record.keys = keys
    return record
