import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from app.models import NotificationRecord
from app.services.push_sender import push_sender

logger = logging.getLogger(__name__)

NotificationSink = Callable[[NotificationRecord], None]


class NotificationStore:
    """In-app notifications with live sinks and push delivery.

    ``register``/``publish`` are the notifier capability the booking path
    depends on; a websocket or SSE layer would register a sink per
    connected user.
    """

    def __init__(self, sender=None):
        self._lock = Lock()
        self._sender = sender or push_sender
        self._notifications: List[NotificationRecord] = []
        self._device_tokens: Dict[str, set[str]] = {}
        self._sinks: Dict[str, List[NotificationSink]] = {}

    def register(self, user_id: str, sink: NotificationSink) -> Callable[[], None]:
        with self._lock:
            self._sinks.setdefault(user_id, []).append(sink)

        def unregister() -> None:
            with self._lock:
                sinks = self._sinks.get(user_id, [])
                if sink in sinks:
                    sinks.remove(sink)

        return unregister

    def register_device_token(self, user_id: str, device_token: str) -> None:
        if not device_token.strip():
            return
        with self._lock:
            self._device_tokens.setdefault(user_id, set()).add(device_token.strip())

    def publish(self, user_id: str, event: Dict[str, Any]) -> NotificationRecord:
        return self.create(
            user_id=user_id,
            title=str(event.get("title", "Update")),
            body=str(event.get("body", "")),
            category=str(event.get("category", "system")),
            deep_link=event.get("deep_link"),
            payload=event.get("payload") or {},
        )

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=datetime.now(timezone.utc).isoformat(),
            deep_link=deep_link,
            payload=payload or {},
        )
        with self._lock:
            self._notifications.insert(0, record)
            tokens = list(self._device_tokens.get(user_id, set()))
            sinks = list(self._sinks.get(user_id, []))
        for sink in sinks:
            try:
                sink(record)
            except Exception:
                logger.exception("Notification sink failed for user_id=%s", user_id)
        invalid_tokens = self._sender.send_notification(
            tokens=tokens,
            title=title,
            body=body,
            data={
                "notification_id": record.id,
                "category": category,
                "deep_link": deep_link or "",
            },
        )
        if invalid_tokens:
            with self._lock:
                current = self._device_tokens.get(user_id, set())
                for token in invalid_tokens:
                    current.discard(token)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = [n for n in self._notifications if n.user_id == user_id]
            if unread_only:
                rows = [n for n in rows if not n.read]
            return rows[:100]

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for idx, row in enumerate(self._notifications):
                if row.id == notification_id and row.user_id == user_id:
                    updated = row.model_copy(update={"read": True})
                    self._notifications[idx] = updated
                    return updated
        return None

    def mark_all_read(self, user_id: str) -> int:
        updated = 0
        with self._lock:
            for idx, row in enumerate(self._notifications):
                if row.user_id == user_id and not row.read:
                    self._notifications[idx] = row.model_copy(update={"read": True})
                    updated += 1
        return updated


notification_store = NotificationStore()
