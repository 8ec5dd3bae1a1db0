import logging
import os
from threading import Lock
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, messaging

logger = logging.getLogger(__name__)

INVALID_TOKEN_MARKERS = ("registration token", "invalid argument", "not registered")


class PushSender:
    """Firebase Cloud Messaging fan-out; a no-op without credentials."""

    def __init__(self, credentials_path: Optional[str] = None):
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._initialized = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            path = (self._credentials_path or os.getenv("FIREBASE_CREDENTIALS_PATH", "")).strip()
            self._initialized = True
            if not path:
                logger.info("Push sender disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(credentials.Certificate(path))
                self._enabled = True
                logger.info("Push sender initialized")
            except (ValueError, OSError):
                logger.exception("Push sender disabled: Firebase init failed")

    def send_notification(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> List[str]:
        """Send to every token; returns the tokens Firebase rejected as invalid."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []
        try:
            batch = messaging.send_each_for_multicast(
                messaging.MulticastMessage(
                    notification=messaging.Notification(title=title, body=body),
                    tokens=tokens,
                    data=data,
                )
            )
        except Exception:
            logger.exception("Push send failed")
            return []
        invalid: List[str] = []
        for token, response in zip(tokens, batch.responses):
            if response.success:
                continue
            error_text = str(response.exception).lower() if response.exception else ""
            if any(marker in error_text for marker in INVALID_TOKEN_MARKERS):
                invalid.append(token)
        if invalid:
            logger.info("Dropping %s invalid push tokens", len(invalid))
        return invalid


push_sender = PushSender()
