"""
Client-side view of a conversation's messages.

Three producers feed one message list: optimistic local echoes, pushed
inserts and periodic polls of the full ordered history. Identity is the
message id, so the same record delivered twice is shown once.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

POLLING_ONLY = 'polling-only'
SUBSCRIBED = 'subscribed'

TEMP_ID_PREFIX = 'temp-'


def is_optimistic(message: Dict[str, Any]) -> bool:
    return str(message.get('id', '')).startswith(TEMP_ID_PREFIX)


class MessageReconciler:
    """Per-view reconciliation state; holds no locks and does no I/O"""

    def __init__(self, initial_messages: Optional[List[Dict[str, Any]]] = None):
        self.messages: List[Dict[str, Any]] = list(initial_messages or [])
        self.last_seen_id: Optional[str] = self.messages[-1]['id'] if self.messages else None
        self.state = POLLING_ONLY
        self._pending: Dict[str, Dict[str, Any]] = {}

    @property
    def is_subscribed(self) -> bool:
        return self.state == SUBSCRIBED

    @property
    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [dict(m) for m in self.messages]

    def _index_of(self, message_id) -> int:
        for index, message in enumerate(self.messages):
            if message['id'] == message_id:
                return index
        return -1

    def contains(self, message_id) -> bool:
        return self._index_of(message_id) != -1

    def set_subscription_status(self, status: str) -> None:
        """Push channel status callback; anything but SUBSCRIBED falls back to polling"""
        new_state = SUBSCRIBED if status == 'SUBSCRIBED' else POLLING_ONLY
        if new_state != self.state:
            logger.info(f"Message delivery switched from {self.state} to {new_state} ({status})")
        self.state = new_state

    def add_optimistic(self, sender_id: str, sender_role: str, text: str) -> Dict[str, Any]:
        """Append a local echo of an outgoing message before the server has it"""
        message = {
            'id': f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}",
            'sender_id': sender_id,
            'sender_role': sender_role,
            'original_text': text,
            'translated_text': None,
            'audio_url': None,
            'created_at': datetime.now(timezone.utc).isoformat(),
        }
        self.messages.append(message)
        self._pending[message['id']] = message
        return message

    def discard_optimistic(self, temp_id: str) -> None:
        """The send failed; drop the local echo"""
        self._pending.pop(temp_id, None)
        index = self._index_of(temp_id)
        if index != -1:
            del self.messages[index]

    def acknowledge(self, temp_id: str, canonical: Dict[str, Any]) -> None:
        """
        Replace a local echo with the server's record.

        If the record already arrived through push or poll the echo is simply
        dropped; otherwise the record takes the echo's position.
        """
        self._pending.pop(temp_id, None)
        temp_index = self._index_of(temp_id)

        if self.contains(canonical['id']):
            if temp_index != -1:
                del self.messages[temp_index]
            return

        if temp_index != -1:
            self.messages[temp_index] = canonical
        else:
            self.messages.append(canonical)

    def apply_push(self, record: Dict[str, Any]) -> bool:
        """Merge a pushed insert; returns False when it was already visible"""
        if self.contains(record['id']):
            logger.debug(f"Duplicate message {record['id']}, skipping")
            return False
        self.messages.append(record)
        self.last_seen_id = record['id']
        return True

    def apply_poll(self, fetched: List[Dict[str, Any]]) -> bool:
        """
        Reconcile with the complete ordered history.

        When the fetched ids differ from the confirmed (non-optimistic) ids on
        screen, the view is replaced by the fetched list and still-pending
        local echoes are put back at the tail. A fetch missing a confirmed id
        was taken before that message was stored and is discarded. Returns
        True when the view changed.
        """
        if self.is_subscribed or not fetched:
            return False

        fetched_ids = [m['id'] for m in fetched]
        confirmed_ids = [m['id'] for m in self.messages if not is_optimistic(m)]

        known = set(fetched_ids)
        if any(message_id not in known for message_id in confirmed_ids):
            logger.debug("Polling: discarding stale fetch")
            return False

        newest_id = fetched_ids[-1]
        if fetched_ids == confirmed_ids:
            self.last_seen_id = newest_id
            return False

        logger.debug("Polling: found new messages")
        self.messages = list(fetched) + list(self._pending.values())
        self.last_seen_id = newest_id
        return True
