import json
import queue
import logging
import threading
from collections import defaultdict

logger = logging.getLogger(__name__)

SUBSCRIBED = 'SUBSCRIBED'
CLOSED = 'CLOSED'


class Subscription:
    """Queue of inserts published to one conversation; close() unregisters it"""

    def __init__(self, broker, conversation_id):
        self.broker = broker
        self.conversation_id = conversation_id
        self._queue = queue.Queue()
        self.closed = False

    def deliver(self, payload):
        self._queue.put(payload)

    def get(self, timeout=None):
        """Next published payload, or None when nothing arrived within timeout"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        if not self.closed:
            self.closed = True
            self.broker.unsubscribe(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MessageBroker:
    """In-process fan-out of message inserts, keyed by conversation"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)

    def subscribe(self, conversation_id):
        subscription = Subscription(self, conversation_id)
        with self._lock:
            self._subscribers[conversation_id].append(subscription)
        logger.debug(f"Subscribed to conversation {conversation_id}")
        return subscription

    def unsubscribe(self, subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.conversation_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.conversation_id, None)
        logger.debug(f"Unsubscribed from conversation {subscription.conversation_id}")

    def subscriber_count(self, conversation_id):
        with self._lock:
            return len(self._subscribers.get(conversation_id, []))

    def publish(self, conversation_id, payload):
        """Deliver payload to every subscriber of the conversation; returns the count"""
        with self._lock:
            subscribers = list(self._subscribers.get(conversation_id, []))
        for subscription in subscribers:
            subscription.deliver(payload)
        return len(subscribers)


def format_sse(data, event=None):
    """Encode one server-sent event frame"""
    if not isinstance(data, str):
        data = json.dumps(data)
    frame = ''
    if event:
        frame += f"event: {event}\n"
    for line in data.splitlines() or ['']:
        frame += f"data: {line}\n"
    return frame + "\n"


def stream_subscription(subscription, keepalive_seconds=15):
    """
    Generator of SSE frames for a subscription.

    Starts with a SUBSCRIBED status frame, then one frame per insert, with a
    comment line whenever keepalive_seconds pass without traffic. The
    subscription is closed however the generator ends.
    """
    try:
        yield format_sse(SUBSCRIBED, event='status')
        while not subscription.closed:
            payload = subscription.get(timeout=keepalive_seconds)
            if payload is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(payload)
    finally:
        subscription.close()
