import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import requests

from utils.errors import MessengerError
from utils.realtime import CLOSED
from utils.reconciler import MessageReconciler, POLLING_ONLY

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0


class SseSubscription:
    """
    Consumes the server-sent event stream of one conversation on a daemon thread.

    Status changes are reported through on_status ('SUBSCRIBED' once the
    server confirms, 'CLOSED' when the stream drops), inserts through on_insert.
    """

    def __init__(self, session, url, on_insert, on_status, timeout=10):
        self.session = session
        self.url = url
        self.on_insert = on_insert
        self.on_status = on_status
        self.timeout = timeout
        self._closing = threading.Event()
        self._response = None
        self._response_lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name='sse-subscription', daemon=True)

    def start(self):
        self._thread.start()
        return self

    def _dispatch(self, event, data):
        if event == 'status':
            self.on_status(data)
            return
        try:
            record = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring undecodable push payload: {data[:100]}")
            return
        self.on_insert(record)

    def _run(self):
        try:
            if self._closing.is_set():
                return
            response = self.session.get(self.url, stream=True, timeout=(self.timeout, None))
            with self._response_lock:
                if self._closing.is_set():
                    # close() ran while connecting
                    response.close()
                    return
                self._response = response
            response.raise_for_status()

            event, data_lines = None, []
            for line in response.iter_lines(decode_unicode=True):
                if self._closing.is_set():
                    break
                if line is None:
                    continue
                if line == '':
                    if data_lines:
                        self._dispatch(event, "\n".join(data_lines))
                    event, data_lines = None, []
                elif line.startswith(':'):
                    continue
                elif line.startswith('event:'):
                    event = line[len('event:'):].strip()
                elif line.startswith('data:'):
                    data_lines.append(line[len('data:'):].lstrip())
        except requests.RequestException as e:
            if not self._closing.is_set():
                logger.info(f"Push channel unavailable, relying on polling: {e}")
        finally:
            if not self._closing.is_set():
                self.on_status(CLOSED)

    def close(self, join_timeout=1.0):
        """Release the connection and wait briefly for the consumer thread"""
        self._closing.set()
        with self._response_lock:
            if self._response is not None:
                self._response.close()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=join_timeout)


class ConversationClient:
    """HTTP client for the messenger API"""

    def __init__(self, base_url, user_id=None, guest_session=None, timeout=10, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        if user_id:
            self.session.headers['X-User-Id'] = user_id
        if guest_session:
            self.session.cookies.set('guest_session', guest_session)

    def _url(self, path):
        return f"{self.base_url}{path}"

    def _json(self, response):
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400 or data.get('status') == 'error':
            raise MessengerError(data.get('message') or f"Request failed with status {response.status_code}")
        return data

    def fetch_messages(self, conversation_id) -> List[Dict[str, Any]]:
        response = self.session.get(
            self._url(f"/api/conversations/{conversation_id}/messages"), timeout=self.timeout
        )
        return self._json(response)['messages']

    def send_message(self, conversation_id, text) -> Dict[str, Any]:
        response = self.session.post(
            self._url(f"/api/conversations/{conversation_id}/messages"),
            json={'text': text},
            timeout=self.timeout,
        )
        return self._json(response)['message']

    def subscribe(self, conversation_id, on_insert, on_status) -> SseSubscription:
        url = self._url(f"/api/conversations/{conversation_id}/stream")
        return SseSubscription(self.session, url, on_insert, on_status, timeout=self.timeout).start()

    def open_view(self, conversation_id, sender_id, sender_role, on_change=None,
                  poll_interval=POLL_INTERVAL_SECONDS) -> 'ConversationView':
        """Build a ConversationView wired to this client, seeded with the current history"""
        return ConversationView(
            sender_id=sender_id,
            sender_role=sender_role,
            fetch_messages=lambda: self.fetch_messages(conversation_id),
            send_message=lambda text: self.send_message(conversation_id, text),
            subscribe=lambda on_insert, on_status: self.subscribe(conversation_id, on_insert, on_status),
            initial_messages=self.fetch_messages(conversation_id),
            on_change=on_change,
            poll_interval=poll_interval,
        )


class ConversationView:
    """
    One open conversation: a MessageReconciler fed by a poll timer, a push
    subscription and local sends.

    Use as a context manager; leaving the block stops the poll timer and
    closes the subscription. Every reconciler mutation happens under one lock.
    """

    def __init__(self, sender_id: str, sender_role: str,
                 fetch_messages: Callable[[], List[Dict[str, Any]]],
                 send_message: Callable[[str], Dict[str, Any]],
                 subscribe: Optional[Callable[..., Any]] = None,
                 initial_messages: Optional[List[Dict[str, Any]]] = None,
                 on_change: Optional[Callable[[List[Dict[str, Any]]], None]] = None,
                 poll_interval: float = POLL_INTERVAL_SECONDS):
        self.sender_id = sender_id
        self.sender_role = sender_role
        self._fetch_messages = fetch_messages
        self._send_message = send_message
        self._subscribe = subscribe
        self._on_change = on_change
        self.poll_interval = poll_interval

        self.reconciler = MessageReconciler(initial_messages)
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._poll_thread = None
        self._subscription = None

    @property
    def messages(self):
        with self._lock:
            return self.reconciler.snapshot()

    @property
    def state(self):
        with self._lock:
            return self.reconciler.state

    def _changed(self):
        if self._on_change is not None:
            self._on_change(self.reconciler.snapshot())

    def handle_status(self, status):
        with self._lock:
            self.reconciler.set_subscription_status(status)

    def handle_insert(self, record):
        with self._lock:
            if self.reconciler.apply_push(record):
                self._changed()

    def poll_once(self) -> bool:
        """Run one poll cycle; skipped while the push channel is confirmed"""
        if self.state != POLLING_ONLY:
            return False
        fetched = self._fetch_messages()
        with self._lock:
            changed = self.reconciler.apply_poll(fetched)
            if changed:
                self._changed()
            return changed

    def _poll_loop(self):
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll_once()
            except Exception as e:
                logger.warning(f"Polling for messages failed: {e}")

    def send(self, text: str) -> Dict[str, Any]:
        """
        Show the message immediately, then replace the echo with the server's record.

        Raises whatever the send callable raises, after removing the echo.
        """
        with self._lock:
            optimistic = self.reconciler.add_optimistic(self.sender_id, self.sender_role, text)
            self._changed()

        try:
            canonical = self._send_message(text)
        except Exception:
            logger.error("Failed to send message", exc_info=True)
            with self._lock:
                self.reconciler.discard_optimistic(optimistic['id'])
                self._changed()
            raise

        with self._lock:
            self.reconciler.acknowledge(optimistic['id'], canonical)
            self._changed()
        return canonical

    def open(self):
        if self._subscribe is not None:
            try:
                self._subscription = self._subscribe(self.handle_insert, self.handle_status)
            except Exception as e:
                logger.info(f"Push subscription failed, relying on polling: {e}")
                self._subscription = None
        self._poll_thread = threading.Thread(target=self._poll_loop, name='message-poll', daemon=True)
        self._poll_thread.start()
        return self

    def close(self):
        self._stop.set()
        try:
            if self._subscription is not None:
                self._subscription.close()
        finally:
            self._subscription = None
            with self._lock:
                self.reconciler.set_subscription_status(CLOSED)
            thread, self._poll_thread = self._poll_thread, None
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=self.poll_interval + 1)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
