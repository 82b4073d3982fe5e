"""Socket.IO transport that connects a client ``Session`` to the relay server.

python-socketio delivers events on its own thread. Inbound frames are only
queued there; ``pump()`` drains the queue and ticks the session on the
caller's thread, so the session keeps a single writer.
"""

import logging
import queue
import time
from typing import Optional

import socketio

from captcha_duel.services.duel.protocol import Message, encode
from captcha_duel.services.duel.session import DuelRules, Session

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'


class DuelClient:
    def __init__(self, url: str, player_id: Optional[str] = None, rules: Optional[DuelRules] = None,
                 namespace: str = NAMESPACE, tick_interval: float = 0.05, sio=None):
        self.url = url
        self.namespace = namespace
        self.tick_interval = tick_interval
        # Always retry; reconnection policy belongs to the transport
        self.sio = sio or socketio.Client(reconnection=True, reconnection_attempts=0)
        self.session = Session(player_id=player_id, send=self.send, rules=rules)
        self._inbox: 'queue.Queue' = queue.Queue()
        self._running = False
        self.sio.on('message', self._on_message, namespace=namespace)
        self.sio.on('connect', self._on_connect, namespace=namespace)
        self.sio.on('disconnect', self._on_disconnect, namespace=namespace)

    def _on_connect(self):
        logger.info(f"[connect] url={self.url} player={self.session.player_id}")

    def _on_disconnect(self, *args):
        logger.info(f"[disconnect] url={self.url} player={self.session.player_id}")

    def _on_message(self, data):
        self._inbox.put(data)

    def connect(self) -> None:
        self.sio.connect(self.url, namespaces=[self.namespace])

    def send(self, message: Message) -> None:
        self.sio.emit('message', encode(message), namespace=self.namespace)

    def pump(self, now: Optional[float] = None) -> int:
        """Apply queued frames, then run due timers. Returns frames applied."""
        handled = 0
        while True:
            try:
                frame = self._inbox.get_nowait()
            except queue.Empty:
                break
            self.session.handle_message(frame, now=now)
            handled += 1
        self.session.tick(now)
        return handled

    def run_forever(self) -> None:
        self._running = True
        while self._running:
            self.pump()
            time.sleep(self.tick_interval)

    def close(self) -> None:
        self._running = False
        try:
            self.sio.disconnect()
        except Exception as exc:
            logger.warning(f"[close] disconnect failed: {exc}")
