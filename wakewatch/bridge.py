"""
============================================================
 WakeWatch — Snapshot Bridge
 Pushes periodic attention snapshots out of the process.

 ARCHITECTURE: Queue-based single-thread WebSocket ownership
   - push_attention() only puts JSON into a thread-safe Queue
   - One background thread EXCLUSIVELY owns the WebSocket
   - Old snapshots are dropped when the queue is full

 Usage:
     from wakewatch.bridge import SnapshotBridge

     bridge = SnapshotBridge("ws://localhost:8000/ws/attention")
     bridge.connect()
     session = AttentionSession(bridge=bridge)
     ...
     bridge.disconnect()
============================================================
"""

import json
import logging
import queue
import ssl
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

import websocket  # pip install websocket-client

from wakewatch import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttentionSnapshot:
    t: int                # epoch milliseconds
    state: str
    confidence: float
    metrics: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class LogBridge:
    """Default bridge: writes every snapshot to the log."""

    def __init__(self):
        self.last: Optional[AttentionSnapshot] = None
        self.count = 0

    def push_attention(self, snapshot: AttentionSnapshot) -> None:
        self.last = snapshot
        self.count += 1
        logger.debug("[BRIDGE] %s %.2f %s", snapshot.state, snapshot.confidence, snapshot.metrics)


class SocketIOBridge:
    """Emits snapshots to dashboard clients, then hands them to an optional downstream bridge."""

    def __init__(self, socketio, downstream=None, event: str = "attention_snapshot"):
        self.socketio = socketio
        self.downstream = downstream
        self.event = event

    def push_attention(self, snapshot: AttentionSnapshot) -> None:
        try:
            self.socketio.emit(self.event, snapshot.to_dict())
        except Exception:
            logger.exception("[BRIDGE] SocketIO emit failed")
        if self.downstream is not None:
            self.downstream.push_attention(snapshot)


class SnapshotBridge:
    """
    Non-blocking WebSocket bridge for attention snapshots.

    THREAD SAFETY:
      - The frame loop calls push_attention(), which only enqueues.
      - A single daemon thread (_run_forever) owns the socket:
        it connects, drains the queue, heartbeats and reconnects.
    """

    HEARTBEAT_INTERVAL = 5.0

    def __init__(self, url: str, source_id: str = "wakewatch",
                 queue_size: int = config.BRIDGE_QUEUE_SIZE):
        self.url = url
        self.source_id = source_id
        self._is_secure = url.startswith("wss://")
        self._ws = None
        self._thread: Optional[threading.Thread] = None
        self._connected = threading.Event()
        self._stop_event = threading.Event()
        self._outbox: queue.Queue = queue.Queue(maxsize=queue_size)
        self._frame_count = 0
        self._reconnect_delay = 3.0
        self._max_reconnect_delay = 30.0

    # ── Public API ────────────────────────────────────────────

    def connect(self, timeout: float = 8.0) -> bool:
        """Start the socket thread. False when not connected within `timeout` (keeps retrying)."""
        self._stop_event.clear()
        self._connected.clear()
        self._thread = threading.Thread(target=self._run_forever, daemon=True,
                                        name="SnapshotBridge")
        self._thread.start()
        connected = self._connected.wait(timeout=timeout)
        if connected:
            logger.info("[BRIDGE] ✅ Connected to %s", self.url)
        else:
            logger.info("[BRIDGE] ⏳ %s not available — retrying in background", self.url)
        return connected

    def push_attention(self, snapshot: AttentionSnapshot) -> bool:
        """Enqueue a snapshot. Non-blocking; drops the oldest entry when full."""
        payload = snapshot.to_dict()
        payload["type"] = "attention"
        payload["source"] = self.source_id
        message = json.dumps(payload)
        try:
            self._outbox.put_nowait(message)
        except queue.Full:
            try:
                self._outbox.get_nowait()
            except queue.Empty:
                pass
            try:
                self._outbox.put_nowait(message)
            except queue.Full:
                return False
        self._frame_count += 1
        return True

    def disconnect(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._connected.clear()
        logger.info("[BRIDGE] Disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def frames_sent(self) -> int:
        return self._frame_count

    @property
    def backlog(self) -> int:
        return self._outbox.qsize()

    # ── Internal: SINGLE THREAD owns the WebSocket ───────────

    def _run_forever(self) -> None:
        delay = self._reconnect_delay
        sslopt = None
        if self._is_secure:
            sslopt = {"ssl_context": ssl.create_default_context()}

        while not self._stop_event.is_set():
            try:
                ws = websocket.WebSocket()
                kwargs = {"timeout": 15}
                if sslopt:
                    kwargs["sslopt"] = sslopt
                ws.connect(self.url, **kwargs)
                self._ws = ws
                self._connected.set()
                delay = self._reconnect_delay
                ws.settimeout(0.05)
                last_heartbeat = time.time()

                while not self._stop_event.is_set():
                    for _ in range(5):
                        try:
                            msg = self._outbox.get_nowait()
                        except queue.Empty:
                            break
                        ws.send(msg)

                    now = time.time()
                    if now - last_heartbeat >= self.HEARTBEAT_INTERVAL:
                        ws.ping()
                        ws.send(json.dumps({"type": "heartbeat", "source": self.source_id}))
                        last_heartbeat = now

                    try:
                        ws.recv()
                    except websocket.WebSocketTimeoutException:
                        pass  # nothing inbound

                    self._stop_event.wait(timeout=0.1)

            except (websocket.WebSocketException, OSError) as e:
                self._connected.clear()
                logger.warning("[BRIDGE] Connection lost: %s — retrying in %.0fs", e, delay)
                self._close_socket()
                self._stop_event.wait(timeout=delay)
                delay = min(delay * 1.5, self._max_reconnect_delay)

        self._connected.clear()
        self._close_socket()

    def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            ws.close()
        except (websocket.WebSocketException, OSError) as e:
            logger.debug("[BRIDGE] Close failed: %s", e)
