"""
Client sessions for CamRelay.

A session wraps one websocket connection. It decodes control messages, drives
the stream registry and is the single writer for its socket: control replies
and relayed chunks go through one bounded queue drained by a writer thread.
"""
import queue
import threading
import uuid
from typing import NamedTuple, Optional

from simple_websocket import ConnectionClosed

from ..config import Config
from ..errors import ProtocolError, RelayError, StartError, ValidationError
from ..security import audit_log
from . import protocol
from .registry import StreamRegistry, stream_registry
from .transcoder import TranscoderProcess

WRITER_POLL_INTERVAL = 0.25


class _Outgoing(NamedTuple):
    payload: object
    source: Optional[TranscoderProcess]


class ClientSession:
    """State of one connected client"""

    def __init__(self, ws, registry: StreamRegistry = None, peer: str = '-',
                 framing: str = None, queue_size: int = None,
                 send_timeout: float = None, stop_on_disconnect: bool = None):
        self.session_id = uuid.uuid4().hex[:8]
        self.ws = ws
        self.registry = registry if registry is not None else stream_registry
        self.peer = peer
        self.framing = protocol.resolve_framing(framing, Config.RELAY_FRAMING)
        self.send_timeout = Config.SEND_TIMEOUT if send_timeout is None else send_timeout
        self.stop_on_disconnect = (Config.STOP_ON_DISCONNECT if stop_on_disconnect is None
                                   else stop_on_disconnect)
        self.started = set()
        self.current_stream_id = None
        self._outbox = queue.Queue(maxsize=queue_size or Config.SEND_QUEUE_SIZE)
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._writer = threading.Thread(target=self._write_loop, name=f"writer-{self.session_id}", daemon=True)

    def __repr__(self):
        return f'<ClientSession {self.session_id} {self.peer}>'

    @property
    def is_open(self) -> bool:
        return not self._closed.is_set()

    def open(self):
        self._writer.start()
        print(f"[Session {self.session_id}] Client connected from {self.peer} (framing: {self.framing})")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle(self, raw):
        """Process one inbound frame"""
        try:
            message = protocol.decode_message(raw)
        except ProtocolError as e:
            audit_log('PROTOCOL_ERROR', self.peer, details=e.message)
            self.send_exception(e)
            return
        except ValidationError as e:
            audit_log('STREAM_REJECTED', self.peer, e.stream_id, e.message)
            self.send_exception(e)
            return

        if isinstance(message, protocol.StartStream):
            self.start_stream(message.request.stream_id, message.request.source_url)
        elif isinstance(message, protocol.StopStream):
            self.stop_stream(message.stream_id)

    def start_stream(self, stream_id: str, source_url: str) -> bool:
        try:
            self.registry.start(stream_id, source_url, self)
        except (ValidationError, StartError) as e:
            audit_log('STREAM_REJECTED', self.peer, stream_id, e.message)
            self.send_exception(e)
            return False
        self.started.add(stream_id)
        self.current_stream_id = stream_id
        audit_log('STREAM_START', self.peer, stream_id, f"session {self.session_id}")
        return True

    def stop_stream(self, stream_id: str) -> bool:
        stopped = self.registry.stop(stream_id)
        self.started.discard(stream_id)
        if self.current_stream_id == stream_id:
            self.current_stream_id = None
        audit_log('STREAM_STOP', self.peer, stream_id, 'stopped' if stopped else 'not running')
        return stopped

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _enqueue(self, payload, source: TranscoderProcess = None) -> bool:
        if self._closed.is_set():
            return False
        try:
            self._outbox.put(_Outgoing(payload, source), timeout=self.send_timeout)
        except queue.Full:
            print(f"[Session {self.session_id}] Client not reading for {self.send_timeout}s, disconnecting")
            self.close()
            return False
        return True

    def send_chunk(self, stream_id: str, chunk: bytes, source: TranscoderProcess = None) -> bool:
        """Queue one chunk of stream output; False if the client is gone"""
        if self.framing == protocol.FRAMING_TAGGED:
            chunk = protocol.encode_frame(stream_id, chunk)
        return self._enqueue(chunk, source)

    def send_exception(self, error: RelayError) -> bool:
        return self._enqueue(protocol.encode_exception(error))

    def _write_loop(self):
        while not self._closed.is_set():
            try:
                item = self._outbox.get(timeout=WRITER_POLL_INTERVAL)
            except queue.Empty:
                continue
            # Output of a stopped or replaced transcoder is never delivered
            if item.source is not None and item.source.retired:
                continue
            try:
                self.ws.send(item.payload)
            except (ConnectionClosed, OSError) as e:
                print(f"[Session {self.session_id}] Send failed: {e!r}")
                self.close()
                return

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self):
        """Close the session; stops owned streams when configured to"""
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()

        if self.stop_on_disconnect:
            for stream_id in self.registry.stop_owned_by(self):
                audit_log('STREAM_STOP', self.peer, stream_id, 'client disconnected')
        try:
            self.ws.close()
        except (ConnectionClosed, OSError, RuntimeError):
            pass
        if self._writer.is_alive() and self._writer is not threading.current_thread():
            self._writer.join(timeout=1)
        print(f"[Session {self.session_id}] Closed ({len(self.started)} stream(s) started)")
