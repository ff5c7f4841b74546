import os
import queue
import sys
import tempfile
import threading
import time
from pathlib import Path

import pytest

# Keep the audit log out of /var/log while testing
os.environ.setdefault('AUDIT_LOG_DIR', tempfile.mkdtemp(prefix='camrelay-audit-'))

from simple_websocket import ConnectionClosed  # noqa: E402

from camrelay.services.registry import StreamRegistry  # noqa: E402

FAKE_TRANSCODER = Path(__file__).with_name('fake_transcoder.py')


def fake_command(source_url):
    return [sys.executable, str(FAKE_TRANSCODER), source_url]


def missing_command(source_url):
    return ['/nonexistent/bin/ffmpeg', '-i', source_url, '-']


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll until predicate() is truthy; returns its last value"""
    deadline = time.time() + timeout
    result = predicate()
    while not result and time.time() < deadline:
        time.sleep(interval)
        result = predicate()
    return result


class RecordingSink:
    """Collects what a relay loop delivers"""

    def __init__(self, accept=True):
        self.accept = accept
        self.chunks = []
        self.errors = []
        self.lock = threading.Lock()

    def send_chunk(self, stream_id, chunk, source=None):
        if not self.accept:
            return False
        with self.lock:
            self.chunks.append((stream_id, chunk))
        return True

    def send_exception(self, error):
        with self.lock:
            self.errors.append(error)
        return True

    def data(self):
        with self.lock:
            return b''.join(chunk for _, chunk in self.chunks)


class FakeSocket:
    """Websocket double: inbound messages are fed from the test"""

    _CLOSE = object()

    def __init__(self, fail_sends=False):
        self.fail_sends = fail_sends
        self.sent = []
        self.closed = threading.Event()
        self.block_sends = threading.Event()
        self._inbound = queue.Queue()
        self._lock = threading.Lock()

    def feed(self, message):
        self._inbound.put(message)

    def disconnect(self):
        self._inbound.put(self._CLOSE)

    def receive(self, timeout=None):
        message = self._inbound.get()
        if message is self._CLOSE or self.closed.is_set():
            raise ConnectionClosed()
        return message

    def send(self, data):
        while self.block_sends.is_set() and not self.closed.is_set():
            time.sleep(0.01)
        if self.fail_sends or self.closed.is_set():
            raise ConnectionClosed()
        with self._lock:
            self.sent.append(data)

    def close(self, reason=None, message=None):
        self.closed.set()
        self._inbound.put(self._CLOSE)

    def text_messages(self):
        with self._lock:
            return [m for m in self.sent if isinstance(m, str)]

    def binary_messages(self):
        with self._lock:
            return [m for m in self.sent if isinstance(m, bytes)]


@pytest.fixture
def registry():
    reg = StreamRegistry(command_builder=fake_command, kill_timeout=2.0, chunk_size=4096)
    yield reg
    reg.stop_all()


@pytest.fixture
def broken_registry():
    return StreamRegistry(command_builder=missing_command, kill_timeout=1.0)


@pytest.fixture
def sink():
    return RecordingSink()
