"""
Process-wide stream registry for CamRelay.

Maps a camera stream id to its live transcoder. At most one transcoder is
registered per id at any time, across all client sessions.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import StartError
from ..models.stream import StreamRequest
from .relay import RelayLoop
from .transcoder import CommandBuilder, TranscoderProcess, mask_url


@dataclass
class StreamEntry:
    process: TranscoderProcess
    relay: RelayLoop
    sink: object


@dataclass
class _IdLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class StreamRegistry:
    """Owns every running transcoder, keyed by stream id"""

    def __init__(self, command_builder: CommandBuilder = None,
                 kill_timeout: float = None, chunk_size: int = None):
        self._command_builder = command_builder
        self._kill_timeout = kill_timeout
        self._chunk_size = chunk_size
        self._entries: Dict[str, StreamEntry] = {}
        # Guards _entries and _id_locks; never held while a process is killed
        self._lock = threading.Lock()
        # Serialises start/stop for the same id; a slot lives only while in use
        self._id_locks: Dict[str, _IdLock] = {}

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def __contains__(self, stream_id):
        with self._lock:
            return stream_id in self._entries

    @contextmanager
    def _lock_for(self, stream_id: str):
        """Hold the per-id lock; the slot is dropped once no thread uses it"""
        with self._lock:
            slot = self._id_locks.get(stream_id)
            if slot is None:
                slot = self._id_locks[stream_id] = _IdLock()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._lock:
                slot.users -= 1
                if not slot.users:
                    del self._id_locks[stream_id]

    def _pop(self, stream_id: str, process: TranscoderProcess = None) -> Optional[StreamEntry]:
        """Remove an entry, optionally only if it still holds the given process"""
        with self._lock:
            entry = self._entries.get(stream_id)
            if entry is None or (process is not None and entry.process is not process):
                return None
            return self._entries.pop(stream_id)

    @staticmethod
    def _terminate(entry: StreamEntry, reason: str):
        """Best-effort kill of a removed entry"""
        process = entry.process
        try:
            exit_code = process.kill()
            print(f"[Registry] Stream {process.stream_id} {reason} (pid {process.pid}, exit {exit_code})")
        except OSError as e:
            print(f"[Registry] Failed to terminate stream {process.stream_id} (pid {process.pid}): {e}")

    def start(self, stream_id, source_url, sink) -> TranscoderProcess:
        """Start (or restart) the transcoder for stream_id and relay it to sink.

        Raises ValidationError for missing fields and StartError when the
        transcoder cannot be launched. In both cases no entry is left for
        stream_id.
        """
        request = StreamRequest.build(stream_id, source_url)
        stream_id = request.stream_id

        with self._lock_for(stream_id):
            previous = self._pop(stream_id)
            if previous is not None:
                self._terminate(previous, 'replaced')

            process = TranscoderProcess(
                stream_id,
                request.source_url,
                command_builder=self._command_builder,
                kill_timeout=self._kill_timeout,
                chunk_size=self._chunk_size,
            )
            process.start()

            relay = RelayLoop(self, process, sink)
            with self._lock:
                self._entries[stream_id] = StreamEntry(process, relay, sink)
            try:
                relay.start()
            except RuntimeError as e:
                self._pop(stream_id, process)
                process.kill()
                raise StartError(stream_id, e) from e

        print(f"[Registry] Stream {stream_id} started from {mask_url(request.source_url)}")
        return process

    def stop(self, stream_id: str) -> bool:
        """Stop the transcoder for stream_id; returns False if nothing was running"""
        with self._lock_for(stream_id):
            entry = self._pop(stream_id)
            if entry is None:
                return False
            self._terminate(entry, 'stopped')
        return True

    def release(self, stream_id: str, process: TranscoderProcess) -> bool:
        """Stop stream_id only if it is still served by the given process.

        The process itself is always killed.
        """
        with self._lock_for(stream_id):
            entry = self._pop(stream_id, process)
            if entry is not None:
                self._terminate(entry, 'released')
                return True
        process.kill()
        return False

    def on_process_exit(self, stream_id: str, process: TranscoderProcess, exit_code: Optional[int]) -> bool:
        """Drop the entry of a transcoder that exited on its own.

        Does nothing if a newer process has replaced it in the meantime.
        """
        entry = self._pop(stream_id, process)
        if entry is None:
            return False
        print(f"[Registry] Stream {stream_id} ended (pid {process.pid}, exit {exit_code})")
        return True

    def stop_owned_by(self, sink) -> List[str]:
        """Stop every stream whose output goes to sink"""
        with self._lock:
            owned = [(stream_id, entry.process) for stream_id, entry in self._entries.items()
                     if entry.sink is sink]
        return [stream_id for stream_id, process in owned if self.release(stream_id, process)]

    def stop_all(self):
        """Stop every running stream"""
        with self._lock:
            stream_ids = list(self._entries)
        for stream_id in stream_ids:
            self.stop(stream_id)

    def get(self, stream_id: str) -> Optional[TranscoderProcess]:
        with self._lock:
            entry = self._entries.get(stream_id)
        return entry.process if entry else None

    def active_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def snapshot(self) -> List[dict]:
        """Status of every registered stream"""
        with self._lock:
            entries = list(self._entries.values())
        statuses = []
        for entry in entries:
            status = entry.process.status()
            status['relay_alive'] = entry.relay.is_alive()
            status['session'] = getattr(entry.sink, 'session_id', None)
            statuses.append(status)
        return sorted(statuses, key=lambda s: s['stream_id'])


# Shared registry used by the websocket and HTTP routes
stream_registry = StreamRegistry()
