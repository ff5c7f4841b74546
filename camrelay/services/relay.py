"""
Relay loop for CamRelay.
Forwards one transcoder's output, in order, to the session that started it.
"""
import subprocess
import threading
from contextlib import closing

from ..errors import ProcessFault


class RelayLoop(threading.Thread):
    """Background thread pumping stdout chunks of one transcoder into a sink.

    The sink must provide ``send_chunk(stream_id, chunk, source) -> bool`` and
    ``send_exception(error)``. The loop ends when the transcoder closes its
    output, when the sink refuses a chunk, or when the registry retires the
    process (stop or replacement).
    """

    def __init__(self, registry, process, sink):
        super().__init__(name=f"relay-{process.stream_id}", daemon=True)
        self.registry = registry
        self.process = process
        self.sink = sink
        self.chunks_sent = 0
        self.bytes_sent = 0

    @property
    def stream_id(self) -> str:
        return self.process.stream_id

    def run(self):
        try:
            delivered = self._forward()
        except Exception:
            self.registry.release(self.stream_id, self.process)
            raise

        if not delivered:
            print(f"[Relay {self.stream_id}] Client unreachable, releasing stream")
            self.registry.release(self.stream_id, self.process)
        elif not self.process.retired:
            self._report_exit()

    def _forward(self) -> bool:
        """Pump chunks until EOF or retirement; False if the sink failed"""
        with closing(self.process.output_channel()) as chunks:
            for chunk in chunks:
                if self.process.retired:
                    return True
                if not self.sink.send_chunk(self.stream_id, chunk, self.process):
                    return False
                self.chunks_sent += 1
                self.bytes_sent += len(chunk)
        return True

    def _report_exit(self):
        """The transcoder closed its output on its own"""
        try:
            exit_code = self.process.wait(timeout=self.process.kill_timeout)
        except subprocess.TimeoutExpired:
            exit_code = self.process.kill()

        if not self.registry.on_process_exit(self.stream_id, self.process, exit_code):
            return
        print(f"[Relay {self.stream_id}] Finished after {self.chunks_sent} chunks ({self.bytes_sent} bytes)")
        if exit_code:
            if self.process.stderr_tail:
                print(f"[Relay {self.stream_id}] Last transcoder output: {self.process.stderr_tail[-1]}")
            self.sink.send_exception(ProcessFault(self.stream_id, exit_code))
