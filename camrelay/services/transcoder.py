"""
FFmpeg transcoder process management for CamRelay.
Wraps one external subprocess that turns a camera feed into a webm stream.
"""
import os
import signal
import subprocess
import threading
import time
from collections import deque
from typing import Callable, Iterator, List, Optional
from urllib.parse import urlparse, urlunparse

from ..config import Config
from ..errors import StartError, TerminationTimeout

CommandBuilder = Callable[[str], List[str]]

STDERR_TAIL_LINES = 20


def _netloc(username: str, password: str, hostname: str, port: Optional[int]) -> str:
    if ':' in hostname:
        hostname = f"[{hostname}]"
    netloc = f"{username}:{password}@{hostname}"
    if port:
        netloc += f":{port}"
    return netloc


def add_rtsp_credentials(url: str, username: str = None, password: str = None) -> str:
    """Add authentication credentials to RTSP URL if not already present"""
    username = Config.RTSP_USERNAME if username is None else username
    password = Config.RTSP_PASSWORD if password is None else password
    parsed = urlparse(url)
    if parsed.scheme in ('rtsp', 'rtsps') and parsed.username is None and username and password and parsed.hostname:
        netloc = _netloc(username, password, parsed.hostname, parsed.port)
        return urlunparse((parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment))
    return url


def mask_url(url: str) -> str:
    """Hide the password of a source URL for log output"""
    try:
        parsed = urlparse(url)
        if parsed.password is None or not parsed.hostname:
            return url
        netloc = _netloc(parsed.username or '', '****', parsed.hostname, parsed.port)
    except ValueError:
        return url
    return urlunparse((parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment))


def build_ffmpeg_command(source_url: str) -> List[str]:
    """Build the ffmpeg argument list for a realtime, audio-less webm stream on stdout"""
    command = [Config.FFMPEG_BIN, '-hide_banner', '-nostdin']
    if Config.RTSP_TRANSPORT and urlparse(source_url).scheme in ('rtsp', 'rtsps'):
        command += ['-rtsp_transport', Config.RTSP_TRANSPORT]
    command += [
        '-i', source_url,
        '-f', Config.STREAM_FORMAT,
        '-codec:v', Config.STREAM_CODEC,
        '-an',
        '-cpu-used', str(Config.STREAM_CPU_USED),
        '-b:v', Config.STREAM_BITRATE,
        '-crf', str(Config.STREAM_CRF),
        '-deadline', 'realtime',
        '-g', str(Config.STREAM_GOP),
        '-r', str(Config.STREAM_FPS),
        '-',
    ]
    return command


class TranscoderProcess:
    """Owns a single transcoder subprocess and its output pipe"""

    def __init__(self, stream_id: str, source_url: str,
                 command_builder: CommandBuilder = None,
                 kill_timeout: float = None,
                 chunk_size: int = None):
        self.stream_id = stream_id
        self.source_url = source_url
        self.kill_timeout = Config.KILL_TIMEOUT if kill_timeout is None else kill_timeout
        self.chunk_size = chunk_size or Config.READ_CHUNK_SIZE
        self.process: Optional[subprocess.Popen] = None
        self.started_at = None
        self.exit_code = None
        self.stderr_tail = deque(maxlen=STDERR_TAIL_LINES)
        self._build_command = command_builder or build_ffmpeg_command
        self._retired = threading.Event()
        self._kill_lock = threading.Lock()
        self._output_claimed = False
        self._stderr_thread = None
        self._spawn_url = source_url

    def __repr__(self):
        return f'<TranscoderProcess {self.stream_id} pid={self.pid}>'

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def retired(self) -> bool:
        """True once the registry has stopped or replaced this process"""
        return self._retired.is_set()

    def start(self) -> 'TranscoderProcess':
        """Spawn the transcoder; raises StartError if it cannot be launched"""
        if self.process is not None:
            raise RuntimeError(f"{self!r} already started")
        self._spawn_url = add_rtsp_credentials(self.source_url)
        command = self._build_command(self._spawn_url)
        try:
            self.process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except (OSError, ValueError) as e:
            print(f"[FFmpeg {self.stream_id}] Failed to launch: {e}")
            raise StartError(self.stream_id, e) from e

        self.started_at = time.time()
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name=f"stderr-{self.stream_id}", daemon=True
        )
        self._stderr_thread.start()
        print(f"[FFmpeg {self.stream_id}] Started pid {self.pid} for {mask_url(self.source_url)}")
        return self

    def output_channel(self) -> Iterator[bytes]:
        """Lazily yield stdout chunks until the process closes its output.

        The channel can be consumed only once.
        """
        if self.process is None:
            raise RuntimeError(f"{self!r} not started")
        if self._output_claimed:
            raise RuntimeError(f"Output of {self!r} already consumed")
        self._output_claimed = True
        return self._read_chunks(self.process.stdout)

    def _read_chunks(self, stdout) -> Iterator[bytes]:
        try:
            while True:
                try:
                    chunk = stdout.read(self.chunk_size)
                except (OSError, ValueError):
                    break
                if not chunk:
                    break
                yield chunk
        finally:
            stdout.close()

    def _drain_stderr(self):
        """Read diagnostic output so the pipe never fills; never relayed"""
        stderr = self.process.stderr
        masked = mask_url(self._spawn_url)
        try:
            for data in iter(lambda: stderr.read(4096), b''):
                for line in data.decode('utf-8', errors='replace').splitlines():
                    line = line.strip().replace(self._spawn_url, masked)
                    if not line:
                        continue
                    self.stderr_tail.append(line)
                    if Config.LOG_TRANSCODER_OUTPUT:
                        print(f"[FFmpeg {self.stream_id}] {line}")
        except (OSError, ValueError):
            pass
        finally:
            stderr.close()

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def wait(self, timeout: float = None) -> Optional[int]:
        """Wait for the process to exit and return its exit code"""
        if self.process is None:
            return None
        self.exit_code = self.process.wait(timeout=timeout)
        return self.exit_code

    def retire(self):
        """Mark the process as no longer registered; its output is dropped from now on"""
        self._retired.set()

    def _interrupt(self):
        """Send an interrupt and wait; raises TerminationTimeout if the process lingers"""
        try:
            if os.name == 'nt':
                self.process.terminate()
            else:
                self.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            return
        try:
            self.process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired as e:
            raise TerminationTimeout(
                f"pid {self.pid} still running {self.kill_timeout}s after interrupt", self.stream_id
            ) from e

    def kill(self) -> Optional[int]:
        """Stop the transcoder: interrupt first, SIGKILL after kill_timeout.

        Safe to call more than once and from several threads.
        """
        self.retire()
        with self._kill_lock:
            if self.process is None:
                return None
            if self.process.poll() is None:
                try:
                    self._interrupt()
                except TerminationTimeout as e:
                    print(f"[FFmpeg {self.stream_id}] {e.message}, killing")
                    self.process.kill()
                    self.process.wait()
            self.exit_code = self.process.returncode
        return self.exit_code

    def status(self) -> dict:
        """Describe the process for the status API"""
        return {
            'stream_id': self.stream_id,
            'source_url': mask_url(self.source_url),
            'pid': self.pid,
            'alive': self.is_alive(),
            'started_at': self.started_at,
            'uptime': round(time.time() - self.started_at, 1) if self.started_at else 0,
        }
