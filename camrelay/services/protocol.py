"""
Control protocol codec for CamRelay.

Text frames carry JSON control messages:
    {"action": "start_stream", "id": "cam1", "sourceUrl": "rtsp://..."}
    {"action": "stop_stream", "id": "cam1"}
    {"action": "error", "id": "cam1", "message": "..."}   (server -> client)

Binary frames carry transcoder output. With "raw" framing the chunk is sent
verbatim and the client correlates it with the stream it last started. With
"tagged" framing every chunk is prefixed with its stream id:
    uint16 big-endian id length | id (utf-8) | chunk
"""
import json
import struct
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..errors import ProtocolError, RelayError, ValidationError
from ..models.stream import MAX_STREAM_ID_BYTES, StreamRequest

ACTION_START = 'start_stream'
ACTION_STOP = 'stop_stream'
ACTION_ERROR = 'error'

FRAMING_RAW = 'raw'
FRAMING_TAGGED = 'tagged'
FRAMINGS = (FRAMING_RAW, FRAMING_TAGGED)

_ID_LENGTH = struct.Struct('!H')


@dataclass(frozen=True)
class StartStream:
    request: StreamRequest


@dataclass(frozen=True)
class StopStream:
    stream_id: str


ControlMessage = Union[StartStream, StopStream]


def decode_message(raw) -> ControlMessage:
    """Decode one inbound text frame into a control message.

    Raises ProtocolError for anything that is not a recognised JSON control
    message and ValidationError when a recognised message lacks fields.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode('utf-8')
        except UnicodeDecodeError:
            raise ProtocolError('Binary messages are not accepted')
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ProtocolError('Message is not valid JSON')
    if not isinstance(data, dict):
        raise ProtocolError('Message must be a JSON object')

    action = data.get('action')
    if action == ACTION_START:
        # rtspUrl is the field name used by older mobile clients
        source_url = data.get('sourceUrl') or data.get('rtspUrl')
        return StartStream(StreamRequest.build(data.get('id'), source_url))
    if action == ACTION_STOP:
        stream_id = data.get('id')
        if not isinstance(stream_id, str) or not stream_id.strip():
            raise ValidationError('Missing stream id')
        return StopStream(stream_id)
    raise ProtocolError(f"Unknown action: {action!r}")


def encode_error(message: str, stream_id: Optional[str] = None) -> str:
    """Encode a server-originated error notification"""
    payload = {'action': ACTION_ERROR}
    if stream_id is not None:
        payload['id'] = stream_id
    payload['message'] = message
    return json.dumps(payload)


def encode_exception(error: RelayError) -> str:
    return encode_error(error.message, error.stream_id)


def encode_frame(stream_id: str, chunk: bytes) -> bytes:
    """Prefix a chunk with its stream id for tagged framing"""
    id_bytes = stream_id.encode('utf-8')
    if len(id_bytes) > MAX_STREAM_ID_BYTES:
        raise ValueError('Stream id too long for tagged framing')
    return _ID_LENGTH.pack(len(id_bytes)) + id_bytes + chunk


def decode_frame(frame: bytes) -> Tuple[str, bytes]:
    """Split a tagged frame into (stream_id, chunk)"""
    if len(frame) < _ID_LENGTH.size:
        raise ProtocolError('Frame too short')
    (length,) = _ID_LENGTH.unpack_from(frame)
    end = _ID_LENGTH.size + length
    if len(frame) < end:
        raise ProtocolError('Frame shorter than its id length')
    try:
        stream_id = frame[_ID_LENGTH.size:end].decode('utf-8')
    except UnicodeDecodeError:
        raise ProtocolError('Frame id is not valid UTF-8')
    return stream_id, frame[end:]


def resolve_framing(value: Optional[str], default: str = FRAMING_RAW) -> str:
    """Normalise a framing name, falling back to the default"""
    if not value:
        return default
    value = value.strip().lower()
    if value not in FRAMINGS:
        raise ValidationError(f"Unknown framing: {value}")
    return value
