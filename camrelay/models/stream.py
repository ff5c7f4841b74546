"""
Stream request model for CamRelay.
"""
from dataclasses import dataclass

from ..errors import ValidationError

# Tagged framing carries the id behind a uint16 length prefix
MAX_STREAM_ID_BYTES = 0xFFFF


@dataclass(frozen=True)
class StreamRequest:
    """A request to transcode one camera's source feed"""
    stream_id: str
    source_url: str

    @classmethod
    def build(cls, stream_id, source_url) -> 'StreamRequest':
        """Validate raw fields and build a request"""
        if not isinstance(stream_id, str) or not stream_id.strip():
            raise ValidationError('Missing stream id', stream_id if isinstance(stream_id, str) else None)
        if len(stream_id.encode('utf-8')) > MAX_STREAM_ID_BYTES:
            raise ValidationError(f'Stream id longer than {MAX_STREAM_ID_BYTES} bytes')
        if not isinstance(source_url, str) or not source_url.strip():
            raise ValidationError('Missing source URL', stream_id)
        return cls(stream_id, source_url.strip())
