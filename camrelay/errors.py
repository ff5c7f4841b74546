"""
Error taxonomy for CamRelay.

Every error is local to the connection or stream id that caused it; none of
them should bring the server down.
"""
from typing import Optional


class RelayError(Exception):
    """Base class for errors reported back to a client"""

    def __init__(self, message: str, stream_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stream_id = stream_id


class ValidationError(RelayError):
    """Missing or malformed request fields - no state was changed"""


class StartError(RelayError):
    """The transcoder could not be launched - nothing left registered"""

    def __init__(self, stream_id: str, cause: BaseException):
        super().__init__(f"Transcoder failed to start: {cause}", stream_id)
        self.cause = cause


class ProcessFault(RelayError):
    """The transcoder exited on its own with a nonzero status"""

    def __init__(self, stream_id: str, exit_code: Optional[int]):
        super().__init__(f"Transcoder exited with code {exit_code}", stream_id)
        self.exit_code = exit_code


class ProtocolError(RelayError):
    """An inbound message could not be decoded"""


class TerminationTimeout(RelayError):
    """A transcoder ignored the interrupt signal and had to be killed"""
