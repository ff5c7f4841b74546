"""
Websocket route for CamRelay.
One persistent connection per client, carrying JSON control messages in and
transcoder output out.
"""
from flask import request
from flask_sock import Sock
from simple_websocket import ConnectionClosed

from ..config import Config
from ..errors import ValidationError
from ..security import get_client_ip
from ..services.protocol import encode_exception
from ..services.session import ClientSession

sock = Sock()


def serve_connection(ws, **session_options) -> ClientSession:
    """Run the receive loop for one connection until it closes"""
    session = ClientSession(ws, **session_options)
    session.open()
    try:
        while session.is_open:
            session.handle(ws.receive())
    except ConnectionClosed:
        pass
    finally:
        session.close()
    return session


@sock.route(Config.WS_PATH)
def stream_socket(ws):
    """Websocket endpoint; ?framing=tagged selects id-tagged binary frames"""
    framing = request.args.get('framing')
    try:
        serve_connection(ws, peer=get_client_ip(), framing=framing)
    except ValidationError as e:
        print(f"[Session] Rejected connection: {e.message}")
        ws.send(encode_exception(e))
