"""
CamRelay - Flask Application Factory
"""
__version__ = "0.1.0"

import atexit

from flask import Flask

from .config import Config
from .security import add_security_headers

_cleanup_registered = False


def create_app(config_class=Config):
    """Application factory pattern for Flask app creation"""
    global _cleanup_registered

    app = Flask(__name__, template_folder='templates')
    app.config.from_object(config_class)

    # Add security headers to all responses
    app.after_request(add_security_headers)

    # Register blueprints and the websocket endpoint
    from .routes import main_bp, api_bp, sock
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix='/api')
    sock.init_app(app)

    # No transcoder may outlive the server
    if not _cleanup_registered:
        atexit.register(cleanup)
        _cleanup_registered = True

    return app


def cleanup():
    """Graceful shutdown - stop all streams"""
    from .services.registry import stream_registry

    print("\n[System] Shutting down...")
    for stream_id in stream_registry.active_ids():
        print(f"[System] Stopping stream {stream_id}...")
    stream_registry.stop_all()
    print("[System] Shutdown complete")
