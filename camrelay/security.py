"""
Security helpers for CamRelay.
Audit logging of stream control events and HTTP security headers.
"""
import logging
from pathlib import Path

from flask import request

from .config import Config


# ============================================================================
# AUDIT LOGGING
# ============================================================================

_audit_logger = None


def _get_audit_logger():
    """Get or create the audit logger"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = logging.getLogger('camrelay.audit')
        _audit_logger.setLevel(logging.INFO)
        _audit_logger.propagate = False

        log_dir = Path(Config.AUDIT_LOG_DIR)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / 'audit.log')
        except OSError:
            # Fall back to local directory
            log_dir = Path(__file__).parent.parent / 'logs'
            log_dir.mkdir(exist_ok=True)
            file_handler = logging.FileHandler(log_dir / 'audit.log')

        # Format: timestamp | event_type | peer | stream | details
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        _audit_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter('[Audit] %(message)s'))
        _audit_logger.addHandler(console_handler)

        print(f"[Security] Audit logging enabled: {log_dir / 'audit.log'}")

    return _audit_logger


def audit_log(event_type: str, peer: str, stream_id: str = '-', details: str = ''):
    """Log a stream control event"""
    _get_audit_logger().info(f"{event_type} | {peer} | {stream_id or '-'} | {details}")


# ============================================================================
# REQUEST HELPERS
# ============================================================================

def get_client_ip() -> str:
    """Get client IP from the current request"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    return request.remote_addr or '127.0.0.1'


# ============================================================================
# SECURITY HEADERS
# ============================================================================

def add_security_headers(response):
    """Add security headers to response"""
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(), microphone=(), camera=()'

    # The viewer page plays websocket data through MediaSource blob URLs
    csp = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "media-src 'self' blob:; "
        "connect-src 'self' ws: wss:; "
        "frame-ancestors 'none'; "
        "base-uri 'self';"
    )
    response.headers['Content-Security-Policy'] = csp

    if request.blueprint == 'api':
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
        response.headers['Pragma'] = 'no-cache'

    return response
