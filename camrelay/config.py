"""
Configuration classes for CamRelay.
"""
import os


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration class"""

    # Flask
    DEBUG = _env_bool('DEBUG', 'false')

    # Network
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', '3000'))
    WS_PATH = os.environ.get('WS_PATH', '/ws')

    # flask-sock server options (seconds between keepalive pings)
    SOCK_SERVER_OPTIONS = {'ping_interval': int(os.environ.get('WS_PING_INTERVAL', '25'))}

    # Transcoder
    FFMPEG_BIN = os.environ.get('FFMPEG_BIN', 'ffmpeg')
    STREAM_FORMAT = os.environ.get('STREAM_FORMAT', 'webm')
    STREAM_CODEC = os.environ.get('STREAM_CODEC', 'vp8')
    STREAM_FPS = int(os.environ.get('STREAM_FPS', '20'))
    STREAM_GOP = int(os.environ.get('STREAM_GOP', '30'))
    STREAM_BITRATE = os.environ.get('STREAM_BITRATE', '1M')
    STREAM_CRF = int(os.environ.get('STREAM_CRF', '10'))
    STREAM_CPU_USED = int(os.environ.get('STREAM_CPU_USED', '4'))
    LOG_TRANSCODER_OUTPUT = _env_bool('LOG_TRANSCODER_OUTPUT', 'false')

    # RTSP sources (empty transport keeps ffmpeg's default)
    RTSP_TRANSPORT = os.environ.get('RTSP_TRANSPORT', 'tcp')
    RTSP_USERNAME = os.environ.get('RTSP_USERNAME', '')
    RTSP_PASSWORD = os.environ.get('RTSP_PASSWORD', '')

    # Process supervision
    KILL_TIMEOUT = float(os.environ.get('KILL_TIMEOUT', '5'))
    READ_CHUNK_SIZE = int(os.environ.get('READ_CHUNK_SIZE', '65536'))

    # Client sessions
    SEND_QUEUE_SIZE = int(os.environ.get('SEND_QUEUE_SIZE', '256'))
    SEND_TIMEOUT = float(os.environ.get('SEND_TIMEOUT', '5'))
    STOP_ON_DISCONNECT = _env_bool('STOP_ON_DISCONNECT', 'true')
    RELAY_FRAMING = os.environ.get('RELAY_FRAMING', 'raw')

    # Audit log directory (falls back to ./logs when not writable)
    AUDIT_LOG_DIR = os.environ.get('AUDIT_LOG_DIR', '/var/log/camrelay')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Configuration used by the test suite"""
    TESTING = True


config_by_name = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}


def get_config(name: str = None):
    """Config class for name, or for CAMRELAY_ENV when name is omitted"""
    if name is None:
        name = os.environ.get('CAMRELAY_ENV', '')
    name = name.strip().lower()
    if not name:
        return Config
    try:
        return config_by_name[name]
    except KeyError:
        raise ValueError(f"Unknown CAMRELAY_ENV '{name}' (expected one of {', '.join(config_by_name)})") from None
