#!/usr/bin/env python3
"""
CamRelay - Entry Point
"""
import signal
import sys

from dotenv import load_dotenv

# Load environment variables before importing app
load_dotenv()

from camrelay import create_app
from camrelay.config import get_config


def main():
    """Main entry point"""
    config = get_config()
    app = create_app(config)

    # atexit cleanup stops every transcoder on the way out
    signal.signal(signal.SIGINT, lambda s, f: sys.exit(0))
    signal.signal(signal.SIGTERM, lambda s, f: sys.exit(0))

    if config.DEBUG:
        print("[Flask] WARNING: Debug mode is ENABLED (not for production!)")

    print(f"[Flask] Streaming server listening on http://{config.HOST}:{config.PORT}")
    print(f"[Flask] Websocket endpoint: ws://{config.HOST}:{config.PORT}{config.WS_PATH}")
    print(f"[Flask] Transcoder: {config.FFMPEG_BIN} ({config.STREAM_FORMAT}/{config.STREAM_CODEC} @ {config.STREAM_FPS}fps)")
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG, threaded=True, use_reloader=False)


if __name__ == '__main__':
    main()
