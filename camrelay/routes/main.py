"""
Main routes for CamRelay.
Serves the browser viewer page.
"""
from flask import Blueprint, render_template

from ..config import Config

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    """Viewer page that starts a stream over the websocket and plays it"""
    return render_template('index.html', ws_path=Config.WS_PATH)
