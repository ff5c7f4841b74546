from .main import main_bp
from .api import api_bp
from .stream import sock
