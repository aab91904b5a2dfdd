from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wallet.api import create_app
from wallet.config import get_settings
from wallet.logging import setup_logging

settings = get_settings()
setup_logging(settings.log_level, settings.log_json)

app = create_app(settings, root_path="/api")

handler = Mangum(app)
