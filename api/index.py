from mangum import Mangum
import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from broker.api import app
from broker.config import settings

logging.basicConfig(level=settings.LOG_LEVEL)

app.root_path = "/api"

handler = Mangum(app)
