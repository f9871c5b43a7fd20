"""WSGI entry point for production deployment."""
import sys
import logging
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).parent))

from config import load_config
from utils.logger import setup_logging
from models.database import AuditStore
from monitor.engine import MonitoringEngine
from web.app import create_app

logger = logging.getLogger("opswatch.wsgi")

config = load_config()
setup_logging(config["logging"]["level"], config["logging"].get("file"))

db = AuditStore(config["database"]["path"])
db.connect()

engine = MonitoringEngine(config, store=db)
app = create_app(config, {"monitoring": engine, "db": db})

# Start the monitoring loop so the API has live data
try:
    engine.start()
except Exception as e:
    logger.warning(f"Monitoring loop failed to start: {e}")
