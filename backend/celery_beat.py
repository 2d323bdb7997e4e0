"""
Celery Beat scheduler entrypoint for periodic retention runs.

Usage:
    celery -A celery_beat beat --loglevel=info

Environment Variables:
    CELERY_BROKER_URL: Redis broker URL (default: redis://redis:6379/1)
    DATABASE_URL: PostgreSQL connection string for result backend
"""

import os
import sys
import logging

# Make the docservice package importable when run from this directory
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from docservice.config import get_settings
from docservice.logging_config import setup_logging
from docservice.celery_app import celery_app

settings = get_settings()
setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir,
    app_name="docservice-beat",
    enable_json=settings.log_json,
)

logger = logging.getLogger(__name__)
logger.info("Celery Beat scheduler starting...")

if __name__ == "__main__":
    celery_app.Beat().run()
