"""
Serverless entry point for the Casewatch API
"""
import os

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("SCHEDULER_ENABLED", "false")  # The platform's cron calls /cron/sla

from mangum import Mangum

from casewatch.config import settings
from casewatch.infrastructure.database import init_database
from casewatch.main import app, configure_app_state
from casewatch.shared.infrastructure.logging import setup_logging

# The lifespan does not run here, so logging and app state are wired at import time
setup_logging(settings.log_level, settings.environment)
init_database()
configure_app_state(app)

# Lambda handler for ASGI app (disable lifespan for serverless)
handler = Mangum(app, lifespan="off")
