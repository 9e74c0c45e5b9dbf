import uvicorn
import os
from logging_config import setup_logging

# Configure root logging before anything else logs
log_level = os.getenv("LOG_LEVEL", "DEBUG")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from constants import APP_ENV
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 3003))
    reload = APP_ENV == "development"
    logger.info(f"Starting realtime messaging server on {host}:{port} ({APP_ENV})")
    uvicorn.run("app:app", host=host, port=port, reload=reload)
