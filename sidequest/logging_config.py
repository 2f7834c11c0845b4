# logging_config.py
import logging
import os
from logging.handlers import RotatingFileHandler
from dotenv import load_dotenv

load_dotenv()
LOG_FILE = os.environ.get("LOG_FILE_PATH", "/tmp/sidequest.log")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP client chatter from places, distance and Gemini calls
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "google_genai")


def setup_logging(log_file=None, console=False):
    """
    Route SideQuest logs to a rotating file (10MB x 5) on the root logger.

    Safe to call more than once; a second call leaves the handlers alone.
    """
    root = logging.getLogger()
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return

    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(log_file or LOG_FILE, maxBytes=10*1024*1024, backupCount=5)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sidequest").info(f"Logging to {log_file or LOG_FILE} at {LOG_LEVEL}")
