import logging
import os
import sys
from pathlib import Path
from datetime import datetime

LOG_DIR_ENV = "SHEET_CORRECTOR_LOG_DIR"


def setup_logger(name: str = "SHEET_CORRECTOR", log_dir: str = None) -> logging.Logger:
    """
    Set up the shared logger for the whole package.

    How it works:
    1. File output at DEBUG level (everything, for troubleshooting a batch).
    2. Console output at INFO level (short progress for whoever runs the batch).

    The log directory defaults to ``logs`` under the current working directory
    and can be moved with the SHEET_CORRECTOR_LOG_DIR environment variable.
    An empty value turns the file handler off.
    """
    if log_dir is None:
        log_dir = os.environ.get(LOG_DIR_ENV, "logs")

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Calling this twice must not duplicate handlers
    if logger.hasHandlers():
        return logger

    # Format: [H:M:S] - [LEVEL] - message
    formatter = logging.Formatter('%(asctime)s - [%(levelname)s] - %(message)s', datefmt='%H:%M:%S')

    # --- HANDLER 1: daily file ---
    if log_dir:
        log_path = Path(log_dir).resolve()
        log_path.mkdir(parents=True, exist_ok=True)

        # e.g. session_2024-10-25.log
        log_filename = f"session_{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_path / log_filename, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # --- HANDLER 2: console ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# Singleton logger other modules import directly
app_logger = setup_logger()
