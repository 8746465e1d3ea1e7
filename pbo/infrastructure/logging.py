import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

def setup_logging(log_path: Optional[Path] = None, debug: bool = False, quiet_console: bool = False) -> logging.Logger:
    """
    Setup logging configuration for PBO.

    Returns configured logger instance.

    Args:
        log_path: Append log records to this file instead of stderr
        debug: If True, enable DEBUG level logging with stage timings and tool command lines
        quiet_console: Only warnings and errors reach stderr (progress bar mode).
            Ignored when log_path is set.
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, mode="a")
    else:
        handler = logging.StreamHandler(sys.stderr)
        if quiet_console:
            handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    target = log_path if log_path else "stderr"
    logger.debug(f"Logging initialized: {target} (debug={'ON' if debug else 'OFF'})")

    return logger
