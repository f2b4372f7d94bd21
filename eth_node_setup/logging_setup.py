"""
Logging configuration shared by the CLI and the provisioning steps.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DEFAULT_LOG_FILE = '/var/log/eth-node-setup/setup.log'

logger = logging.getLogger(__name__)


def setup_logging(log_file: Optional[str] = DEFAULT_LOG_FILE, verbose: bool = False) -> Optional[Path]:
    """
    Configure root logging with a file handler and a stderr handler.

    Falls back to stderr only when the log directory cannot be created
    (for example a dry run as an unprivileged user).

    Returns:
        Path of the active log file, or None when logging to stderr only
    """
    level = logging.DEBUG if verbose else logging.INFO
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(level if verbose else logging.WARNING)
    handlers = [stream_handler]

    active_file = None
    file_error = None
    if log_file:
        path = Path(log_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(path))
            active_file = path
        except OSError as e:
            file_error = e

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    if file_error:
        logger.warning(f"Cannot write log file {log_file} ({file_error}); logging to stderr only")
    return active_file
