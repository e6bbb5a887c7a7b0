import os
import sys
import time
import queue
import json
import logging
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from flask import g, has_request_context

# Thread-safe message queue drained by GET /api/logs
msg_queue: queue.Queue = queue.Queue(maxsize=1000)

logger = logging.getLogger("mangalink")
logger.setLevel(logging.INFO)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_LOG_DIR = os.path.join(BASE_DIR, 'instance')

DEBUG_LOGGING = os.environ.get('DEBUG_LOGGING', 'false').lower() in ('1', 'true', 'yes', 'on')

debug_logger = logging.getLogger("mangalink.debug")
debug_logger.setLevel(logging.INFO)
debug_logger.propagate = False
debug_logger.disabled = not DEBUG_LOGGING


def configure_logging(log_dir: Optional[str] = None) -> str:
    """Attach file and stdout handlers once. Returns the log file path."""
    log_dir = log_dir or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, 'mangalink.log')

    if not any(getattr(h, "baseFilename", None) == log_file for h in logger.handlers):
        file_handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
        logger.addHandler(file_handler)

    if not any(getattr(h, "_mangalink_stdout", False) for h in logger.handlers):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(logging.Formatter('%(message)s'))  # Keep stdout clean
        stream_handler._mangalink_stdout = True
        logger.addHandler(stream_handler)

    if DEBUG_LOGGING:
        debug_file = os.path.join(log_dir, 'debug.log')
        if not any(getattr(h, "baseFilename", None) == debug_file for h in debug_logger.handlers):
            debug_handler = RotatingFileHandler(debug_file, maxBytes=10 * 1024 * 1024, backupCount=10)
            debug_handler.setFormatter(logging.Formatter('%(message)s'))
            debug_logger.addHandler(debug_handler)

    return log_file


def _request_prefix() -> str:
    """Return request id prefix if available."""
    if has_request_context() and getattr(g, "request_id", None):
        return f"[{g.request_id}] "
    return ""


def log(msg: str) -> None:
    """Log a message to console, file, and message queue."""
    full = f"{_request_prefix()}{msg}"
    logger.info(full)

    timestamp = time.strftime("[%H:%M:%S]")
    try:
        msg_queue.put_nowait(f"{timestamp} {full}")
    except queue.Full:
        # Nobody is reading; drop the oldest line
        try:
            msg_queue.get_nowait()
        except queue.Empty:
            pass
        try:
            msg_queue.put_nowait(f"{timestamp} {full}")
        except queue.Full:
            pass


def drain_messages(limit: int = 200) -> List[str]:
    """Pop up to `limit` queued messages."""
    messages = []
    while len(messages) < limit:
        try:
            messages.append(msg_queue.get_nowait())
        except queue.Empty:
            break
    return messages


def debug_log_event(event: dict) -> None:
    """Write structured debug events to a local file."""
    if debug_logger.disabled:
        return
    try:
        debug_logger.info(json.dumps(event, ensure_ascii=True, separators=(',', ':')))
    except (TypeError, ValueError) as exc:
        logger.info(f"⚠️ Debug log failure: {exc}")
