"""Centralized logging configuration with optional Supabase shipping.

This module provides:
- JSONFormatter for structured logging
- SupabaseHandler for centralized log collection (batched)
- Fallback to stderr-only when Supabase is unavailable
"""

import atexit
import json
import logging
import re
import sys
import threading
from queue import Queue, Empty
from typing import Optional

TAG_PATTERN = re.compile(r'\[([A-Z_]+)\]\s*(.*)', re.DOTALL)


def build_log_entry(record: logging.LogRecord, service: str) -> dict:
    """Turn a record into the structured entry shipped to Supabase.

    A leading ``[TAG]`` in the message is split out into its own field.
    """
    tag = None
    message = record.getMessage()
    tag_match = TAG_PATTERN.match(message)
    if tag_match:
        tag = tag_match.group(1)
        message = tag_match.group(2)

    return {
        "service": service,
        "level": record.levelname,
        "tag": tag,
        "message": message,
        "module": record.module,
        "extra": {
            "function": record.funcName,
            "line": record.lineno,
        },
    }


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service: str = None):
        super().__init__()
        self.service = service or "caspio-mcp-server"

    def format(self, record: logging.LogRecord) -> str:
        log_entry = build_log_entry(record, self.service)
        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


class SupabaseHandler(logging.Handler):
    """Logging handler that batches logs and sends to Supabase.

    Logs are buffered and sent in batches to reduce database writes.
    Flush occurs every flush_interval seconds or when batch_size is reached.
    """

    def __init__(
        self,
        supabase_client,
        service: str,
        batch_size: int = 20,
        flush_interval: float = 10.0,
        start_worker: bool = True,
    ):
        super().__init__()
        self.supabase = supabase_client
        self.service = service
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self._queue: Queue = Queue()
        self._shutdown = threading.Event()
        self._flush_thread = None
        if start_worker:
            self._flush_thread = threading.Thread(target=self._flush_worker, daemon=True)
            self._flush_thread.start()
            atexit.register(self.close)

    def emit(self, record: logging.LogRecord):
        """Queue a log record for batched sending."""
        try:
            log_entry = build_log_entry(record, self.service)
            if record.exc_info:
                log_entry["extra"]["exception"] = logging.Formatter().formatException(record.exc_info)
            self._queue.put(log_entry)

            if self._queue.qsize() >= self.batch_size:
                self.flush()
        except Exception:
            self.handleError(record)

    def _flush_worker(self):
        """Background thread that flushes logs periodically."""
        while not self._shutdown.wait(self.flush_interval):
            if not self._queue.empty():
                self.flush()

    def flush(self):
        """Send queued logs to Supabase."""
        logs = []
        while len(logs) < self.batch_size * 2:  # Don't flush too many at once
            try:
                logs.append(self._queue.get_nowait())
            except Empty:
                break

        if not logs or not self.supabase:
            return
        try:
            self.supabase.table("logs").insert(logs).execute()
        except Exception as e:
            # stderr only, logging here would recurse
            print(f"[WARNING] Failed to send logs to Supabase: {e}", file=sys.stderr)

    def close(self):
        """Flush remaining logs and stop the background thread."""
        self._shutdown.set()
        self.flush()
        super().close()


_supabase_handler: Optional[SupabaseHandler] = None


def create_supabase_client(url: str, key: str):
    """Create a Supabase client, or None when credentials are missing."""
    if not (url and key):
        return None
    from supabase import create_client
    return create_client(url, key)


def setup_logging(
    service: str = "caspio-mcp-server",
    json_logs: bool = False,
    supabase_client=None,
    level: int = logging.INFO,
) -> logging.Logger:
    """Configure logging with optional Supabase integration.

    Args:
        service: Service name attached to shipped log entries.
        json_logs: Emit JSON lines on stderr instead of plain text.
        supabase_client: Supabase client instance for remote logging.
        level: Root log level.

    Returns:
        Configured root logger.
    """
    global _supabase_handler

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(JSONFormatter(service) if json_logs else PlainFormatter())
    root_logger.addHandler(stderr_handler)

    supabase_enabled = False
    if supabase_client:
        try:
            _supabase_handler = SupabaseHandler(supabase_client=supabase_client, service=service)
            _supabase_handler.setLevel(level)
            root_logger.addHandler(_supabase_handler)
            supabase_enabled = True
        except Exception as e:
            print(f"[WARNING] Supabase logging setup failed: {e}", file=sys.stderr)

    # Suppress noisy HTTP client logs (Caspio and Supabase clients use httpx)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if supabase_enabled:
        logger.info(f"[STARTUP] Supabase logging enabled for service: {service}")
    else:
        logger.info("[STARTUP] Supabase logging disabled (no client)")

    return root_logger


def flush_logs():
    """Manually flush any pending logs to Supabase."""
    if _supabase_handler:
        _supabase_handler.flush()
