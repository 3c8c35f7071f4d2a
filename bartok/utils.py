# bartok/utils.py
"""
Utility functions and robust logging for bartok.
"""
import re, os, json, logging, logging.handlers, queue, atexit
from pathlib import Path
from .config import LOG_DIR

_SUBJECT_MAX_LEN = 128
_re_subject = re.compile(r"^[A-Za-z0-9._@:\-]+$")

def sanitize_subject_id(subject_id: str) -> str:
    """
    Validate a subject identifier before it becomes part of a store key.
    Subject IDs are short opaque strings (user IDs, ticket numbers, ...).
    """
    if not subject_id or not isinstance(subject_id, str):
        raise ValueError("Invalid subject ID")

    subject_id = subject_id.strip()

    if not subject_id:
        raise ValueError("Invalid subject ID")

    if len(subject_id) > _SUBJECT_MAX_LEN:
        raise ValueError(f"Subject ID longer than {_SUBJECT_MAX_LEN} characters")

    if not _re_subject.match(subject_id):
        raise ValueError("Subject ID contains invalid characters")

    return subject_id

_LOGGERS_STARTED = False
_queue_listener = None
_CONTEXT_FIELDS = ("subject", "op")

class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": self.formatTime(record, "%Y-%m-%d %H:%M:%S%z"),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k in _CONTEXT_FIELDS:
            v = getattr(record, k, None)
            if v is not None:
                base[k] = v
        base["src"] = f"{record.module}:{record.funcName}:{record.lineno}"
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)

class _KeyValueFormatter(logging.Formatter):
    default_fmt = "%(asctime)s | %(levelname)-8s | subject=%(subject)s op=%(op)s | %(message)s"
    def __init__(self):
        super().__init__(self.default_fmt, datefmt="%Y-%m-%d %H:%M:%S%z")

class _ContextFilter(logging.Filter):
    def filter(self, record):
        record.subject = getattr(record, 'subject', None)
        record.op = getattr(record, 'op', None)
        return True

def _make_handlers(app_name: str, log_dir: Path | None, json_mode: bool):
    handlers = []

    formatter_json = _JsonFormatter()
    formatter_kv = _KeyValueFormatter()

    journal_ok = False
    try:
        from systemd.journal import JournalHandler
        jh = JournalHandler(SYSLOG_IDENTIFIER=app_name)
        jh.setLevel(logging.INFO)
        jh.setFormatter(formatter_kv)
        handlers.append(jh)
        journal_ok = True
    except (ImportError, OSError):
        pass

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            log_dir / f"{app_name}.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter_json)
        handlers.append(fh)

    # Console output is always on.
    sh = logging.StreamHandler()
    sh.setLevel(logging.INFO)
    if json_mode and not journal_ok:
        sh.setFormatter(formatter_json)
    else:
        sh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))

    handlers.append(sh)

    for handler in handlers:
        handler.addFilter(_ContextFilter())

    return handlers

def setup_logging(
    app_name: str = "bartok",
    level: int = logging.INFO,
    json_mode: bool | None = None,
    log_dir: str | Path | None = None,
    reinitialize: bool = False,
):
    """
    Initializes logging with QueueHandler for thread-safety and performance.
    - app_name: Name/Identifier in Journal and file
    - json_mode: Force via env BARTOK_LOG_JSON=1. Default is True.
    - log_dir: Path for rotating file. BARTOK_LOG_FILE=0 disables the file.
    - reinitialize: If True, will force setup again (for child processes).
    """
    global _LOGGERS_STARTED, _queue_listener
    if _LOGGERS_STARTED and not reinitialize:
        return

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    log_dir = log_dir or LOG_DIR
    if os.getenv("BARTOK_LOG_FILE", "1").lower() in ("0", "false", "no", "off"):
        log_dir = None

    if json_mode is None:
        json_mode = os.getenv("BARTOK_LOG_JSON", "1").lower() in ("1", "true", "yes", "on")

    handlers = _make_handlers(app_name, Path(log_dir) if log_dir else None, json_mode)

    log_queue: queue.Queue = queue.Queue(-1)
    queue_handler = logging.handlers.QueueHandler(log_queue)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(queue_handler)

    _queue_listener = logging.handlers.QueueListener(log_queue, *handlers, respect_handler_level=True)
    _queue_listener.start()

    if not reinitialize:
        atexit.register(lambda: _queue_listener and _queue_listener.stop())

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    _LOGGERS_STARTED = True

setup_logging()

logger = logging.getLogger("bartok")

class ContextAdapter(logging.LoggerAdapter):
    """
    Fills optional extra fields: subject, op
    Usage:
        log = get_context_logger(subject="u1")
        log.info("Issued", extra={"op": "issue"})
    """
    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for k in _CONTEXT_FIELDS:
            if k not in extra and k in self.extra:
                extra[k] = self.extra[k]
        extra = {k: v for k, v in extra.items() if v is not None}
        kwargs["extra"] = extra
        return msg, kwargs

def get_context_logger(subject: str | None = None, op: str | None = None):
    return ContextAdapter(logger, {"subject": subject, "op": op})
