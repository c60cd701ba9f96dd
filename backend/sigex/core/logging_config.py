"""
Logging configuration with GELF support for structured expediente logging.
Extends standard Python logging to include expediente and certificate context.
"""

import logging
import json
import socket
from typing import Optional, Dict
from contextvars import ContextVar

# Context variables attached to every log message
current_user_id: ContextVar[Optional[str]] = ContextVar('current_user_id', default=None)
current_expediente_id: ContextVar[Optional[str]] = ContextVar('current_expediente_id', default=None)
current_oficina_id: ContextVar[Optional[str]] = ContextVar('current_oficina_id', default=None)
current_certificate_serial: ContextVar[Optional[str]] = ContextVar('current_certificate_serial', default=None)

_CONTEXT_FIELDS = {
    "user_id": current_user_id,
    "expediente_id": current_expediente_id,
    "oficina_id": current_oficina_id,
    "certificate_serial": current_certificate_serial,
}

# Syslog severities used by GELF
_GELF_LEVELS = {
    logging.DEBUG: 7,
    logging.INFO: 6,
    logging.WARNING: 4,
    logging.ERROR: 3,
    logging.CRITICAL: 2,
}

# Attributes passed through `extra=` that are shipped as additional fields
_EXTRA_PREFIXES = ('expediente_', 'certificate_', 'documento_', 'oficina_')

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class GELFFormatter(logging.Formatter):
    """Render a record as a GELF 1.1 JSON document carrying the expediente context"""

    facility = "sigex"

    def __init__(self, container_name: str = None):
        super().__init__()
        self.host = socket.gethostname()
        self.container_name = container_name

    def to_gelf(self, record: logging.LogRecord) -> Dict:
        payload = {
            "version": "1.1",
            "host": self.host,
            "short_message": record.getMessage(),
            "timestamp": record.created,
            "level": _GELF_LEVELS.get(record.levelno, 6),
            "facility": self.facility,
            "_logger": record.name,
            "_module": record.module,
            "_line": record.lineno,
        }
        if self.container_name:
            payload["_container_name"] = self.container_name

        payload.update({f"_{name}": value for name, value in get_expediente_context().items() if value})
        payload.update({
            f"_{key}": str(value)
            for key, value in vars(record).items()
            if key.startswith(_EXTRA_PREFIXES)
        })

        if record.exc_info:
            payload["full_message"] = self.formatException(record.exc_info)
        return payload

    def format(self, record):
        return json.dumps(self.to_gelf(record), default=str)


class GELFHandler(logging.Handler):
    """Ships GELF datagrams to Graylog over UDP"""

    def __init__(self, graylog_host: str = "graylog", graylog_port: int = 12201, container_name: str = None):
        super().__init__()
        self.address = (graylog_host, graylog_port)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.setFormatter(GELFFormatter(container_name))

    def emit(self, record):
        try:
            self.sock.sendto(self.format(record).encode('utf-8'), self.address)
        except OSError:
            self.handleError(record)

    def close(self):
        self.sock.close()
        super().close()


def set_expediente_context(
    user_id: str = None,
    expediente_id: str = None,
    oficina_id: str = None,
    certificate_serial: str = None
):
    """Set context for subsequent log messages; None leaves a field untouched."""
    values = {
        "user_id": user_id,
        "expediente_id": expediente_id,
        "oficina_id": oficina_id,
        "certificate_serial": certificate_serial,
    }
    for name, value in values.items():
        if value is not None:
            _CONTEXT_FIELDS[name].set(value)


def clear_expediente_context():
    for var in _CONTEXT_FIELDS.values():
        var.set(None)


def get_expediente_context() -> Dict[str, Optional[str]]:
    return {name: var.get() for name, var in _CONTEXT_FIELDS.items()}


def setup_logging(
    gelf_enabled: bool = False,
    graylog_host: str = "graylog",
    graylog_port: int = 12201,
    container_name: str = None,
    level: int = logging.INFO
):
    """Console logging always; GELF shipping to Graylog when enabled. Safe to call twice."""
    root = logging.getLogger()
    handler_types = {type(h) for h in root.handlers}

    if logging.StreamHandler not in handler_types:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(console)

    if gelf_enabled and GELFHandler not in handler_types:
        root.addHandler(GELFHandler(graylog_host, graylog_port, container_name))
        logging.getLogger(__name__).info(f"GELF logging enabled -> {graylog_host}:{graylog_port}")

    root.setLevel(level)
