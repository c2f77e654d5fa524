"""
Structured logging for the transfer service.

Every record, whether it comes from a structlog logger or a plain
``logging.getLogger(__name__)``, leaves through one structlog formatter on
stderr: JSON lines normally, a colored console view at DEBUG. Stdout stays
free for CLI output.

Passkey material and paymaster credentials are masked before rendering.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import settings

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx")

REDACTED = "***"
SENSITIVE_KEYS = frozenset({
    "api_key",
    "paymaster_api_key",
    "x-api-key",
    "authorization",
    "signed_material",
    "signature_bytes",
    "secret_key",
})


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def add_service_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", "smartpay")
    event_dict.setdefault("cluster", settings.cluster)
    return event_dict


def _pick_renderer(level: int) -> structlog.types.Processor:
    if level == logging.DEBUG:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer(sort_keys=True)


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog and stdlib logging.

    Args:
        log_level: Override log level (default: settings.log_level)
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context,
        redact_sensitive,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if level != logging.DEBUG:
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _pick_renderer(level),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # RPC polling logs every request at INFO
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_action_context(**values: object) -> None:
    """Attach wallet/action identifiers to every record logged in this task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
