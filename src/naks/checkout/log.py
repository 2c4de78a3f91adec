"""Logging module."""
import copy
import logging
import re
import sys
from enum import Enum

from loguru import logger

_token_param = re.compile(r"([?&]token=)[^&\s\"]+")


def redact(message: str) -> str:
    """Hide callback tokens in logged URLs."""
    return _token_param.sub(r"\1***", message)


class InterceptHandler(logging.Handler):
    """Send standard library log records to loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message.
        frame, depth = sys._getframe(6), 6
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        # uvicorn access logs include the callback URL
        logger.opt(depth=depth, exception=record.exc_info).log(
            level, redact(record.getMessage())
        )


class AuditLogType(str, Enum):
    audit = "audit"
    checkout_create = "checkout.create"
    checkout_abandon = "checkout.abandon"
    coupon_apply = "coupon.apply"
    payment_initiate = "payment.initiate"
    payment_initiate_failed = "payment.initiate_failed"
    payment_complete = "payment.complete"
    payment_fail = "payment.fail"
    tickets_issue = "tickets.issue"


def _format_audit(record) -> str:
    extra = record["extra"]
    type_ = extra.get("type")
    parts = [type_.value if isinstance(type_, AuditLogType) else str(type_)]
    for key in ("checkout", "payment"):
        if extra.get(key) is not None:
            parts.append(f"{key}={extra[key]}")
    fields = " ".join(parts).replace("{", "{{").replace("}", "}}")
    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <cyan>AUDIT</cyan> | "
        + fields
        + " | {message}\n{exception}"
    )


def setup_logging(debug: bool = False):
    """Set up the logger and the audit log.

    Standard library loggers (uvicorn, SQLAlchemy, httpx) are routed to loguru.
    """
    level = logging.DEBUG if debug else logging.INFO

    logger.remove()
    logger.add(sys.stderr, level=level)

    audit_log.remove()
    audit_log.add(sys.stderr, level=logging.INFO, format=_format_audit)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # request logs would repeat every gateway call
    logging.getLogger("httpx").setLevel(level if debug else logging.WARNING)


audit_log = copy.deepcopy(logger, memo={id(sys.stderr): sys.stderr}).bind(name="audit")
"""Separate logger for business events."""

audit_log.remove()

audit_log.configure(
    extra=dict(
        type=AuditLogType.audit,
        checkout=None,
        payment=None,
    )
)
