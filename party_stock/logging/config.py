"""
Structured logging for the trading engine.

Every module logs through structlog. ``configure_logging`` installs one
processor chain for the process; the audit helpers below give trade
decisions and session phase changes a fixed event shape so they can be
filtered by ``subsystem`` and replayed from JSON logs.

Values bound with ``structlog.contextvars`` (the engine binds ``session_id``
while a round settles) are merged into every event emitted meanwhile.
"""
import logging
import sys
from typing import Any, Optional, TextIO, Union

import structlog
from structlog.types import FilteringBoundLogger, Processor

TRADE_SUBSYSTEM = "trading"
STATE_SUBSYSTEM = "state_machine"


def _build_processors(
    format_json: bool,
    include_timestamp: bool,
    include_caller: bool,
    extra_processors: Optional[list[Processor]]
) -> list[Processor]:
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if include_timestamp:
        chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    if include_caller:
        chain.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.MODULE,
                        structlog.processors.CallsiteParameter.LINENO]
        ))
    chain.extend(extra_processors or [])

    if format_json:
        chain.append(structlog.processors.dict_tracebacks)
        chain.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        chain.append(structlog.processors.format_exc_info)
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: Union[str, int] = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list[Processor]] = None,
    stream: Optional[TextIO] = None
) -> None:
    """
    Configure structlog for the whole process.

    Args:
        level: Level name (DEBUG, INFO, ...) or logging constant
        format_json: Render one JSON object per line instead of console output
        include_timestamp: Add an ISO8601 UTC timestamp
        include_caller: Add module and line number of the call site
        extra_processors: Processors run just before rendering
        stream: Output stream, stdout by default
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logging.basicConfig(level=level, stream=stream or sys.stdout,
                        format="%(message)s", force=True)

    structlog.configure(
        processors=_build_processors(format_json, include_timestamp,
                                     include_caller, extra_processors),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)


def get_trade_logger(name: str) -> FilteringBoundLogger:
    """Logger for accepted and refused trade, loan and admin operations."""
    return get_logger(name).bind(subsystem=TRADE_SUBSYSTEM, audit_trail=True)


def get_state_logger(name: str) -> FilteringBoundLogger:
    """Logger for session phase changes."""
    return get_logger(name).bind(subsystem=STATE_SUBSYSTEM, audit_trail=True)


def log_trade_decision(
    logger: FilteringBoundLogger,
    action: str,
    accepted: bool,
    session_id: str,
    user_id: str,
    reason: Optional[str] = None,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Emit a ``trade_decision`` event.

    Accepted operations log at info, refused ones at warning with the
    failure reason attached.

    Args:
        logger: Logger from get_trade_logger
        action: Operation name (buy, sell, sell_all, start_loan, ...)
        accepted: Whether the operation was committed
        session_id: Target session
        user_id: Acting user, "-" for session-level operations
        reason: Failure reason of a refused operation
        context: Extra fields such as company, quantity, round and code
    """
    event: dict[str, Any] = {
        "action": action,
        "trade_result": "ACCEPTED" if accepted else "REFUSED",
        "session_id": session_id,
        "user_id": user_id,
    }
    if reason:
        event["reason"] = reason
    if context:
        event["context"] = context

    emit = logger.info if accepted else logger.warning
    emit("trade_decision", **event)


def log_state_transition(
    logger: FilteringBoundLogger,
    session_id: str,
    from_state: str,
    to_state: str,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """Emit a ``state_transition`` event for a session phase change."""
    logger.info(
        "state_transition",
        session_id=session_id,
        from_state=from_state,
        to_state=to_state,
        trigger=trigger,
        **({"context": context} if context else {})
    )
