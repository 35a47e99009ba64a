"""
Audit Logger

DESIGN DECISION: Every balance-affecting action in the system is logged.
This provides:
1. Traceability of every balance change
2. Debugging capability when a store operation fails
3. Compliance readiness

The audit logger:
- Is async so callers can await it inline with store calls
- Gracefully handles failures (never breaks the main flow)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from fuelcharge.models.audit import AuditEvent, AuditSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def get_logger(name: Optional[str] = None):
    """Get a structlog logger bound to a module name."""
    return structlog.get_logger(name)


class AuditLogger:
    """
    Central audit logging service.

    Writes every event to the structured local log. An optional sink
    (any callable taking an AuditEvent) receives a copy, which is how
    tests and the API layer observe the audit trail.
    """

    def __init__(self, sink=None):
        """
        Initialize audit logger.

        Args:
            sink: Optional callable receiving each AuditEvent.
        """
        self._sink = sink
        self._logger = structlog.get_logger("fuelcharge.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the sink accepted the event (or no sink is set).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._sink is None:
            return True

        try:
            self._sink(event)
            return True
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_sink_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., scan then record)
    and pass it through all subsequent operations.
    """
    return uuid4()
