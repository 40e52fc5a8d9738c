"""
Logging utilities for Lambda functions.

Provides structured JSON logging with correlation IDs for tracing requests.
"""

import json
import logging
import os
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR}


class StructuredLogger:
    """
    JSON logger for Lambda functions with correlation ID support.

    Example:
        logger = StructuredLogger(__name__)
        logger.info("Customer resolved", customer_id="gid://shopify/Customer/1", where="customers_exact")
    """

    def __init__(self, name: str, correlation_id: Optional[str] = None) -> None:
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def _log(
        self, level: str, message: str, **kwargs: Any
    ) -> None:
        """Internal method to emit structured JSON logs."""
        if not self.logger.isEnabledFor(_LEVELS[level]):
            return

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "logger": self.logger.name,
            "message": message,
            "correlationId": self.correlation_id,
            **kwargs,
        }

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        print(json.dumps(log_entry, default=str))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info level message."""
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning level message."""
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error level message."""
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug level message."""
        self._log("DEBUG", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error level message with the traceback of the exception being handled."""
        self._log("ERROR", message, traceback=traceback.format_exc(), **kwargs)


def get_logger(name: str, correlation_id: Optional[str] = None) -> StructuredLogger:
    """Build a StructuredLogger for one invocation."""
    return StructuredLogger(name, correlation_id)


def get_correlation_id(event: Dict[str, Any]) -> str:
    """
    Extract or generate correlation ID from an API Gateway event.

    Checks for correlation ID in:
    1. event['requestContext']['requestId'] (API Gateway REST and HTTP APIs)
    2. event['headers']['x-correlation-id'] (any header casing)
    3. Generates new UUID if not found
    """
    request_context = event.get("requestContext") or {}
    if request_context.get("requestId"):
        return str(request_context["requestId"])

    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == "x-correlation-id" and value:
            return str(value)

    return str(uuid.uuid4())
