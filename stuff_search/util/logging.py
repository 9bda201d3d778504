"""
Structured operation logging for inventory, vector and ingestion events.
"""

import logging
from typing import Any, Dict


class StructuredLogger:
    """Structured logger for inventory operations, ingestion and consistency checks."""

    def __init__(self, name: str = "stuff_search"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_container_operation(self, operation: str, container_id: int, details: Dict[str, Any] = None, status: str = "success"):
        """Log a container-specific operation."""
        log_details = {"container_id": container_id}
        if details:
            log_details.update(details)

        self.log_operation(f"container.{operation}", status, log_details)

    def log_item_operation(self, operation: str, item_id: int, details: Dict[str, Any] = None, status: str = "success"):
        """Log an item-specific operation."""
        log_details = {"item_id": item_id}
        if details:
            log_details.update(details)

        self.log_operation(f"item.{operation}", status, log_details)

    def log_vector_operation(self, operation: str, record_id: int, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_ingest_outcome(self, source: str, status: str, item_id: int = None, reason: str = None):
        """Log the outcome of ingesting one image."""
        details = {"source": source}
        if item_id is not None:
            details["item_id"] = item_id
        if reason:
            details["reason"] = reason[:100]

        level = logging.INFO if status == "succeeded" else logging.WARNING
        self.log_operation("ingest.image", status, details, level=level)

    def log_search(self, query: str, k: int, returned: int, dropped: int = 0):
        """Log a completed search."""
        details = {
            "query": query[:50] + "..." if len(query) > 50 else query,
            "k": k,
            "returned": returned,
        }
        if dropped:
            details["dropped"] = dropped

        self.log_operation("search", "success", details)

    def log_consistency_error(self, operation: str, error: Exception, details: Dict[str, Any] = None):
        """Log a consistency violation. These are defect signals, never routine."""
        log_details = {"error": str(error), "error_type": type(error).__name__}
        if details:
            log_details.update(details)

        self.log_operation(f"consistency.{operation}", "violated", log_details, level=logging.ERROR)

    def log_drift_finding(self, finding_type: str, severity: str, record_id: int, details: Dict[str, Any] = None):
        """Log drift detection findings."""
        log_details = {
            "finding_type": finding_type,
            "severity": severity,
            "record_id": record_id
        }
        if details:
            log_details.update(details)

        self.log_operation("drift.finding", "detected", log_details, level=logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
