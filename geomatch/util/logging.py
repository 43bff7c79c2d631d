"""
Structured logging for index, snapshot, catalog and prediction operations.
"""

import logging
from typing import Any, Dict, Optional


class StructuredLogger:
    """Structured logger for matching engine operations."""

    def __init__(self, name: str = "geomatch"):
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

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "rejected", "degraded"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_index_build(self, node_count: int, dimension: int, start_time: float, end_time: float,
                        status: str = "success", details: Dict[str, Any] = None):
        """Log an index build with its duration."""
        log_details = {
            "node_count": node_count,
            "dimension": dimension,
            "duration_ms": round((end_time - start_time) * 1000, 2),
        }
        if details:
            log_details.update(details)

        self.log_operation("index.build", status, log_details)

    def log_snapshot_operation(self, operation: str, path: str, status: str = "success",
                               details: Dict[str, Any] = None):
        """Log a snapshot save or load."""
        log_details = {"path": str(path)}
        if details:
            log_details.update(details)

        self.log_operation(f"snapshot.{operation}", status, log_details)

    def log_catalog_load(self, path: str, accepted: int, rejected: int, status: str = "success"):
        """Log catalog ingestion counts."""
        self.log_operation("catalog.load", status, {
            "path": str(path),
            "accepted": accepted,
            "rejected": rejected,
        })

    def log_prediction(self, request_id: str, mode: str, match_count: int, confidence: float,
                       tier: str, visibility: str, reason_code: Optional[str] = None):
        """Log the outcome of one predict call. Coordinates are never logged."""
        details = {
            "request_id": request_id,
            "mode": mode,
            "match_count": match_count,
            "confidence": round(confidence, 4),
            "tier": tier,
            "visibility": visibility,
        }
        if reason_code:
            details["reason_code"] = reason_code

        self.log_operation("predict", "success", details)

    def log_degraded(self, reason: str, details: Dict[str, Any] = None):
        """Log a switch into degraded serving mode."""
        log_details = {"reason": reason}
        if details:
            log_details.update(details)

        self.log_operation("index.warmup", "degraded", log_details)

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
