"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- container
- blob_name
- upload_id
- duration_ms

Signed URLs are bearer credentials: every record passes through a redaction
filter that masks SAS signatures and the configured client secret.

Usage:
    from blob_gateway.utils.logging import configure_logging, log_upload_started

    configure_logging('blob-gateway', 'INFO')
    log_upload_started(logger, upload_id='123', container='reports', blob_name='a.csv')
"""
import logging
import re
import sys
from typing import Any, Dict, Iterable, Optional

from pythonjsonlogger import jsonlogger

REDACTED = "REDACTED"

_SIGNATURE_PATTERN = re.compile(r"(sig=)[^&\s\"']+", re.IGNORECASE)

# Azure SDK request/response logging is noisy at INFO and echoes request URLs
_QUIET_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
)


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Mask SAS signatures and any of the given secret values in ``text``."""
    text = _SIGNATURE_PATTERN.sub(rf"\g<1>{REDACTED}", text)
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


_STANDARD_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


class RedactionFilter(logging.Filter):
    """Scrubs signed-URL signatures and secrets from the message and extra fields."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self._secrets = tuple(s for s in secrets if s)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message, self._secrets)
        if cleaned != message:
            record.msg = cleaned
            record.args = None

        # Fields passed through extra= are serialized by the JSON formatter
        for name, value in list(vars(record).items()):
            if name in _STANDARD_RECORD_ATTRS or not isinstance(value, str):
                continue
            cleaned_value = redact(value, self._secrets)
            if cleaned_value != value:
                setattr(record, name, cleaned_value)
        return True


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(
        cls,
        service_name: str,
        log_level: str = "INFO",
        secrets: Iterable[str] = (),
    ):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            secrets: Values that must never appear in log output
        """
        if cls._configured:
            return

        cls._service_name = service_name

        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(level)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        handler.addFilter(RedactionFilter(secrets))

        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._configured = True


def _build_log_extra(
    event: str,
    container: Optional[str] = None,
    blob_name: Optional[str] = None,
    upload_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """Build extra fields for structured logging."""
    extra = {
        "event": event,
        **kwargs
    }

    if container:
        extra["container"] = container
    if blob_name:
        extra["blob_name"] = blob_name
    if upload_id:
        extra["upload_id"] = upload_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


def log_event(
    logger: logging.Logger,
    event: str,
    message: str,
    container: Optional[str] = None,
    blob_name: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """Log a structured info-level event."""
    extra = _build_log_extra(
        event=event,
        container=container,
        blob_name=blob_name,
        duration_ms=duration_ms,
        **kwargs
    )
    logger.info(message, extra=extra)


# Upload event functions

def log_upload_started(
    logger: logging.Logger,
    upload_id: str,
    container: str,
    blob_name: str,
    size_bytes: Optional[int] = None,
    **kwargs
):
    """Log the start of a background upload."""
    extra = _build_log_extra(
        event="upload_started",
        container=container,
        blob_name=blob_name,
        upload_id=upload_id,
        **kwargs
    )
    if size_bytes is not None:
        extra["size_bytes"] = size_bytes

    logger.info(f"Upload started: {blob_name}", extra=extra)


def log_upload_completed(
    logger: logging.Logger,
    upload_id: str,
    container: str,
    blob_name: str,
    duration_ms: float,
    **kwargs
):
    """Log a successfully finished upload."""
    extra = _build_log_extra(
        event="upload_completed",
        container=container,
        blob_name=blob_name,
        upload_id=upload_id,
        duration_ms=duration_ms,
        **kwargs
    )
    logger.info(f"Successfully uploaded: {blob_name}", extra=extra)


def log_upload_failed(
    logger: logging.Logger,
    upload_id: str,
    container: str,
    blob_name: str,
    error: str,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """Log a failed upload. No traceback: the error is recorded on the upload handle."""
    extra = _build_log_extra(
        event="upload_failed",
        container=container,
        blob_name=blob_name,
        upload_id=upload_id,
        duration_ms=duration_ms,
        error=str(error),
        **kwargs
    )
    logger.error(f"Error occurred while uploading {blob_name}: {error}", extra=extra)


# Storage provider event functions

def log_storage_failure(
    logger: logging.Logger,
    operation: str,
    error: str,
    container: Optional[str] = None,
    blob_name: Optional[str] = None,
    duration_ms: Optional[float] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log a storage provider failure.

    Args:
        logger: Logger instance
        operation: Operation name (list, download, delegation_key, ...)
        error: Error message
        container: Optional container name
        blob_name: Optional blob name
        duration_ms: Optional duration in milliseconds
        include_traceback: Whether to include the active stack trace
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="storage_failure",
        container=container,
        blob_name=blob_name,
        duration_ms=duration_ms,
        operation=operation,
        error=str(error),
        **kwargs
    )

    message = f"Storage failure: {operation} - {error}"

    if include_traceback and sys.exc_info()[0] is not None:
        logger.error(message, extra=extra, exc_info=sys.exc_info())
    else:
        logger.error(message, extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO", secrets: Iterable[str] = ()):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level, secrets)
