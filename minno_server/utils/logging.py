"""
Structured logging setup using structlog.

This module configures structured logging for the application with JSON output
in production and human-readable format in development.
"""

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines instead of the console format
    """
    # Configure stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    # Reduce third-party verbosity
    logging.getLogger("slack_sdk").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (optional)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_request(method: str, path: str, status_code: int, duration: float, **kwargs) -> None:
    """
    Log an HTTP request with structured data.

    Args:
        method: HTTP method
        path: Request path
        status_code: Response status code
        duration: Request duration in seconds
        **kwargs: Additional context
    """
    logger = get_logger("http")
    logger.info(
        "HTTP request",
        method=method,
        path=path,
        status_code=status_code,
        duration=duration,
        **kwargs
    )


def log_slack_event(event_type: str, channel_id: str = None, user_id: str = None, **kwargs) -> None:
    """
    Log a Slack-related event with structured data.

    Args:
        event_type: Type of Slack event
        channel_id: Slack channel ID (optional)
        user_id: Slack user ID (optional)
        **kwargs: Additional context
    """
    logger = get_logger("slack")
    logger.info(
        f"Slack {event_type}",
        event_type=event_type,
        channel_id=channel_id,
        user_id=user_id,
        **kwargs
    )


def log_oauth_event(provider: str, stage: str, success: bool, **kwargs) -> None:
    """
    Log a step of an OAuth installation flow.

    Args:
        provider: OAuth provider name
        stage: Flow stage (install, callback)
        success: Whether the step succeeded
        **kwargs: Additional context
    """
    logger = get_logger("oauth")
    logger.info(
        f"OAuth {provider} {stage}",
        provider=provider,
        stage=stage,
        success=success,
        **kwargs
    )


def log_dispatch_event(job_id: str, description: str, outcome: str, duration: float = None, **kwargs) -> None:
    """
    Log the outcome of a background delivery.

    Args:
        job_id: Dispatcher job identifier
        description: What the job processes
        outcome: processed, failed or dropped
        duration: Processing time in seconds (optional)
        **kwargs: Additional context
    """
    logger = get_logger("dispatch")
    logger.info(
        f"Delivery {outcome}",
        job_id=job_id,
        description=description,
        outcome=outcome,
        duration=duration,
        **kwargs
    )
