"""
Logging & Error Reporting

structlog configuration plus the error reporting capability that hands out
correlation ids. Reporters are passed into the components that need them.
"""

import logging
import sys
from typing import Any, Protocol
from uuid import uuid4

import sentry_sdk
import structlog

from tiersync import __version__
from tiersync.config import Settings

logger = structlog.get_logger()


def configure_logging(settings: Settings) -> None:
    """Install structlog processors for the current environment."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer: structlog.types.Processor
    if settings.is_production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


# ══════════════════════════════════════════════════════════════
# Error Reporting
# ══════════════════════════════════════════════════════════════


class ErrorReporter(Protocol):
    """Telemetry sink for handled failures."""

    def capture(self, exc: BaseException, **context: Any) -> str:
        """Record ``exc`` and return its correlation id."""
        ...


class LogReporter:
    """
    Reports failures through structlog.

    Tracebacks are attached outside production only.
    """

    def __init__(self, verbose: bool = True):
        self.verbose = verbose

    def capture(self, exc: BaseException, **context: Any) -> str:
        correlation_id = uuid4().hex
        logger.error(
            "Webhook failure",
            correlation_id=correlation_id,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc if self.verbose else None,
            **context,
        )
        return correlation_id


class NullReporter:
    """Reporter that records nothing, still issuing correlation ids."""

    def capture(self, exc: BaseException, **context: Any) -> str:
        return uuid4().hex


class SentryReporter:
    """
    Reports failures to Sentry or GlitchTip.

    The Sentry event id is the correlation id, so a caller quoting it can be
    matched to the stored event. Failures are also logged locally.
    """

    TAGS = ("error_code", "event_type")

    def capture(self, exc: BaseException, **context: Any) -> str:
        with sentry_sdk.new_scope() as scope:
            for key in self.TAGS:
                if key in context:
                    scope.set_tag(key, str(context[key]))
            scope.set_context("webhook", {k: str(v) for k, v in context.items()})
            event_id = sentry_sdk.capture_exception(exc)

        # None when the client dropped the event (sampling, before_send)
        correlation_id = event_id or uuid4().hex
        logger.error(
            "Webhook failure",
            correlation_id=correlation_id,
            error=str(exc),
            error_type=type(exc).__name__,
            sentry_event=event_id is not None,
            **context,
        )
        return correlation_id


def init_sentry(settings: Settings) -> None:
    """Start the Sentry client for the configured DSN."""
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        release=f"tiersync@{__version__}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        debug=not settings.is_production,
    )
    logger.info("Sentry error tracking enabled", environment=settings.app_env)


def reporter_for(settings: Settings) -> ErrorReporter:
    """Sentry when a DSN is configured, structlog otherwise."""
    if settings.sentry_dsn:
        init_sentry(settings)
        return SentryReporter()
    return LogReporter(verbose=not settings.is_production)
