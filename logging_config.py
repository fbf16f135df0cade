"""Structured logging configuration."""

import logging

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
	"""Configure structlog on top of the stdlib logging module."""
	numeric_level = getattr(logging, log_level.upper(), logging.INFO)
	logging.basicConfig(level=numeric_level)

	processors = [
		structlog.contextvars.merge_contextvars,
		structlog.processors.TimeStamper(fmt="iso"),
		structlog.processors.add_log_level,
		structlog.processors.StackInfoRenderer(),
		structlog.dev.set_exc_info,
	]

	if json_logs:
		processors.append(structlog.processors.format_exc_info)
		processors.append(structlog.processors.JSONRenderer())
	else:
		processors.append(structlog.dev.ConsoleRenderer(colors=True))

	structlog.configure(
		processors=processors,
		logger_factory=LoggerFactory(),
		wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
		context_class=dict,
		cache_logger_on_first_use=True,
	)


def get_request_logger(component: str, **context) -> structlog.BoundLogger:
	"""Return a logger for ``component`` bound with per-request context."""
	return structlog.get_logger(component).bind(component=component, **context)
