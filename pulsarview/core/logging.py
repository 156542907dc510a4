"""
Logging setup for the command line and embedding applications.

Components log through ``logger.bind(component=..., cluster=...)`` and never
touch sinks themselves; :func:`configure_logging` is the one place that does.
Debug scopes are module paths relative to the package, so
``("client.consumer", "admin")`` turns on DEBUG output for consumer sessions
and the admin gateway while everything else stays at the configured level.
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable, Mapping

from loguru import logger

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[component]}{extra[cluster]} - {message}"
)

COLOR_LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan><dim>{extra[cluster]}</dim> - "
    "<level>{message}</level>"
)

PACKAGE = "pulsarview"


def _qualify(scope: str) -> str:
    scope = scope.strip().strip(".")
    if scope == PACKAGE or scope.startswith(f"{PACKAGE}."):
        return scope
    return f"{PACKAGE}.{scope}"


def _scope_filter(scopes: tuple[str, ...]) -> Callable[[Mapping], bool]:
    def _filter(record: Mapping) -> bool:
        if record["level"].name != "DEBUG":
            return False
        name = record["name"] or ""
        return any(name == s or name.startswith(f"{s}.") for s in scopes)

    return _filter


def _with_defaults(record: Mapping) -> None:
    extra = record["extra"]
    component = extra.get("component")
    cluster = extra.get("cluster")
    extra["component"] = component or record["name"]
    extra["cluster"] = f" [{cluster}]" if cluster else ""


def configure_logging(
    level: str,
    *,
    debug_scopes: Iterable[str] = (),
    colorize: bool = False,
) -> tuple[int, ...]:
    """Replace all sinks with a stderr sink at ``level``.

    Returns the ids of the handlers added, so callers can remove them again.
    """
    logger.remove()
    logger.configure(patcher=_with_defaults)
    log_format = COLOR_LOG_FORMAT if colorize else LOG_FORMAT
    level = level.upper()

    handler_ids = [
        logger.add(sys.stderr, level=level, format=log_format, colorize=colorize)
    ]

    scopes = tuple(_qualify(s) for s in debug_scopes if s.strip())
    if scopes and level != "DEBUG":
        handler_ids.append(
            logger.add(
                sys.stderr,
                level="DEBUG",
                format=log_format,
                colorize=colorize,
                filter=_scope_filter(scopes),
            )
        )

    return tuple(handler_ids)
