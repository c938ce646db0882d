from logging import Logger, _nameToLevel, basicConfig

from structlog import (
    configure_once,
    get_logger as structlog_get_logger,
    make_filtering_bound_logger,
)
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import (
    JSONRenderer,
    StackInfoRenderer,
    TimeStamper,
    UnicodeDecoder,
    add_log_level,
    format_exc_info,
)
from structlog.stdlib import PositionalArgumentsFormatter
from structlog.typing import Processor

from app.helpers.config import CONFIG


def processors(json: bool) -> list[Processor]:
    """
    Build the log pipeline.

    Item, space, user and scan ids bound by the span attributes are added to each line. JSON output is one object per line, for log collectors, the console output is for humans.
    """
    chain: list[Processor] = [
        merge_contextvars,
        add_log_level,
        # Enable %s-style formatting
        PositionalArgumentsFormatter(),
        TimeStamper(fmt="iso", utc=True),
        StackInfoRenderer(),
    ]
    if json:
        # Tracebacks as a string field, the console renderer prints them itself
        chain += [format_exc_info, UnicodeDecoder(), JSONRenderer()]
    else:
        chain += [UnicodeDecoder(), ConsoleRenderer()]
    return chain


# Firebase and gRPC log through the standard library
basicConfig(level=CONFIG.monitoring.logging.sys_level.value)

configure_once(
    cache_logger_on_first_use=True,
    context_class=dict,
    processors=processors(CONFIG.monitoring.logging.json_output),
    wrapper_class=make_filtering_bound_logger(
        _nameToLevel[CONFIG.monitoring.logging.app_level.value]
    ),
)

# Framework does not exactly expose Logger, but that's easier to work with
logger: Logger = structlog_get_logger("reminder-notify")
