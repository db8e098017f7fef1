import logging
import sys
from contextlib import contextmanager
from typing import Dict, Optional

import click
from pyhanko.pdf_utils import misc

from ..config.errors import ConfigurationError
from ..config.logging import LogConfig, StdLogOutput
from ..errors import BatchError, StampError
from .utils import logger


class NoStackTraceFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return ""  # pragma: nocover


LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _make_handler(output, verbose: bool) -> logging.Handler:
    handler: logging.Handler
    if output is StdLogOutput.STDOUT:
        handler = logging.StreamHandler(sys.stdout)
    elif output is StdLogOutput.STDERR:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(output, encoding='utf-8')
    # stack traces only go to the console in verbose mode
    if verbose or not isinstance(output, StdLogOutput):
        handler.setFormatter(logging.Formatter(LOG_FORMAT_STRING))
    else:
        handler.setFormatter(NoStackTraceFormatter(LOG_FORMAT_STRING))
    return handler


def logging_setup(log_configs: Dict[Optional[str], LogConfig], verbose: bool):
    """
    Attach handlers to the configured loggers. Loggers that write to the
    same destination share a handler, so a log file is opened only once.
    """
    handlers: Dict[object, logging.Handler] = {}
    for module, log_config in log_configs.items():
        cur_logger = logging.getLogger(module)
        cur_logger.setLevel(log_config.level)
        try:
            handler = handlers[log_config.output]
        except KeyError:
            handler = handlers[log_config.output] = _make_handler(
                log_config.output, verbose
            )
        cur_logger.addHandler(handler)
        if module is not None:
            # records would otherwise be emitted again by the root logger
            cur_logger.propagate = False


_STRICT_HINT = (
    "Failed to read {what} in strict mode; rerun with --no-strict-syntax "
    "to try again.\nError message: {msg}"
)


def describe_error(e: Exception) -> str:
    """
    Turn an exception raised while stamping into a message for the user.
    """
    if isinstance(e, ConfigurationError):
        return f"Configuration problem: {e.msg}"
    if isinstance(e, misc.PdfStrictReadError):
        return _STRICT_HINT.format(what='PDF file', msg=e.msg)
    if isinstance(e, misc.PdfReadError):
        return f"Failed to read PDF file: {e.msg}"
    if isinstance(e, misc.PdfWriteError):
        return f"Failed to write PDF file: {e.msg}"
    if isinstance(e, StampError):
        if isinstance(e.__cause__, misc.PdfStrictReadError):
            return _STRICT_HINT.format(what='template', msg=e.msg)
        return f"Error raised while stamping: {e.msg}"
    if isinstance(e, BatchError):
        return f"Batch failed: {e.msg}"
    return "Generic processing error."


@contextmanager
def qrstamp_exception_manager():
    try:
        yield
    except click.ClickException:
        raise
    except Exception as e:
        msg = describe_error(e)
        logger.error(msg, exc_info=e)
        raise click.ClickException(msg)


DEFAULT_CONFIG_FILE = 'qrstamp.yml'
