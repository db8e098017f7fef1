import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

from .errors import ConfigurationError

__all__ = [
    'LogConfig',
    'StdLogOutput',
    'parse_log_output',
    'parse_log_level',
    'parse_logging_config',
    'DEFAULT_ROOT_LOGGER_LEVEL',
    'QUIET_LOGGERS',
]


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


LogOutput = Union[StdLogOutput, str]


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Logging level, as a number or as the name of one of the levels defined
    in the :mod:`logging` module.
    """

    output: LogOutput
    """
    Log file path, or one of the standard streams.
    """


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO

QUIET_LOGGERS = ('fontTools', 'pyhanko.pdf_utils.reader')
"""
Libraries that report on every table or object they touch. Unless the
``by-module`` section says otherwise, they only log warnings and errors.
"""


def parse_log_output(value) -> LogOutput:
    """
    Interpret a log destination: ``stderr`` and ``stdout`` (in any case)
    refer to the standard streams, anything else is a file name.
    """
    if not isinstance(value, str):
        raise ConfigurationError("Log output must be specified as a string.")
    try:
        return StdLogOutput[value.upper()]
    except KeyError:
        return value


def parse_log_level(value) -> Union[int, str]:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigurationError(
            f"Log levels must be int or str, not {type(value)}"
        )
    if isinstance(value, str):
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ConfigurationError(f"'{value}' is not a log level.")
    return value


def _module_config(module, settings, default_output: LogOutput) -> LogConfig:
    # a bare level is shorthand for a logger sharing the root's output
    if not isinstance(settings, dict):
        return LogConfig(parse_log_level(settings), default_output)
    try:
        level = parse_log_level(settings['level'])
    except KeyError:
        raise ConfigurationError(
            f"Logging config for '{module}' does not define a log level."
        )
    output = settings.get('output', None)
    return LogConfig(
        level=level,
        output=default_output if output is None else parse_log_output(output),
    )


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Parse the ``logging`` section of a configuration file.

    Supported keys are ``root-level``, ``root-output`` and ``by-module``.
    The latter maps logger names to either a level, or a dictionary with
    a ``level`` and an optional ``output``. Loggers without an explicit
    output write to the same destination as the root logger.

    :param log_config_spec:
        The configuration dictionary.
    :return:
        A dictionary mapping logger names to :class:`.LogConfig` objects.
        The ``None`` key holds the settings for the root logger.
    """
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')

    root_level = parse_log_level(
        log_config_spec.get('root-level', DEFAULT_ROOT_LOGGER_LEVEL)
    )
    root_output = parse_log_output(
        log_config_spec.get('root-output', 'stderr')
    )
    log_config: Dict[Optional[str], LogConfig] = {
        None: LogConfig(root_level, root_output)
    }
    log_config.update(
        (name, LogConfig(logging.WARNING, root_output))
        for name in QUIET_LOGGERS
    )

    by_module = log_config_spec.get('by-module', {})
    if not isinstance(by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')
    for module, settings in by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        log_config[module] = _module_config(module, settings, root_output)
    return log_config
