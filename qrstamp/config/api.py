"""
Helpers to populate dataclasses from user-provided configuration, usually
read from the YAML configuration file.

Configuration keys are spelled with hyphens (``font-family``), and mapped
to the underscored field names of the dataclass (``font_family``).
"""

import dataclasses
from typing import Iterable, Optional

from .errors import ConfigurationError

__all__ = [
    'ConfigurableMixin',
    'check_config_keys',
    'enforce_required_keys',
    'process_number',
    'process_positive_number',
    'process_int',
]


def _yaml_key(name: str) -> str:
    return name.replace('_', '-')


def _describe_keys(adjective: str, keys) -> str:
    noun = 'key' if len(keys) == 1 else 'keys'
    return f"{adjective} {noun} {', '.join(sorted(keys))}"


def _init_fields(cls):
    return [f for f in dataclasses.fields(cls) if f.init]


def _is_required(f: dataclasses.Field) -> bool:
    return (
        f.default is dataclasses.MISSING
        and f.default_factory is dataclasses.MISSING
    )


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """Mixin for dataclasses that can be read from the configuration."""

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to convert raw configuration values into the types the
        dataclass expects, in place.

        Overrides should call ``super().process_entries()`` and leave keys
        they do not handle alone. Keys have been converted to field names
        (underscores) by the time this is called.

        :param config_dict:
            A dictionary containing configuration values.
        :raises ConfigurationError:
            when there is a problem processing a relevant entry.
        """
        pass

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class from a configuration dictionary.

        :param config_dict:
            A dictionary containing configuration values.
        :return:
            An instance of the class on which it is called.
        :raises ConfigurationError:
            when a key is unexpected or missing, or when a value cannot be
            processed.
        """
        fields = _init_fields(cls)
        check_config_keys(cls.__name__, [f.name for f in fields], config_dict)
        kwargs = {key.replace('-', '_'): v for key, v in config_dict.items()}
        cls.process_entries(kwargs)
        enforce_required_keys(
            cls.__name__, [f.name for f in fields if _is_required(f)], kwargs
        )
        try:
            return cls(**kwargs)
        except TypeError as e:  # pragma: nocover
            raise ConfigurationError(str(e))


def check_config_keys(config_name, expected_keys: Iterable[str], config_dict):
    """
    Reject configuration dictionaries with keys that do not correspond to
    any of the expected ones. Underscores and hyphens are interchangeable.
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    expected = {_yaml_key(k) for k in expected_keys}
    unexpected = {_yaml_key(str(k)) for k in config_dict} - expected
    if unexpected:
        raise ConfigurationError(
            f"{_describe_keys('Unexpected', unexpected)} "
            f"in configuration for {config_name}."
        )


def enforce_required_keys(
    config_name, required_keys: Iterable[str], config_dict
):
    present = {_yaml_key(k) for k in config_dict}
    missing = {_yaml_key(k) for k in required_keys} - present
    if missing:
        raise ConfigurationError(
            f"{_describe_keys('Missing required', missing)} "
            f"in configuration for {config_name}."
        )


def process_number(value, param_name) -> float:
    # bool is a subclass of int, but 'true' is never a sensible coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(
            f"'{param_name}' must be a number, not {value!r}."
        )
    return float(value)


def process_positive_number(value, param_name) -> float:
    result = process_number(value, param_name)
    if result <= 0:
        raise ConfigurationError(
            f"'{param_name}' must be strictly positive, not {value!r}."
        )
    return result


def process_int(value, param_name, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"'{param_name}' must be an integer, not {value!r}."
        )
    if minimum is not None and value < minimum:
        raise ConfigurationError(
            f"'{param_name}' must be at least {minimum}, not {value}."
        )
    return value
