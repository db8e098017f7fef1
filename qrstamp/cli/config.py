from dataclasses import dataclass
from typing import Dict, List, Optional

import yaml

from ..batch import MAX_THROTTLE_MS, default_thread_count
from ..config.api import process_int
from ..config.errors import ConfigurationError
from ..config.logging import LogConfig, parse_logging_config
from ..fonts import FontLocator, FontResolver
from ..geometry import GeometrySpec
from ..presets import preset_for
from ..templates import TemplateInfo


@dataclass
class CLIConfig:
    """
    CLI configuration settings.
    """

    geometries: Dict[str, GeometrySpec]
    """
    Named placement specifications. See :class:`.GeometrySpec` for the
    supported keys.

    Callers should not process this information directly, but rely on
    :meth:`get_geometry` instead.
    """

    default_geometry: Optional[str]
    """
    The name of the geometry to use when none is specified on the command
    line. If not set, the built-in layout for the template's group is
    used.
    """

    font_dirs: Optional[List[str]]
    """
    Directories to search for font files. If not set, the platform's
    usual font directories are searched.
    """

    font_fallback: bool
    """
    Whether to substitute a standard font when a font file is unavailable.
    The default is ``True``.
    """

    threads: int
    """
    Number of worker threads for batch runs. Defaults to three quarters of
    the available CPU cores.
    """

    throttle_ms: int
    """
    Pause after each record in batch runs, in milliseconds (at most 2).
    """

    output_dir: str
    """
    Base output folder for batch runs. Documents are sorted into
    subfolders by group and language.
    """

    state_dir: str
    """
    Folder for batch progress, stop and resume files.
    """

    strict_syntax: bool
    """
    Whether to read templates in strict mode.
    """

    raw_config: dict
    """
    The raw config data parsed into a Python dictionary.
    """

    def get_geometry(
        self, name: Optional[str] = None, info: Optional[TemplateInfo] = None
    ) -> GeometrySpec:
        """
        Retrieve a geometry by name.

        :param name:
            The name of the geometry. If not supplied, the value of
            :attr:`default_geometry` is used.
        :param info:
            Template metadata used to select a built-in layout when no
            named geometry applies.
        :return:
            A :class:`.GeometrySpec` object.
        """
        name = name or self.default_geometry
        if name is None:
            if info is None:
                raise ConfigurationError(
                    "No geometry specified, and no template to infer one from."
                )
            return preset_for(info)
        try:
            return self.geometries[name]
        except KeyError:
            raise ConfigurationError(f"There is no geometry named '{name}'.")

    def get_font_resolver(
        self, fallback_enabled: Optional[bool] = None
    ) -> FontResolver:
        """
        Instantiate a font resolver according to the configuration.

        :param fallback_enabled:
            Override for :attr:`font_fallback`.
        """
        if fallback_enabled is None:
            fallback_enabled = self.font_fallback
        return FontResolver(
            locator=FontLocator(self.font_dirs),
            fallback_enabled=fallback_enabled,
        )


@dataclass(frozen=True)
class CLIRootConfig:
    """
    Config settings that are only relevant to the CLI root and are not
    exposed to subcommands.
    """

    config: CLIConfig
    """
    General CLI config.
    """

    log_config: Dict[Optional[str], LogConfig]
    """
    Per-module logging configuration. The keys in this dictionary are
    module names, the :class:`.LogConfig` values define the logging settings.

    The ``None`` key houses the configuration for the root logger, if any.
    """


DEFAULT_OUTPUT_DIR = 'output'
DEFAULT_STATE_DIR = '.'


def parse_cli_config(yaml_str) -> CLIRootConfig:
    config_dict = yaml.safe_load(yaml_str) or {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError("Configuration must be a dictionary.")
    return CLIRootConfig(
        **process_root_config_settings(config_dict),
        config=CLIConfig(
            **process_config_dict(config_dict), raw_config=config_dict
        ),
    )


def process_root_config_settings(config_dict: dict) -> dict:
    log_config_spec = config_dict.get('logging', {})
    log_config = parse_logging_config(log_config_spec)
    return dict(log_config=log_config)


def _process_geometries(geometry_specs) -> Dict[str, GeometrySpec]:
    if not isinstance(geometry_specs, dict):
        raise ConfigurationError("'geometries' must be a dictionary.")
    geometries = {}
    for name, spec in geometry_specs.items():
        try:
            geometries[str(name)] = GeometrySpec.from_config(spec)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"Error in geometry '{name}': {e.msg}"
            ) from e
    return geometries


def _process_bool(config_dict, key, default: bool) -> bool:
    value = config_dict.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be true or false.")
    return value


def _process_dir(config_dict, key, default: str) -> str:
    value = config_dict.get(key, default)
    if not isinstance(value, str):
        raise ConfigurationError(f"'{key}' must be a path.")
    return value


def process_config_dict(config_dict: dict) -> dict:
    geometries = _process_geometries(config_dict.get('geometries', {}))
    default_geometry = config_dict.get('default-geometry', None)
    if default_geometry is not None and default_geometry not in geometries:
        raise ConfigurationError(
            f"Default geometry '{default_geometry}' is not defined."
        )

    font_dirs = config_dict.get('font-dirs', None)
    if isinstance(font_dirs, str):
        font_dirs = [font_dirs]
    elif font_dirs is not None and not (
        isinstance(font_dirs, list)
        and all(isinstance(d, str) for d in font_dirs)
    ):
        raise ConfigurationError(
            "'font-dirs' must be a path or a list of paths."
        )

    threads = process_int(
        config_dict.get('threads', default_thread_count()), 'threads', 1
    )
    throttle_ms = process_int(
        config_dict.get('throttle-ms', 0), 'throttle-ms', 0
    )
    if throttle_ms > MAX_THROTTLE_MS:
        raise ConfigurationError(
            f"'throttle-ms' must be at most {MAX_THROTTLE_MS}."
        )
    return dict(
        geometries=geometries,
        default_geometry=default_geometry,
        font_dirs=font_dirs,
        font_fallback=_process_bool(config_dict, 'font-fallback', True),
        threads=threads,
        throttle_ms=throttle_ms,
        output_dir=_process_dir(config_dict, 'output-dir', DEFAULT_OUTPUT_DIR),
        state_dir=_process_dir(config_dict, 'state-dir', DEFAULT_STATE_DIR),
        strict_syntax=_process_bool(config_dict, 'strict-syntax', True),
    )
