import dataclasses
import logging
from typing import Optional, Tuple

import click

from .. import __version__
from ..config.errors import ConfigurationError
from ._ctx import CLIContext
from .config import parse_cli_config
from .runtime import DEFAULT_CONFIG_FILE, logging_setup
from .utils import logger

__all__ = ['cli_root']


def _load_config_text(config) -> Tuple[Optional[str], Optional[str]]:
    """
    Return the configuration text and a description of where it came from.
    A missing default configuration file is not an error.
    """
    if config is not None:
        source = getattr(config, 'name', 'configuration')
        try:
            return config.read(), source
        except IOError as e:
            raise click.ClickException(f"Failed to read {source}: {e}")
    try:
        with open(DEFAULT_CONFIG_FILE, 'r', encoding='utf-8') as f:
            return f.read(), DEFAULT_CONFIG_FILE
    except FileNotFoundError:
        return None, None
    except IOError as e:
        raise click.ClickException(f"Failed to read {DEFAULT_CONFIG_FILE}: {e}")


@click.group()
@click.version_option(prog_name='qrstamp', version=__version__)
@click.option(
    '--config',
    help=(
        'YAML file to load configuration from '
        f'[default: {DEFAULT_CONFIG_FILE}]'
    ),
    required=False,
    type=click.File('r'),
)
@click.option(
    '--verbose',
    help='log every record, and show stack traces on errors',
    required=False,
    default=False,
    type=bool,
    is_flag=True,
)
@click.pass_context
def _root(ctx: click.Context, config, verbose):
    config_text, source = _load_config_text(config)
    try:
        cfg = parse_cli_config(config_text or '')
    except ConfigurationError as e:
        raise click.ClickException(f"Configuration problem: {e.msg}")

    ctx_obj: CLIContext = ctx.ensure_object(CLIContext)
    ctx_obj.verbose = verbose
    ctx_obj.config = cfg.config

    log_config = cfg.log_config
    if verbose:
        # per-record messages are logged at debug level
        log_config[None] = dataclasses.replace(
            log_config[None], level=logging.DEBUG
        )
    logging_setup(log_config, verbose)

    if source is None:
        logger.debug('No configuration file; using defaults.')
    else:
        logger.debug(f'Finished reading configuration from {source}.')


cli_root: click.Group = _root
