from typing import Optional

import click

from ...document import stamp_file
from ...records import Record, parse_record_id
from ...templates import TemplateInfo
from .._root import cli_root
from ..config import CLIConfig
from ..runtime import qrstamp_exception_manager
from ..utils import logger, readable_file, writable_file

__all__ = ['stamp']


@cli_root.command(help='stamp a single record onto a template', name='stamp')
@click.argument('template', type=readable_file)
@click.argument('outfile', type=writable_file)
@click.option(
    '--id',
    'record_id',
    help='record identifier to print',
    required=True,
    type=str,
)
@click.option(
    '--url',
    help='URL to encode in the QR code',
    required=True,
    type=str,
)
@click.option(
    '--secondary-url',
    help='URL for secondary-language templates [default: same as --url]',
    required=False,
    type=str,
)
@click.option(
    '--geometry',
    'geometry_name',
    help='name of the geometry to use (from the configuration file)',
    required=False,
    type=str,
)
@click.option(
    '--language',
    help='template language [default: inferred from the file name]',
    required=False,
    type=click.Choice(['de', 'en'], case_sensitive=False),
)
@click.option(
    '--no-font-fallback',
    help='do not substitute standard fonts for missing font files',
    type=bool,
    is_flag=True,
    default=False,
)
@click.option(
    '--no-strict-syntax',
    help='attempt to ignore syntactical problems in the template',
    type=bool,
    is_flag=True,
    default=False,
)
@click.pass_context
def stamp(
    ctx,
    template: str,
    outfile: str,
    record_id: str,
    url: str,
    secondary_url: Optional[str],
    geometry_name: Optional[str],
    language: Optional[str],
    no_font_fallback: bool,
    no_strict_syntax: bool,
):
    cli_config: CLIConfig = ctx.obj.config
    try:
        record = Record.create(parse_record_id(record_id), url, secondary_url)
    except ValueError as e:
        raise click.ClickException(str(e))
    with qrstamp_exception_manager():
        info = TemplateInfo.from_path(template)
        geometry = cli_config.get_geometry(geometry_name, info)
        resolver = cli_config.get_font_resolver(
            fallback_enabled=False if no_font_fallback else None
        )
        pages = stamp_file(
            template,
            outfile,
            record,
            geometry,
            resolver=resolver,
            language=language or info.language,
            strict=cli_config.strict_syntax and not no_strict_syntax,
        )
        logger.info(f"Stamped {pages} page(s) of {template} into {outfile}")
