from typing import Optional, Tuple

import click

from ...batch import (
    MAX_THROTTLE_MS,
    BatchCoordinator,
    BatchJob,
    BatchStatus,
    FileProgressSink,
    ResumeInfo,
    format_duration,
)
from ...document import DocumentStamper
from ...records import read_records
from ...templates import SidecarPaths, TemplateInfo, output_dir_for
from .._root import cli_root
from ..config import CLIConfig
from ..runtime import qrstamp_exception_manager
from ..utils import logger, parse_index_range, readable_file

__all__ = ['batch']


def _resume_offset(paths: SidecarPaths) -> int:
    try:
        info = ResumeInfo.read(paths.resume)
    except ValueError as e:
        raise click.ClickException(str(e))
    if info is None:
        logger.info(f"No resume information in {paths.resume}")
        return 0
    return info.index


@cli_root.command(
    help='stamp every record in a record file onto one or more templates',
    name='batch',
)
@click.argument('templates', nargs=-1, required=True, type=readable_file)
@click.option(
    '--records',
    'records_file',
    help='delimited text file with one record per line',
    required=True,
    type=readable_file,
)
@click.option(
    '--output-dir',
    help='base output folder [default: from configuration]',
    required=False,
    type=click.Path(file_okay=False),
)
@click.option(
    '--threads',
    help='number of worker threads [default: from configuration]',
    required=False,
    type=click.IntRange(min=1),
)
@click.option(
    '--start-from',
    help='index of the first record to process',
    required=False,
    type=click.IntRange(min=0),
)
@click.option(
    '--resume',
    help='continue where a stopped batch left off',
    type=bool,
    is_flag=True,
    default=False,
)
@click.option(
    '--range',
    'index_range',
    metavar='FIRST-LAST',
    help='only process record indices in this inclusive range',
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
    '--geometry',
    'geometry_name',
    help='name of the geometry to use (from the configuration file)',
    required=False,
    type=str,
)
@click.option(
    '--throttle-ms',
    help='pause after each record, in milliseconds',
    required=False,
    type=click.IntRange(0, MAX_THROTTLE_MS),
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
    help='attempt to ignore syntactical problems in templates',
    type=bool,
    is_flag=True,
    default=False,
)
@click.pass_context
def batch(
    ctx,
    templates: Tuple[str, ...],
    records_file: str,
    output_dir: Optional[str],
    threads: Optional[int],
    start_from: Optional[int],
    resume: bool,
    index_range: Optional[str],
    language: Optional[str],
    geometry_name: Optional[str],
    throttle_ms: Optional[int],
    no_font_fallback: bool,
    no_strict_syntax: bool,
):
    cli_config: CLIConfig = ctx.obj.config
    if resume and start_from is not None:
        raise click.ClickException(
            "--resume and --start-from are mutually exclusive."
        )
    bounds = parse_index_range(index_range)

    with qrstamp_exception_manager():
        records = read_records(records_file)
        resolver = cli_config.get_font_resolver(
            fallback_enabled=False if no_font_fallback else None
        )
        stamper = DocumentStamper(
            resolver=resolver,
            strict=cli_config.strict_syntax and not no_strict_syntax,
        )
        base_dir = output_dir or cli_config.output_dir

        for template in templates:
            info = TemplateInfo.from_path(template)
            lang = language or info.language
            paths = SidecarPaths.for_template(cli_config.state_dir, info, lang)
            job = BatchJob(
                template_path=template,
                records=records,
                geometry=cli_config.get_geometry(geometry_name, info),
                output_dir=output_dir_for(base_dir, info, lang),
                language=lang,
            )
            coordinator = BatchCoordinator(
                job,
                stamper=stamper,
                sink=FileProgressSink(paths),
                threads=threads or cli_config.threads,
                throttle_ms=(
                    throttle_ms
                    if throttle_ms is not None
                    else cli_config.throttle_ms
                ),
            )
            offset = _resume_offset(paths) if resume else (start_from or 0)
            result = coordinator.run(start_from=offset, index_range=bounds)
            click.echo(
                f"{template}: {result.generated} generated, "
                f"{result.skipped} skipped, {result.failed} failed "
                f"in {format_duration(result.elapsed)}"
            )
            if result.status is BatchStatus.STOPPED:
                click.echo(
                    f"Stopped; rerun with --resume to continue from index "
                    f"{result.resume_offset}."
                )
                break
