from typing import Optional

import click

from ...batch import ResumeInfo, format_duration
from ...templates import SidecarPaths, TemplateInfo
from .._root import cli_root
from ..config import CLIConfig

__all__ = ['status']


@cli_root.command(help='show the batch status of a template', name='status')
@click.argument('template', type=click.Path(dir_okay=False))
@click.option(
    '--language',
    help='template language [default: inferred from the file name]',
    required=False,
    type=click.Choice(['de', 'en'], case_sensitive=False),
)
@click.pass_context
def status(ctx, template: str, language: Optional[str]):
    cli_config: CLIConfig = ctx.obj.config
    info = TemplateInfo.from_path(template)
    paths = SidecarPaths.for_template(cli_config.state_dir, info, language)

    click.echo(f"category: {info.category(language)}")
    try:
        progress_text = paths.progress.read_text(encoding='utf-8').strip()
    except FileNotFoundError:
        click.echo("progress: none")
    else:
        try:
            click.echo(f"progress: {float(progress_text):.1%}")
        except ValueError:
            click.echo(f"progress: unreadable ({progress_text!r})")
    click.echo(f"stopped: {'yes' if paths.stop_marker.exists() else 'no'}")
    try:
        resume = ResumeInfo.read(paths.resume)
    except ValueError as e:
        raise click.ClickException(str(e))
    if resume is not None:
        click.echo(
            f"resume: index {resume.index} of {resume.total} "
            f"(ran for {format_duration(resume.elapsed)})"
        )
