import logging
import re
from typing import Optional, Tuple

import click

logger = logging.getLogger("qrstamp.cli")

readable_file = click.Path(exists=True, readable=True, dir_okay=False)
writable_file = click.Path(writable=True, dir_okay=False)

RANGE_REGEX = re.compile(r'\s*(\d+)\s*[-:]\s*(\d+)\s*')


def parse_index_range(spec: Optional[str]) -> Optional[Tuple[int, int]]:
    if spec is None:
        return None
    m = RANGE_REGEX.fullmatch(spec)
    if not m:
        raise click.ClickException(
            f"--range must be of the form FIRST-LAST, not {spec!r}."
        )
    first, last = int(m.group(1)), int(m.group(2))
    if last < first:
        raise click.ClickException(
            f"--range upper bound {last} is below lower bound {first}."
        )
    return first, last
