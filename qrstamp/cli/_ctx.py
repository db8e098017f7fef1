from dataclasses import dataclass
from typing import Optional

from .config import CLIConfig


@dataclass
class CLIContext:
    """
    Settings shared between the root command and its subcommands, passed
    around as the ``click`` context object.
    """

    config: Optional[CLIConfig] = None
    """
    Parsed configuration file, or the defaults if there was none.
    """

    verbose: bool = False
    """
    Whether the CLI runs in verbose mode.
    """
