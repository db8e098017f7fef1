from ._root import cli_root
from .commands import *

__all__ = ['launch', 'cli_root']


def launch():
    cli_root(prog_name='qrstamp')
