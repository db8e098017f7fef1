"""
Exception hierarchy for stamping operations.

Per-document failures (:class:`TemplateError`, :class:`PersistenceError`)
are recoverable at the batch level: the record is logged and counted as
failed, and the remaining records are still processed. A
:class:`BatchError` signals that the batch as a whole did not run to
completion.
"""

from typing import List, Optional

__all__ = ['StampError', 'TemplateError', 'PersistenceError', 'BatchError']


class StampError(Exception):
    """Base class for errors raised while stamping a single document."""

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class TemplateError(StampError):
    """The template could not be read or parsed."""
    pass


class PersistenceError(StampError):
    """The output document could not be written."""
    pass


class BatchError(Exception):
    """Raised when one or more batch workers terminated abnormally."""

    def __init__(self, msg: str, errors: Optional[List[BaseException]] = None):
        self.msg = msg
        self.errors = list(errors or ())
        super().__init__(msg)
