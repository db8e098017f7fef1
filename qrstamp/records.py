"""
Records to stamp, and the delimited text files they are read from.

A record file is a spreadsheet export with a header row, followed by one
row per record: ``id;primary_url;secondary_url``. Older exports only
carry ``id;url``; in that case the same URL is used for both languages.
"""

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

__all__ = [
    'Record',
    'format_record_id',
    'parse_record_id',
    'is_secondary_language',
    'detect_delimiter',
    'parse_records',
    'read_records',
]

logger = logging.getLogger(__name__)

RECORD_ID_WIDTH = 4
_RECORD_ID_REGEX = re.compile(r'\d+')

SECONDARY_LANGUAGES = ('en', 'english', 'englisch')


def format_record_id(n: int) -> str:
    """
    Format a record identifier for display: values below 10000 are
    zero-padded to four digits, larger values are printed as-is.

    >>> format_record_id(7)
    '0007'
    >>> format_record_id(123456)
    '123456'
    """
    if n < 0:
        raise ValueError(f"Record identifiers are unsigned, not {n}.")
    return str(n).zfill(RECORD_ID_WIDTH)


def parse_record_id(value: str) -> int:
    """
    Parse a record identifier from its textual form. Only unsigned
    decimal notation is accepted.

    :raises ValueError:
        if the value is not an unsigned decimal integer.
    """
    value = value.strip()
    if not _RECORD_ID_REGEX.fullmatch(value):
        raise ValueError(f"'{value}' is not a valid record identifier.")
    return int(value)


def is_secondary_language(language: Optional[str]) -> bool:
    """
    Decide whether a language selector designates the secondary
    (English) URL of a record.
    """
    if not language:
        return False
    lang = language.strip().lower()
    return lang in SECONDARY_LANGUAGES or lang.startswith('en')


@dataclass(frozen=True)
class Record:
    """
    A single record: one output document is produced per record.
    """

    id: str
    """
    Identifier as it is printed on the document (see
    :func:`format_record_id`).
    """

    url_primary: str
    """
    URL encoded in the QR code for primary-language documents.
    """

    url_secondary: str
    """
    URL encoded in the QR code for secondary-language documents.
    """

    @classmethod
    def create(
        cls,
        record_id: int,
        url_primary: str,
        url_secondary: Optional[str] = None,
    ) -> 'Record':
        return cls(
            id=format_record_id(record_id),
            url_primary=url_primary,
            url_secondary=url_secondary or url_primary,
        )

    def url_for(self, language: Optional[str]) -> str:
        """
        Select the URL to encode for documents in the given language.
        """
        if is_secondary_language(language):
            return self.url_secondary
        return self.url_primary


def detect_delimiter(text: str) -> str:
    """
    Guess the column delimiter of a record file. The first non-empty line
    containing a semicolon or a comma decides; semicolons win whenever
    they are present, since URLs rarely contain them.
    """
    for line in text.splitlines():
        if not line.strip():
            continue
        if ';' in line:
            return ';'
        if ',' in line:
            return ','
    return ','


def _rows_to_records(rows: Iterator[List[str]]) -> Iterator[Record]:
    for line_no, row in enumerate(rows, start=2):
        cells = [cell.strip() for cell in row]
        if not any(cells):
            continue
        if len(cells) >= 3:
            raw_id, primary, secondary = cells[:3]
        elif len(cells) == 2:
            raw_id, primary = cells
            secondary = primary
        else:
            logger.debug(f"Dropping row {line_no}: not enough columns.")
            continue
        if not primary or not secondary:
            logger.debug(f"Dropping row {line_no}: empty URL column.")
            continue
        try:
            record_id = parse_record_id(raw_id)
        except ValueError:
            logger.debug(
                f"Dropping row {line_no}: '{raw_id}' is not a record id."
            )
            continue
        yield Record(
            id=format_record_id(record_id),
            url_primary=primary,
            url_secondary=secondary,
        )


def parse_records(text: str, delimiter: Optional[str] = None) -> List[Record]:
    """
    Parse records from the contents of a delimited text file.

    :param text:
        File contents. The first line is a header and is skipped.
    :param delimiter:
        Column delimiter. If not specified, it is detected using
        :func:`detect_delimiter`.
    :return:
        The list of records, in file order. Malformed rows are dropped.
    """
    delimiter = delimiter or detect_delimiter(text)
    reader = csv.reader(text.splitlines(), delimiter=delimiter)
    try:
        next(reader)
    except StopIteration:
        return []
    return list(_rows_to_records(reader))


def read_records(
    path: Union[str, Path], delimiter: Optional[str] = None
) -> List[Record]:
    """
    Read records from a delimited text file.

    The file is decoded as UTF-8 (with or without byte order mark); files
    that are not valid UTF-8 are assumed to be legacy Windows exports and
    decoded as cp1252.
    """
    raw = Path(path).read_bytes()
    try:
        text = raw.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.debug(f"{path} is not valid UTF-8, falling back to cp1252")
        text = raw.decode('cp1252', errors='replace')
    records = parse_records(text, delimiter=delimiter)
    logger.info(f"Read {len(records)} record(s) from {path}")
    return records
