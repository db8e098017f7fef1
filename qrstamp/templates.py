"""
Template naming conventions.

Template file names follow the pattern
``<campaign>-<group>[-messe]-<language>.pdf``, e.g.
``Flyer-Apo-Messe-de_de.pdf``. The group, language and trade show flag
determine the default layout, the output folder and the names of the
batch progress files.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .records import is_secondary_language

__all__ = [
    'TemplateInfo',
    'output_filename',
    'output_dir_for',
    'SidecarPaths',
    'KNOWN_GROUPS',
    'DEFAULT_GROUP',
]

KNOWN_GROUPS = ('Apo', 'Endkunde', 'Fachkreise')
DEFAULT_GROUP = 'Endkunde'

_LANGUAGE_TAG_REGEX = re.compile(r'(de|en)([_-][a-z]{2})?', re.IGNORECASE)


@dataclass(frozen=True)
class TemplateInfo:
    """
    Metadata inferred from a template's file name.
    """

    stem: str
    """
    File name without the ``.pdf`` extension.
    """

    group: str
    """
    Target group, one of :const:`KNOWN_GROUPS`.
    """

    language: str
    """
    Language code, ``de`` or ``en``.
    """

    trade_show: bool = False
    """
    Whether this is a trade show (``Messe``) variant of the template.
    """

    language_tag: Optional[str] = None
    """
    Trailing language segment of the file name (e.g. ``de_de``), if any.
    """

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> 'TemplateInfo':
        stem = Path(path).stem
        parts = [part.lower() for part in stem.split('-')]
        group = DEFAULT_GROUP
        for candidate in KNOWN_GROUPS:
            if candidate.lower() in parts:
                group = candidate
                break
        language_tag = None
        language = 'de'
        if len(parts) > 1 and _LANGUAGE_TAG_REGEX.fullmatch(parts[-1]):
            language_tag = stem.split('-')[-1]
            language = parts[-1][:2]
        return cls(
            stem=stem,
            group=group,
            language=language,
            trade_show='messe' in stem.lower(),
            language_tag=language_tag,
        )

    def category(self, language: Optional[str] = None) -> str:
        """
        Short name identifying the group, language and trade show flag,
        e.g. ``apo_de_messe``.

        :param language:
            Language override; defaults to the language of the template.
        """
        secondary = is_secondary_language(language or self.language)
        lang = 'en' if secondary else 'de'
        suffix = '_messe' if self.trade_show else ''
        return f"{self.group.lower()}_{lang}{suffix}"


def output_filename(info: TemplateInfo, record_id: str) -> str:
    """
    Deterministic output file name for a record.

    The name only depends on the template and the record identifier, so
    the presence of a file with this name is what marks a record as done.
    """
    if info.language_tag is not None:
        return f"{info.stem}-{record_id}.pdf"
    return f"{info.stem}-{info.language}-{record_id}.pdf"


def _language_folder(info: TemplateInfo, language: Optional[str]) -> str:
    return 'EN' if is_secondary_language(language or info.language) else 'DE'


def output_dir_for(
    base: Union[str, Path], info: TemplateInfo, language: Optional[str] = None
) -> Path:
    """
    Output folder for documents generated from a template:
    ``<base>/<group>/<DE|EN>``, with a ``Messe_`` prefix on the group
    folder for trade show templates.
    """
    group_dir = f"Messe_{info.group}" if info.trade_show else info.group
    return Path(base) / group_dir / _language_folder(info, language)


@dataclass(frozen=True)
class SidecarPaths:
    """
    Locations of the files used to report batch progress to other
    processes.
    """

    progress: Path
    """
    Holds the completed fraction as a decimal number between 0 and 1.
    """

    stop_marker: Path
    """
    Written when a batch is stopped before completion.
    """

    resume: Path
    """
    Holds the resume position of a stopped batch.
    """

    @classmethod
    def for_template(
        cls,
        state_dir: Union[str, Path],
        info: TemplateInfo,
        language: Optional[str] = None,
    ) -> 'SidecarPaths':
        state_dir = Path(state_dir)
        key = info.category(language)
        return cls(
            progress=state_dir / f"progress_{key}.txt",
            stop_marker=state_dir / f"stop_status_{key}.txt",
            resume=state_dir / f"resume_{key}.txt",
        )
