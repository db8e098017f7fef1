"""
Value types describing where QR codes and record identifiers are placed on
a template.

All types in this module are immutable. A :class:`GeometrySpec` can be
shared freely between threads and documents; the stamping engine only
ever reads it.
"""

import enum
import re
from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union

from .config.api import (
    ConfigurableMixin,
    process_number,
    process_positive_number,
)
from .config.errors import ConfigurationError

__all__ = [
    'MM_TO_PT',
    'mm_to_pt',
    'Unit',
    'FontStyle',
    'PageSelector',
    'QrPlacement',
    'TextPlacement',
    'GeometrySpec',
]

MM_TO_PT = 2.834646
"""
Number of PDF user space units (points) in one millimetre.
"""


def mm_to_pt(value: float) -> float:
    """
    Convert a length in millimetres to points.

    :param value:
        A length in millimetres.
    :return:
        The same length in points.
    """
    return value * MM_TO_PT


class Unit(enum.Enum):
    """Unit in which placement coordinates and QR sizes are expressed."""

    MM = 'mm'
    PT = 'pt'

    def to_points(self, value: float) -> float:
        if self is Unit.MM:
            return mm_to_pt(value)
        return value

    @classmethod
    def from_config(cls, value) -> 'Unit':
        if isinstance(value, Unit):
            return value
        try:
            return Unit(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"'{value}' is not a valid unit; use 'mm' or 'pt'."
            )


class FontStyle(enum.Enum):
    NORMAL = 'Normal'
    BOLD = 'Bold'
    ITALIC = 'Italic'
    BOLD_ITALIC = 'BoldItalic'
    LIGHT = 'Light'
    MEDIUM = 'Medium'
    HEAVY = 'Heavy'
    BLACK = 'Black'
    THIN = 'Thin'

    @property
    def is_bold(self) -> bool:
        return self in (
            FontStyle.BOLD,
            FontStyle.BOLD_ITALIC,
            FontStyle.HEAVY,
            FontStyle.BLACK,
        )

    @property
    def is_italic(self) -> bool:
        return self in (FontStyle.ITALIC, FontStyle.BOLD_ITALIC)

    @classmethod
    def from_config(cls, value) -> 'FontStyle':
        if isinstance(value, FontStyle):
            return value
        if not isinstance(value, str):
            raise ConfigurationError(
                f"Font style must be a string, not {value!r}."
            )
        normalised = re.sub(r'[\s_-]+', '', value).lower()
        if normalised == 'regular':
            return FontStyle.NORMAL
        for style in FontStyle:
            if style.value.lower() == normalised:
                return style
        raise ConfigurationError(f"'{value}' is not a known font style.")


@dataclass(frozen=True)
class PageSelector:
    """
    Selects the pages a placement applies to: either an explicit set of
    1-based page numbers, or all pages of the document, never both.
    """

    pages: Tuple[int, ...] = ()
    """
    Explicit page numbers, 1-based, sorted and deduplicated.
    """

    all_pages: bool = False
    """
    Whether the placement applies to every page.
    """

    def __post_init__(self):
        if self.all_pages:
            if self.pages:
                raise ConfigurationError(
                    "A page selector cannot combine explicit pages with "
                    "the all-pages flag."
                )
            return
        if not self.pages:
            raise ConfigurationError(
                "A page selector must select at least one page."
            )
        for page in self.pages:
            if isinstance(page, bool) or not isinstance(page, int):
                raise ConfigurationError(
                    f"Page numbers must be integers, not {page!r}."
                )
            if page < 1:
                raise ConfigurationError(
                    f"Page numbers are 1-based; {page} is not valid."
                )
        object.__setattr__(self, 'pages', tuple(sorted(set(self.pages))))

    @classmethod
    def all(cls) -> 'PageSelector':
        return cls(all_pages=True)

    @classmethod
    def of(cls, *pages: int) -> 'PageSelector':
        return cls(pages=tuple(pages))

    def with_all_pages(self) -> 'PageSelector':
        return PageSelector.all()

    def with_pages(self, *pages: int) -> 'PageSelector':
        return PageSelector.of(*pages)

    def includes(self, page_no: int) -> bool:
        return self.all_pages or page_no in self.pages

    @classmethod
    def from_config(cls, value) -> 'PageSelector':
        """
        Parse a page selector from configuration.

        Accepted forms are the string ``all``, a single page number, or a
        list of page numbers.
        """
        if isinstance(value, PageSelector):
            return value
        if isinstance(value, str):
            if value.strip().lower() == 'all':
                return cls.all()
            raise ConfigurationError(
                f"Page selector must be 'all', a page number or a list of "
                f"page numbers, not {value!r}."
            )
        if isinstance(value, int) and not isinstance(value, bool):
            return cls.of(value)
        if isinstance(value, (list, tuple)):
            return cls.of(*value)
        raise ConfigurationError(
            f"Page selector must be 'all', a page number or a list of "
            f"page numbers, not {value!r}."
        )


FIRST_PAGE = PageSelector.of(1)


def _process_placement_entries(config_dict):
    for coord in ('x', 'y'):
        try:
            config_dict[coord] = process_number(config_dict[coord], coord)
        except KeyError:
            pass
    try:
        config_dict['size'] = process_positive_number(
            config_dict['size'], 'size'
        )
    except KeyError:
        pass
    try:
        config_dict['pages'] = PageSelector.from_config(config_dict['pages'])
    except KeyError:
        pass


def _check_size(size):
    if size <= 0:
        raise ConfigurationError(f"Size must be strictly positive, not {size}.")


@dataclass(frozen=True)
class QrPlacement(ConfigurableMixin):
    """
    Placement of a square QR code image.
    """

    x: float
    """
    Horizontal position of the lower-left corner.
    """

    y: float
    """
    Vertical position of the lower-left corner.
    """

    size: float
    """
    Side length of the QR code.
    """

    pages: PageSelector = FIRST_PAGE
    """
    Pages on which the QR code is drawn. Defaults to the first page.
    """

    def __post_init__(self):
        _check_size(self.size)

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        _process_placement_entries(config_dict)


@dataclass(frozen=True)
class TextPlacement(ConfigurableMixin):
    """
    Placement of the record identifier as a single line of text.
    """

    x: float
    """
    Horizontal position of the baseline origin.
    """

    y: float
    """
    Vertical position of the baseline origin.
    """

    size: float
    """
    Font size in points. Unlike the coordinates, this value is never
    converted from millimetres.
    """

    pages: PageSelector = FIRST_PAGE
    """
    Pages on which the text is drawn. Defaults to the first page.
    """

    font_family: str = 'Arial'
    """
    Font family name, used to look up a font file and to choose a
    fallback standard font.
    """

    font_style: FontStyle = FontStyle.NORMAL
    """
    Font style.
    """

    def __post_init__(self):
        _check_size(self.size)
        if not self.font_family:
            raise ConfigurationError("Font family must not be empty.")

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        _process_placement_entries(config_dict)
        try:
            config_dict['font_style'] = FontStyle.from_config(
                config_dict['font_style']
            )
        except KeyError:
            pass
        family = config_dict.get('font_family', 'Arial')
        if not isinstance(family, str):
            raise ConfigurationError(
                f"'font-family' must be a string, not {family!r}."
            )


def _parse_placements(cls, specs, param_name) -> Tuple:
    if not isinstance(specs, (list, tuple)):
        raise ConfigurationError(f"'{param_name}' must be a list.")
    result: List = []
    for ix, spec in enumerate(specs):
        try:
            result.append(cls.from_config(spec))
        except ConfigurationError as e:
            raise ConfigurationError(
                f"Error in '{param_name}' entry {ix}: {e.msg}"
            ) from e
    return tuple(result)


@dataclass(frozen=True)
class GeometrySpec(ConfigurableMixin):
    """
    Complete description of what to stamp on a template, and where.
    """

    qr_codes: Tuple[QrPlacement, ...] = ()
    """
    QR code placements.
    """

    labels: Tuple[TextPlacement, ...] = ()
    """
    Placements for the record identifier text.
    """

    unit: Unit = Unit.MM
    """
    Unit of the coordinates and QR code sizes in this geometry.
    """

    def __post_init__(self):
        object.__setattr__(self, 'qr_codes', tuple(self.qr_codes))
        object.__setattr__(self, 'labels', tuple(self.labels))

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        try:
            config_dict['qr_codes'] = _parse_placements(
                QrPlacement, config_dict['qr_codes'], 'qr-codes'
            )
        except KeyError:
            pass
        try:
            config_dict['labels'] = _parse_placements(
                TextPlacement, config_dict['labels'], 'labels'
            )
        except KeyError:
            pass
        try:
            config_dict['unit'] = Unit.from_config(config_dict['unit'])
        except KeyError:
            pass

    def to_points(self, value: float) -> float:
        return self.unit.to_points(value)

    def qr_codes_for_page(self, page_no: int) -> List[QrPlacement]:
        return [qr for qr in self.qr_codes if qr.pages.includes(page_no)]

    def labels_for_page(self, page_no: int) -> List[TextPlacement]:
        return [lbl for lbl in self.labels if lbl.pages.includes(page_no)]

    def font_requests(self) -> List[Tuple[str, FontStyle]]:
        """
        Distinct ``(family, style)`` pairs used by the labels, in order of
        first appearance.
        """
        seen = {}
        for label in self.labels:
            seen.setdefault((label.font_family, label.font_style), None)
        return list(seen)

    @classmethod
    def build(
        cls,
        qr_codes: Iterable[QrPlacement] = (),
        labels: Iterable[TextPlacement] = (),
        unit: Union[Unit, str] = Unit.MM,
    ) -> 'GeometrySpec':
        return cls(
            qr_codes=tuple(qr_codes),
            labels=tuple(labels),
            unit=Unit.from_config(unit),
        )
