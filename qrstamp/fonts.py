"""
Font lookup and registration.

Text placements name a font by family and style. The resolver first looks
for a matching TrueType/OpenType file in the configured font directories
and embeds it as a simple font with ``WinAnsiEncoding``. If no file can be
found (or the file cannot be read), the resolver falls back to one of the
standard 14 fonts that every PDF viewer provides, unless fallback has been
disabled.

Font registrations are tracked per output document in a
:class:`FontCache`, so that each font is embedded at most once per
document regardless of how many placements or pages use it.
"""

import enum
import logging
import os
import struct
import threading
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from fontTools import ttLib
from pyhanko.pdf_utils import generic
from pyhanko.pdf_utils.generic import pdf_name
from pyhanko.pdf_utils.writer import BasePdfFileWriter

from .geometry import FontStyle, GeometrySpec

__all__ = [
    'StandardFont',
    'fallback_font',
    'candidate_file_names',
    'default_font_dirs',
    'FontLocator',
    'FontKey',
    'FontCache',
    'FontResolver',
    'FontEmbeddingError',
    'embed_font_file',
    'FIRST_CHAR',
    'LAST_CHAR',
]

logger = logging.getLogger(__name__)

FIRST_CHAR = 32
LAST_CHAR = 255
FONT_FILE_EXTENSIONS = ('.ttf', '.otf')


class StandardFont(enum.Enum):
    """The 14 standard Type 1 fonts."""

    TIMES_ROMAN = 'Times-Roman'
    TIMES_BOLD = 'Times-Bold'
    TIMES_ITALIC = 'Times-Italic'
    TIMES_BOLD_ITALIC = 'Times-BoldItalic'
    HELVETICA = 'Helvetica'
    HELVETICA_BOLD = 'Helvetica-Bold'
    HELVETICA_OBLIQUE = 'Helvetica-Oblique'
    HELVETICA_BOLD_OBLIQUE = 'Helvetica-BoldOblique'
    COURIER = 'Courier'
    COURIER_BOLD = 'Courier-Bold'
    COURIER_OBLIQUE = 'Courier-Oblique'
    COURIER_BOLD_OBLIQUE = 'Courier-BoldOblique'
    SYMBOL = 'Symbol'
    ZAPF_DINGBATS = 'ZapfDingbats'

    @property
    def is_symbolic(self) -> bool:
        return self in (StandardFont.SYMBOL, StandardFont.ZAPF_DINGBATS)

    def as_resource(self) -> generic.DictionaryObject:
        """
        Font dictionary referring to this standard font.
        """
        font_dict = generic.DictionaryObject(
            {
                pdf_name('/Type'): pdf_name('/Font'),
                pdf_name('/Subtype'): pdf_name('/Type1'),
                pdf_name('/BaseFont'): pdf_name('/' + self.value),
            }
        )
        if not self.is_symbolic:
            font_dict['/Encoding'] = pdf_name('/WinAnsiEncoding')
        return font_dict


# regular, bold, italic, bold italic
_STANDARD_FAMILIES = {
    'times': (
        StandardFont.TIMES_ROMAN,
        StandardFont.TIMES_BOLD,
        StandardFont.TIMES_ITALIC,
        StandardFont.TIMES_BOLD_ITALIC,
    ),
    'courier': (
        StandardFont.COURIER,
        StandardFont.COURIER_BOLD,
        StandardFont.COURIER_OBLIQUE,
        StandardFont.COURIER_BOLD_OBLIQUE,
    ),
    'helvetica': (
        StandardFont.HELVETICA,
        StandardFont.HELVETICA_BOLD,
        StandardFont.HELVETICA_OBLIQUE,
        StandardFont.HELVETICA_BOLD_OBLIQUE,
    ),
}


def fallback_font(family: str, style: FontStyle) -> StandardFont:
    """
    Map a requested family and style to the closest standard font.

    Families containing "times" map to Times, families containing
    "courier" to Courier, and everything else to Helvetica. Weights
    lighter than bold map to the regular variant, heavier ones to bold.
    """
    family_l = family.lower()
    if 'times' in family_l:
        variants = _STANDARD_FAMILIES['times']
    elif 'courier' in family_l:
        variants = _STANDARD_FAMILIES['courier']
    else:
        variants = _STANDARD_FAMILIES['helvetica']
    index = (1 if style.is_bold else 0) + (2 if style.is_italic else 0)
    return variants[index]


# file name suffixes per style, including the abbreviated forms used by
# the Windows core fonts (arialbd.ttf, timesi.ttf, georgiaz.ttf, ...)
_STYLE_SUFFIXES: Dict[FontStyle, Tuple[str, ...]] = {
    FontStyle.NORMAL: ('Regular',),
    FontStyle.BOLD: ('Bold', 'bd', 'b'),
    FontStyle.ITALIC: ('Italic', 'i', 'it'),
    FontStyle.BOLD_ITALIC: ('BoldItalic', 'Bold Italic', 'bi', 'z'),
    FontStyle.LIGHT: ('Light',),
    FontStyle.MEDIUM: ('Medium',),
    FontStyle.HEAVY: ('Heavy',),
    FontStyle.BLACK: ('Black',),
    FontStyle.THIN: ('Thin',),
}

# styles that have no file of their own are looked up as a nearby style
_STYLE_DEGRADATION: Dict[FontStyle, Tuple[FontStyle, ...]] = {
    FontStyle.LIGHT: (FontStyle.NORMAL,),
    FontStyle.THIN: (FontStyle.LIGHT, FontStyle.NORMAL),
    FontStyle.MEDIUM: (FontStyle.NORMAL,),
    FontStyle.HEAVY: (FontStyle.BLACK, FontStyle.BOLD),
    FontStyle.BLACK: (FontStyle.HEAVY, FontStyle.BOLD),
}


def _family_variants(family: str) -> List[str]:
    family = family.strip()
    variants = [
        family,
        family.replace(' ', ''),
        family.replace(' ', '_'),
        family.replace(' ', '-'),
    ]
    return list(dict.fromkeys(variants))


def _styled_stems(family: str, style: FontStyle) -> Iterable[str]:
    for base in _family_variants(family):
        for suffix in _STYLE_SUFFIXES[style]:
            if len(suffix) <= 2:
                # short suffixes are only ever glued on directly
                yield base + suffix
                continue
            for sep in ('-', '_', '', ' '):
                yield base + sep + suffix


def candidate_file_names(family: str, style: FontStyle) -> List[str]:
    """
    Font file names to look for, most specific first. All names are
    lower case; lookups are case-insensitive.

    For non-regular styles, the styled names come first, followed by the
    names of degraded styles, and finally the plain family names.
    """
    styles = [style]
    styles.extend(_STYLE_DEGRADATION.get(style, ()))
    stems: List[str] = []
    for st in styles:
        if st is FontStyle.NORMAL:
            continue
        stems.extend(_styled_stems(family, st))
    stems.extend(_family_variants(family))
    stems.extend(_styled_stems(family, FontStyle.NORMAL))
    names = (
        (stem + ext).lower()
        for stem in stems
        for ext in FONT_FILE_EXTENSIONS
    )
    return list(dict.fromkeys(names))


def default_font_dirs() -> List[Path]:
    """
    The platform's usual font directories, followed by ``./fonts``.
    Directories that do not exist are harmless.
    """
    dirs: List[Path] = []
    windir = os.environ.get('WINDIR')
    if windir:
        dirs.append(Path(windir) / 'Fonts')
    local_app_data = os.environ.get('LOCALAPPDATA')
    if local_app_data:
        dirs.append(Path(local_app_data) / 'Microsoft' / 'Windows' / 'Fonts')
    home = Path(os.path.expanduser('~'))
    dirs.extend(
        [
            home / 'Library' / 'Fonts',
            Path('/Library/Fonts'),
            Path('/System/Library/Fonts'),
            home / '.local' / 'share' / 'fonts',
            home / '.fonts',
            Path('/usr/share/fonts'),
            Path('/usr/local/share/fonts'),
        ]
    )
    dirs.append(Path('fonts'))
    return dirs


class FontLocator:
    """
    Finds font files by family and style in a list of directories.

    Directory listings are read once and memoised; a single locator can be
    shared by all workers of a batch.

    :param search_dirs:
        Directories to search, in order of preference. Subdirectories are
        searched as well. Defaults to :func:`default_font_dirs`.
    """

    def __init__(self, search_dirs: Optional[Iterable] = None):
        if search_dirs is None:
            search_dirs = default_font_dirs()
        self.search_dirs: Tuple[Path, ...] = tuple(
            Path(d) for d in search_dirs
        )
        self._lock = threading.Lock()
        self._listings: Dict[Path, Dict[str, Path]] = {}

    def _list_dir(self, directory: Path) -> Dict[str, Path]:
        listing: Dict[str, Path] = {}
        for root, _, files in os.walk(directory):
            for fname in sorted(files):
                if fname.lower().endswith(FONT_FILE_EXTENSIONS):
                    listing.setdefault(fname.lower(), Path(root) / fname)
        return listing

    def _listing(self, directory: Path) -> Dict[str, Path]:
        with self._lock:
            try:
                return self._listings[directory]
            except KeyError:
                pass
            listing = self._list_dir(directory)
            self._listings[directory] = listing
            return listing

    def find(self, family: str, style: FontStyle) -> Optional[Path]:
        """
        Look up a font file.

        :return:
            The path to the best matching file, or ``None`` if there is
            no matching file in any of the search directories.
        """
        listings = [self._listing(d) for d in self.search_dirs]
        for name in candidate_file_names(family, style):
            for listing in listings:
                try:
                    path = listing[name]
                except KeyError:
                    continue
                if os.access(path, os.R_OK):
                    return path
        return None


class FontEmbeddingError(ValueError):
    """Raised when a font file cannot be parsed for embedding."""

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)


@dataclass(frozen=True)
class FontKey:
    """
    A font registered in an output document.
    """

    name: str
    """
    Preferred resource name, e.g. ``/TTF1`` or ``/F1``.
    """

    font_ref: generic.IndirectObject
    """
    Reference to the font dictionary.
    """

    base_font: str
    """
    PostScript name of the font.
    """

    standard_font: Optional[StandardFont] = None
    """
    The standard font used, if the font is not embedded.
    """

    @property
    def embedded(self) -> bool:
        return self.standard_font is None


class FontCache:
    """
    Per-document record of font registrations.

    A cache must only be used with the writer of a single document, and is
    not safe to share between threads.
    """

    def __init__(self):
        self._resolved: Dict[Tuple[str, FontStyle], Optional[FontKey]] = {}
        self._embedded: Dict[Path, FontKey] = {}
        self._standard: Dict[StandardFont, FontKey] = {}

    def __contains__(self, item: Tuple[str, FontStyle]) -> bool:
        return item in self._resolved

    def __getitem__(self, item: Tuple[str, FontStyle]) -> Optional[FontKey]:
        return self._resolved[item]

    def __setitem__(
        self, item: Tuple[str, FontStyle], value: Optional[FontKey]
    ):
        self._resolved[item] = value

    def next_embedded_name(self) -> str:
        return f'/TTF{len(self._embedded) + 1}'

    def next_standard_name(self) -> str:
        return f'/F{len(self._standard) + 1}'

    def embedded_font(self, path: Path) -> Optional[FontKey]:
        return self._embedded.get(path)

    def add_embedded_font(self, path: Path, key: FontKey):
        self._embedded[path] = key

    def standard_font(self, font: StandardFont) -> Optional[FontKey]:
        return self._standard.get(font)

    def add_standard_font(self, key: FontKey):
        assert key.standard_font is not None
        self._standard[key.standard_font] = key

    @property
    def registered_fonts(self) -> List[FontKey]:
        return [*self._embedded.values(), *self._standard.values()]


def _read_ps_name(tt: ttLib.TTFont) -> Optional[str]:
    try:
        name_table = tt['name']
        # extract PostScript name from the font's name table
        nr = next(nr for nr in name_table.names if nr.nameID == 6)
        return nr.toUnicode()
    except (StopIteration, KeyError, UnicodeDecodeError):
        return None


class _FontMetrics:
    """Metrics needed to describe a simple font, in 1000 units per em."""

    def __init__(self, tt: ttLib.TTFont):
        head = tt['head']
        hhea = tt['hhea']
        hmtx = tt['hmtx']
        scale = 1000 / head.unitsPerEm

        def scaled(value):
            return int(round(value * scale))

        self.bbox = [
            scaled(head.xMin),
            scaled(head.yMin),
            scaled(head.xMax),
            scaled(head.yMax),
        ]
        self.ascent = scaled(hhea.ascent)
        self.descent = scaled(hhea.descent)
        try:
            os2 = tt['OS/2']
        except KeyError:
            os2 = None
        weight = getattr(os2, 'usWeightClass', 400)
        self.stemv = int(10 + 220 * (weight - 50) / 900)
        cap_height = getattr(os2, 'sCapHeight', None)
        self.cap_height = scaled(cap_height) if cap_height else self.ascent
        post = tt['post']
        self.italic_angle = float(getattr(post, 'italicAngle', 0))
        self.fixed_pitch = bool(getattr(post, 'isFixedPitch', 0))

        cmap = tt.getBestCmap() or {}
        widths = []
        for code in range(FIRST_CHAR, LAST_CHAR + 1):
            try:
                char = bytes([code]).decode('cp1252')
            except UnicodeDecodeError:
                widths.append(0)
                continue
            glyph_name = cmap.get(ord(char))
            if glyph_name is None:
                widths.append(0)
            else:
                widths.append(scaled(hmtx[glyph_name][0]))
        self.widths = widths

    @property
    def flags(self) -> int:
        # bit 6: nonsymbolic, bit 7: italic, bit 1: fixed pitch
        flags = 1 << 5
        if self.italic_angle:
            flags |= 1 << 6
        if self.fixed_pitch:
            flags |= 1
        return flags


def embed_font_file(
    writer: BasePdfFileWriter, font_bytes: bytes, name: str
) -> FontKey:
    """
    Embed a TrueType or OpenType font program as a simple font.

    The font is embedded in full (no subsetting), with character codes
    interpreted according to ``WinAnsiEncoding``. Widths are provided for
    codes :const:`FIRST_CHAR` through :const:`LAST_CHAR`.

    The font is parsed completely before anything is added to the writer,
    so a failure leaves the output document unchanged.

    :param writer:
        The writer of the output document.
    :param font_bytes:
        The contents of a ``.ttf`` or ``.otf`` file.
    :param name:
        Resource name to register the font under.
    :return:
        A :class:`FontKey`.
    :raises FontEmbeddingError:
        if the font program cannot be parsed.
    """
    try:
        tt = ttLib.TTFont(BytesIO(font_bytes), lazy=False)
        metrics = _FontMetrics(tt)
        ps_name = _read_ps_name(tt)
        is_cff = 'CFF ' in tt
    except (ttLib.TTLibError, KeyError, ValueError, struct.error) as e:
        raise FontEmbeddingError(f"Could not parse font program: {e}") from e

    if not ps_name:
        ps_name = name.lstrip('/')
    # PostScript names must not contain spaces
    ps_name = ps_name.replace(' ', '')

    if is_cff:
        font_stream = generic.StreamObject(
            {pdf_name('/Subtype'): pdf_name('/OpenType')},
            stream_data=font_bytes,
        )
        font_file_key = '/FontFile3'
        subtype = '/Type1'
    else:
        font_stream = generic.StreamObject(
            {pdf_name('/Length1'): generic.NumberObject(len(font_bytes))},
            stream_data=font_bytes,
        )
        font_file_key = '/FontFile2'
        subtype = '/TrueType'
    font_stream.compress()

    descriptor = generic.DictionaryObject(
        {
            pdf_name('/Type'): pdf_name('/FontDescriptor'),
            pdf_name('/FontName'): pdf_name('/' + ps_name),
            pdf_name('/Flags'): generic.NumberObject(metrics.flags),
            pdf_name('/FontBBox'): generic.ArrayObject(
                map(generic.NumberObject, metrics.bbox)
            ),
            pdf_name('/ItalicAngle'): generic.FloatObject(
                metrics.italic_angle
            ),
            pdf_name('/Ascent'): generic.NumberObject(metrics.ascent),
            pdf_name('/Descent'): generic.NumberObject(metrics.descent),
            pdf_name('/CapHeight'): generic.NumberObject(metrics.cap_height),
            pdf_name('/StemV'): generic.NumberObject(metrics.stemv),
            pdf_name(font_file_key): writer.add_object(font_stream),
        }
    )
    font_dict = generic.DictionaryObject(
        {
            pdf_name('/Type'): pdf_name('/Font'),
            pdf_name('/Subtype'): pdf_name(subtype),
            pdf_name('/BaseFont'): pdf_name('/' + ps_name),
            pdf_name('/FirstChar'): generic.NumberObject(FIRST_CHAR),
            pdf_name('/LastChar'): generic.NumberObject(LAST_CHAR),
            pdf_name('/Widths'): generic.ArrayObject(
                map(generic.NumberObject, metrics.widths)
            ),
            pdf_name('/Encoding'): pdf_name('/WinAnsiEncoding'),
            pdf_name('/FontDescriptor'): writer.add_object(descriptor),
        }
    )
    return FontKey(
        name=name, font_ref=writer.add_object(font_dict), base_font=ps_name
    )


class FontResolver:
    """
    Resolves font requests to fonts registered in an output document.

    The resolver itself is stateless apart from the shared
    :class:`FontLocator`; all per-document state lives in the
    :class:`FontCache` passed to :meth:`resolve`.

    :param locator:
        Font file locator. A locator with the default search directories
        is created if not specified.
    :param fallback_enabled:
        Whether to fall back to a standard font when no usable font file
        is available. If ``False``, such requests resolve to ``None`` and
        the corresponding text is not drawn.
    """

    def __init__(
        self,
        locator: Optional[FontLocator] = None,
        fallback_enabled: bool = True,
    ):
        self.locator = locator if locator is not None else FontLocator()
        self.fallback_enabled = fallback_enabled

    def resolve(
        self,
        writer: BasePdfFileWriter,
        cache: FontCache,
        family: str,
        style: FontStyle,
    ) -> Optional[FontKey]:
        """
        Resolve a font request, registering the font in the document if
        necessary. Repeated requests for the same family and style return
        the cached result.

        :return:
            A :class:`FontKey`, or ``None`` if the font is unavailable and
            fallback is disabled.
        """
        request = (family, style)
        if request in cache:
            return cache[request]
        result = self._resolve(writer, cache, family, style)
        cache[request] = result
        return result

    def prepare(
        self,
        writer: BasePdfFileWriter,
        cache: FontCache,
        geometry: GeometrySpec,
    ):
        """
        Resolve every font used by the labels of a geometry spec.
        """
        for family, style in geometry.font_requests():
            self.resolve(writer, cache, family, style)

    def _resolve(self, writer, cache: FontCache, family, style):
        path = self.locator.find(family, style)
        if path is not None:
            existing = cache.embedded_font(path)
            if existing is not None:
                return existing
            try:
                font_bytes = path.read_bytes()
                key = embed_font_file(
                    writer, font_bytes, cache.next_embedded_name()
                )
            except (OSError, FontEmbeddingError) as e:
                logger.warning(
                    f"Failed to embed font file {path} for '{family}' "
                    f"({style.value}): {e}"
                )
            else:
                cache.add_embedded_font(path, key)
                logger.debug(
                    f"Embedded {path} as {key.name} for '{family}' "
                    f"({style.value})"
                )
                return key

        if not self.fallback_enabled:
            logger.warning(
                f"No usable font file for '{family}' ({style.value}) and "
                f"font fallback is disabled; text in this font is skipped."
            )
            return None

        standard = fallback_font(family, style)
        key = cache.standard_font(standard)
        if key is None:
            key = FontKey(
                name=cache.next_standard_name(),
                font_ref=writer.add_object(standard.as_resource()),
                base_font=standard.value,
                standard_font=standard,
            )
            cache.add_standard_font(key)
        logger.debug(
            f"Using standard font {standard.value} for '{family}' "
            f"({style.value})"
        )
        return key
