"""
Per-page mutation: registering resources and appending drawing
instructions to a page's content.
"""

import logging
from typing import List, Optional, Sequence

from pyhanko.pdf_utils import generic, misc
from pyhanko.pdf_utils.generic import pdf_name
from pyhanko.pdf_utils.writer import BasePdfFileWriter

from .fonts import FontCache, FontKey, FontResolver
from .geometry import QrPlacement, TextPlacement, Unit
from .qr import QR_RESOURCE_NAME

__all__ = ['PageStamper', 'register_resource', 'read_page_content']

logger = logging.getLogger(__name__)


def _fmt(value: float) -> bytes:
    return b'%g' % round(value, 4)


def _literal_string(text: str) -> bytes:
    data = text.encode('cp1252', errors='replace')
    data = data.replace(b'\\', b'\\\\')
    data = data.replace(b'(', b'\\(').replace(b')', b'\\)')
    return b'(' + data + b')'


def _private_dict(obj) -> generic.DictionaryObject:
    # shallow copy; values that are indirect references stay references
    if obj is None:
        return generic.DictionaryObject()
    obj = obj.get_object()
    if not isinstance(obj, generic.DictionaryObject):
        raise misc.PdfReadError(
            f"Expected a dictionary, but found {type(obj).__name__}."
        )
    return generic.DictionaryObject(obj)


def register_resource(
    category: generic.DictionaryObject, preferred_name: str, value
) -> str:
    """
    Register a resource in a resource category dictionary (e.g. the
    ``/Font`` or ``/XObject`` entry of a resource dictionary).

    If the preferred name is already bound to the same object, the
    existing binding is reused. If it is bound to something else, a
    numeric suffix is appended until a free name is found, so resources
    already present in the template are never replaced.

    :param category:
        The category dictionary to modify.
    :param preferred_name:
        The preferred resource name, including the leading slash.
    :param value:
        The resource, usually an indirect reference.
    :return:
        The name under which the resource is registered.
    """
    candidate = preferred_name
    suffix = 1
    while True:
        try:
            existing = category.raw_get(candidate)
        except KeyError:
            category[pdf_name(candidate)] = value
            return candidate
        if existing == value:
            return candidate
        suffix += 1
        candidate = f'{preferred_name}_{suffix}'


def read_page_content(page_obj: generic.DictionaryObject) -> bytes:
    """
    Decode and concatenate all content streams of a page.
    """
    try:
        contents = page_obj['/Contents']
    except KeyError:
        return b''
    if isinstance(contents, generic.StreamObject):
        streams = [contents]
    elif isinstance(contents, generic.ArrayObject):
        streams = [part.get_object() for part in contents]
    else:
        raise misc.PdfReadError(
            f"Page /Contents must be a stream or an array, not "
            f"{type(contents).__name__}."
        )
    parts = []
    for stream in streams:
        if not isinstance(stream, generic.StreamObject):
            raise misc.PdfReadError("Page content array entry is not a stream")
        parts.append(stream.data)
    return b'\n'.join(parts)


class PageStamper:
    """
    Draws QR codes and identifier text on the pages of one document.

    :param writer:
        The writer of the output document.
    :param resolver:
        Font resolver.
    :param font_cache:
        The font cache of the output document.
    :param qr_image_ref:
        Reference to the QR code image XObject, or ``None`` if the QR code
        could not be produced (QR placements are skipped in that case).
    :param unit:
        Unit of the placement coordinates.
    """

    def __init__(
        self,
        writer: BasePdfFileWriter,
        resolver: FontResolver,
        font_cache: FontCache,
        qr_image_ref: Optional[generic.IndirectObject],
        unit: Unit = Unit.MM,
    ):
        self.writer = writer
        self.resolver = resolver
        self.font_cache = font_cache
        self.qr_image_ref = qr_image_ref
        self.unit = unit

    def _resolve_labels(self, labels: Sequence[TextPlacement]):
        resolved = []
        for label in labels:
            font_key: Optional[FontKey] = self.resolver.resolve(
                self.writer,
                self.font_cache,
                label.font_family,
                label.font_style,
            )
            if font_key is None:
                logger.debug(
                    f"Skipping label at ({label.x}, {label.y}): font "
                    f"'{label.font_family}' unavailable"
                )
                continue
            resolved.append((label, font_key))
        return resolved

    def stamp(
        self,
        page_ix: int,
        qr_items: Sequence[QrPlacement],
        labels: Sequence[TextPlacement],
        record_id: str,
    ) -> bool:
        """
        Draw the given placements on a page.

        The page's content is wrapped in a ``q``/``Q`` pair so that its
        graphics state cannot leak into the stamped content, and replaced
        by a single new content stream. Resource dictionaries shared with
        other pages are never modified in place; the page receives its own
        copy.

        :param page_ix:
            Zero-based page index.
        :param qr_items:
            QR code placements for this page.
        :param labels:
            Text placements for this page.
        :param record_id:
            The text to draw at each text placement.
        :return:
            ``True`` if the page was modified, ``False`` if there was nothing
            to draw.
        """
        if self.qr_image_ref is None:
            qr_items = ()
        resolved_labels = self._resolve_labels(labels)
        if not qr_items and not resolved_labels:
            return False

        page_ref, inherited_resources = self.writer.find_page_for_modification(
            page_ix
        )
        page_obj = page_ref.get_object()
        resources = _private_dict(inherited_resources)

        ops: List[bytes] = []
        if qr_items:
            xobjects = _private_dict(resources.get('/XObject'))
            qr_name = register_resource(
                xobjects, QR_RESOURCE_NAME, self.qr_image_ref
            )
            resources[pdf_name('/XObject')] = xobjects
            to_pt = self.unit.to_points
            for qr in qr_items:
                size = _fmt(to_pt(qr.size))
                ops.append(
                    b'q %s 0 0 %s %s %s cm %s Do Q'
                    % (
                        size,
                        size,
                        _fmt(to_pt(qr.x)),
                        _fmt(to_pt(qr.y)),
                        qr_name.encode('ascii'),
                    )
                )

        if resolved_labels:
            fonts = _private_dict(resources.get('/Font'))
            names = {}
            for label, font_key in resolved_labels:
                try:
                    font_name = names[font_key.name]
                except KeyError:
                    font_name = names[font_key.name] = register_resource(
                        fonts, font_key.name, font_key.font_ref
                    )
                ops.append(
                    b'BT %s %s Tf %s %s Td %s Tj ET'
                    % (
                        font_name.encode('ascii'),
                        _fmt(label.size),
                        _fmt(self.unit.to_points(label.x)),
                        _fmt(self.unit.to_points(label.y)),
                        _literal_string(record_id),
                    )
                )
            resources[pdf_name('/Font')] = fonts

        existing = read_page_content(page_obj)
        new_ops = b'\n'.join(ops) + b'\n'
        if existing.strip():
            content = b'q\n' + existing + b'\nQ\n' + new_ops
        else:
            content = new_ops

        stream = generic.StreamObject(stream_data=content)
        stream.compress()
        page_obj[pdf_name('/Resources')] = resources
        page_obj[pdf_name('/Contents')] = self.writer.add_object(stream)
        self.writer.mark_update(page_ref)
        logger.debug(
            f"Stamped page {page_ix + 1}: {len(qr_items)} QR code(s), "
            f"{len(resolved_labels)} label(s)"
        )
        return True
