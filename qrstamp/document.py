"""
Stamping a single record onto a template, producing one output document.

The template is opened as an incremental update, so the output consists of
the original file followed by a small update section holding the QR image,
the fonts and the modified pages.
"""

import logging
import os
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

from pyhanko.pdf_utils import misc
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from qrcode.exceptions import DataOverflowError

from .errors import PersistenceError, TemplateError
from .fonts import FontCache, FontResolver
from .geometry import GeometrySpec
from .page import PageStamper
from .qr import qr_raster, register_qr_image
from .records import Record

__all__ = ['DocumentStamper', 'stamp_file', 'write_atomically']

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.part'


def _read_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# mkstemp creates owner-only files; outputs get the usual permissions
OUTPUT_FILE_MODE = 0o666 & ~_read_umask()


def write_atomically(writer: IncrementalPdfFileWriter, output_path: Path):
    """
    Write a document to a temporary file next to ``output_path``, and
    rename it into place once it is complete. Readers never observe a
    partially written output file.

    :raises PersistenceError:
        if the file cannot be written.
    """
    output_path = Path(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=output_path.parent,
            prefix=f'.{output_path.name}.',
            suffix=PARTIAL_SUFFIX,
        )
    except OSError as e:
        raise PersistenceError(
            f"Could not prepare output file {output_path}: {e}"
        ) from e
    try:
        with os.fdopen(fd, 'wb') as outf:
            writer.write(outf)
        os.chmod(tmp_name, OUTPUT_FILE_MODE)
        os.replace(tmp_name, output_path)
    except (OSError, misc.PdfWriteError) as e:
        _discard(tmp_name)
        raise PersistenceError(
            f"Could not write output file {output_path}: {e}"
        ) from e
    except BaseException:
        _discard(tmp_name)
        raise


# damaged object graphs surface as lookup and type errors, not PdfError
MALFORMED_TEMPLATE_ERRORS = (
    misc.PdfError,
    NotImplementedError,
    KeyError,
    IndexError,
    TypeError,
    ValueError,
)


def _page_count(writer: IncrementalPdfFileWriter) -> int:
    try:
        count = writer.root['/Pages']['/Count']
    except KeyError:
        raise misc.PdfReadError("Page tree root has no /Count entry")
    if not isinstance(count, int) or count < 0:
        raise misc.PdfReadError(f"Invalid page count {count!r}")
    return int(count)


def _discard(tmp_name):
    try:
        os.unlink(tmp_name)
    except FileNotFoundError:
        pass


class DocumentStamper:
    """
    Produces stamped documents from a template, one record at a time.

    A document stamper holds no per-document state and can be shared by
    several threads.

    :param resolver:
        Font resolver. A resolver with default settings is created if not
        specified.
    :param language:
        Default language selector, used to choose between the record's
        primary and secondary URL. See :meth:`.Record.url_for`.
    :param strict:
        Read templates in strict mode.
    """

    def __init__(
        self,
        resolver: Optional[FontResolver] = None,
        language: Optional[str] = None,
        strict: bool = True,
    ):
        self.resolver = resolver if resolver is not None else FontResolver()
        self.language = language
        self.strict = strict

    def _open_template(self, template_path) -> IncrementalPdfFileWriter:
        try:
            with open(template_path, 'rb') as inf:
                buf = BytesIO(inf.read())
        except OSError as e:
            raise TemplateError(
                f"Could not read template {template_path}: {e}"
            ) from e
        try:
            return IncrementalPdfFileWriter(buf, strict=self.strict)
        except MALFORMED_TEMPLATE_ERRORS as e:
            raise TemplateError(
                f"Could not parse template {template_path}: {e}"
            ) from e

    def stamp_document(
        self,
        template_path: Union[str, Path],
        record: Record,
        geometry: GeometrySpec,
        output_path: Union[str, Path],
        language: Optional[str] = None,
    ) -> int:
        """
        Stamp one record onto a template and write the result.

        :param template_path:
            Path to the template PDF.
        :param record:
            The record to stamp.
        :param geometry:
            Placement specification.
        :param output_path:
            Destination path. Missing parent directories are created.
        :param language:
            Language selector overriding the stamper's default.
        :return:
            The number of pages that were modified.
        :raises TemplateError:
            if the template cannot be read or parsed.
        :raises PersistenceError:
            if the output cannot be written.
        """
        language = language if language is not None else self.language
        writer = self._open_template(template_path)
        url = record.url_for(language)

        try:
            qr_ref = None
            if geometry.qr_codes:
                try:
                    qr_ref = register_qr_image(writer, qr_raster(url))
                except DataOverflowError as e:
                    logger.warning(
                        f"Cannot encode URL for record {record.id} as a QR "
                        f"code, QR placements are skipped: {e}"
                    )
            font_cache = FontCache()
            self.resolver.prepare(writer, font_cache, geometry)

            page_stamper = PageStamper(
                writer,
                self.resolver,
                font_cache,
                qr_image_ref=qr_ref,
                unit=geometry.unit,
            )
            page_count = _page_count(writer)
            modified = 0
            for page_ix in range(page_count):
                page_no = page_ix + 1
                qr_items = geometry.qr_codes_for_page(page_no)
                labels = geometry.labels_for_page(page_no)
                if not qr_items and not labels:
                    continue
                if page_stamper.stamp(page_ix, qr_items, labels, record.id):
                    modified += 1
        except MALFORMED_TEMPLATE_ERRORS as e:
            raise TemplateError(
                f"Could not process template {template_path}: {e}"
            ) from e

        write_atomically(writer, Path(output_path))
        logger.debug(
            f"Wrote {output_path} for record {record.id} "
            f"({modified} page(s) stamped)"
        )
        return modified


def stamp_file(
    template_path: Union[str, Path],
    output_path: Union[str, Path],
    record: Record,
    geometry: GeometrySpec,
    resolver: Optional[FontResolver] = None,
    language: Optional[str] = None,
    strict: bool = True,
) -> int:
    """
    Stamp a single record onto a template.

    See :meth:`DocumentStamper.stamp_document`.
    """
    stamper = DocumentStamper(
        resolver=resolver, language=language, strict=strict
    )
    return stamper.stamp_document(template_path, record, geometry, output_path)
