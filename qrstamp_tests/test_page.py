from io import BytesIO

import pytest
from pyhanko.pdf_utils import generic, writer
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from qrcode.exceptions import DataOverflowError

from qrstamp.fonts import FontCache, FontLocator, FontResolver
from qrstamp.geometry import QrPlacement, TextPlacement, Unit
from qrstamp.page import (
    PageStamper,
    _literal_string,
    read_page_content,
    register_resource,
)
from qrstamp.qr import qr_raster, register_qr_image

from .samples import TEMPLATE_CONTENT, template_pdf


def test_qr_raster():
    raster = qr_raster('https://example.com')
    # version 2 at level M
    assert raster.size == 25
    assert len(raster.data) == 25 * 4
    img = raster.as_image()
    # finder pattern in the top left corner, no quiet zone
    assert img.getpixel((0, 0)) == 0
    assert img.getpixel((1, 1)) != 0


def test_qr_raster_overflow():
    with pytest.raises(DataOverflowError):
        qr_raster('x' * 5000)


def test_register_qr_image():
    w = writer.PdfFileWriter()
    raster = qr_raster('https://example.com')
    img = register_qr_image(w, raster).get_object()
    assert img['/Subtype'] == '/Image'
    assert img['/Width'] == img['/Height'] == 25
    assert img['/BitsPerComponent'] == 1
    assert img['/ColorSpace'] == '/DeviceGray'
    assert img['/Interpolate'].value is False
    assert img.data == raster.data


def test_literal_string():
    assert _literal_string('0007') == b'(0007)'
    assert _literal_string('a(b)\\') == b'(a\\(b\\)\\\\)'


def test_register_resource():
    w = writer.PdfFileWriter()
    ref1 = w.add_object(generic.NullObject())
    ref2 = w.add_object(generic.NullObject())
    ref3 = w.add_object(generic.NullObject())
    category = generic.DictionaryObject()
    assert register_resource(category, '/QR', ref1) == '/QR'
    # same object: binding reused
    assert register_resource(category, '/QR', ref1) == '/QR'
    assert register_resource(category, '/QR', ref2) == '/QR_2'
    assert register_resource(category, '/QR', ref3) == '/QR_3'
    assert category.raw_get('/QR') == ref1
    assert category.raw_get('/QR_2') == ref2
    assert len(category) == 3


def test_read_page_content_array():
    w = writer.PdfFileWriter()
    parts = [
        w.add_object(generic.StreamObject(stream_data=b'0 0 m')),
        w.add_object(generic.StreamObject(stream_data=b'10 10 l S')),
    ]
    page = writer.PageObject(contents=parts, media_box=[0, 0, 100, 100])
    assert read_page_content(page) == b'0 0 m\n10 10 l S'
    del page['/Contents']
    assert read_page_content(page) == b''


def _stamper(data, tmp_path, with_qr=True):
    w = IncrementalPdfFileWriter(BytesIO(data))
    qr_ref = None
    if with_qr:
        qr_ref = register_qr_image(w, qr_raster('https://example.com'))
    resolver = FontResolver(locator=FontLocator([tmp_path]))
    return w, PageStamper(w, resolver, FontCache(), qr_ref, unit=Unit.PT)


def _page(w, page_ix):
    page_ref, _ = w.find_page_for_modification(page_ix)
    return page_ref.get_object()


def test_stamp_page(tmp_path):
    w, stamper = _stamper(template_pdf(page_count=2), tmp_path)
    modified = stamper.stamp(
        0,
        [QrPlacement(x=100, y=200, size=50)],
        [TextPlacement(x=30, y=40, size=12)],
        '0007',
    )
    assert modified

    page = _page(w, 0)
    content = read_page_content(page)
    # original content is isolated from the stamp
    assert content.startswith(b'q\n' + TEMPLATE_CONTENT + b'\nQ\n')
    assert b'q 50 0 0 50 100 200 cm /QR Do Q' in content
    # /F1 is taken by the template's Courier
    assert b'BT /F1_2 12 Tf 30 40 Td (0007) Tj ET' in content

    resources = page['/Resources']
    assert '/QR' in resources['/XObject']
    fonts = resources['/Font']
    assert fonts['/F1']['/BaseFont'] == '/Courier'
    assert fonts['/F1_2']['/BaseFont'] == '/Helvetica'


def test_stamp_page_leaves_shared_resources_alone(tmp_path):
    data = template_pdf(page_count=2)
    w, stamper = _stamper(data, tmp_path)
    shared_ref = _page(w, 1).raw_get('/Resources')
    assert isinstance(shared_ref, generic.IndirectObject)

    stamper.stamp(0, [QrPlacement(x=0, y=0, size=10)], [], '0001')

    assert _page(w, 1).raw_get('/Resources') == shared_ref
    shared = shared_ref.get_object()
    assert '/XObject' not in shared
    assert list(shared['/Font'].keys()) == ['/F1']
    assert read_page_content(_page(w, 1)) == TEMPLATE_CONTENT


def test_stamp_page_millimetres(tmp_path):
    w, stamper = _stamper(template_pdf(), tmp_path)
    stamper.unit = Unit.MM
    stamper.stamp(0, [QrPlacement(x=10, y=10, size=20)], [], '0001')
    content = read_page_content(_page(w, 0))
    assert b'q 56.6929 0 0 56.6929 28.3465 28.3465 cm /QR Do Q' in content


def test_stamp_empty_page(tmp_path):
    w, stamper = _stamper(template_pdf(content=b''), tmp_path)
    stamper.stamp(0, [], [TextPlacement(x=1, y=2, size=8)], '0001')
    content = read_page_content(_page(w, 0))
    assert content == b'BT /F1_2 8 Tf 1 2 Td (0001) Tj ET\n'


def test_stamp_nothing_to_draw(tmp_path):
    w, stamper = _stamper(template_pdf(), tmp_path, with_qr=False)
    # QR placements are skipped without an image
    assert not stamper.stamp(0, [QrPlacement(x=0, y=0, size=10)], [], '1')
    assert not stamper.stamp(0, [], [], '1')
    assert read_page_content(_page(w, 0)) == TEMPLATE_CONTENT


def test_stamp_label_without_font(tmp_path):
    w, stamper = _stamper(template_pdf(), tmp_path)
    stamper.resolver.fallback_enabled = False
    modified = stamper.stamp(
        0,
        [QrPlacement(x=0, y=0, size=10)],
        [TextPlacement(x=30, y=40, size=12)],
        '0007',
    )
    assert modified
    content = read_page_content(_page(w, 0))
    assert b'Tj' not in content.replace(TEMPLATE_CONTENT, b'')
    assert b'/QR Do' in content


def test_stamp_same_font_twice(tmp_path):
    w, stamper = _stamper(template_pdf(shared_resources=False), tmp_path)
    stamper.stamp(
        0,
        [],
        [
            TextPlacement(x=10, y=10, size=12),
            TextPlacement(x=10, y=500, size=9),
        ],
        '0042',
    )
    page = _page(w, 0)
    content = read_page_content(page)
    assert content.count(b'/F1_2 ') == 2
    assert len(page['/Resources']['/Font']) == 2
    assert isinstance(page.raw_get('/Resources'), generic.DictionaryObject)
