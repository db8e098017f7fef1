from io import BytesIO

from fontTools.fontBuilder import FontBuilder
from fontTools.pens.ttGlyphPen import TTGlyphPen
from pyhanko.pdf_utils import generic, writer
from pyhanko.pdf_utils.generic import pdf_name
from pyhanko.pdf_utils.reader import PdfFileReader

from qrstamp.fonts import StandardFont

A4 = (0, 0, 595, 842)
TEMPLATE_CONTENT = b'BT /F1 18 Tf 72 720 Td (Template) Tj ET'

RECORDS_CSV = (
    'ID;URL_DE;URL_EN\n'
    '1;https://example.com/de/1;https://example.com/en/1\n'
    '2;https://example.com/de/2;https://example.com/en/2\n'
    '3;https://example.com/de/3;https://example.com/en/3\n'
)

DIGIT_GLYPHS = 'zero one two three four five six seven eight nine'.split()


def template_pdf(
    page_count=1,
    content=TEMPLATE_CONTENT,
    shared_resources=True,
    with_font=True,
    page_count_entry=True,
):
    """
    Produce a template document whose pages draw some text in Courier.

    With ``shared_resources``, all pages point to the same indirect resource
    dictionary, which binds Courier to ``/F1`` unless ``with_font`` is off.
    Without ``page_count_entry``, the page tree root lacks its /Count.
    """
    w = writer.PdfFileWriter(stream_xrefs=False)
    resources = generic.DictionaryObject()
    if with_font:
        courier = w.add_object(StandardFont.COURIER.as_resource())
        resources[pdf_name('/Font')] = generic.DictionaryObject(
            {pdf_name('/F1'): courier}
        )
    shared_ref = w.add_object(resources) if shared_resources else None
    for _ in range(page_count):
        stream = generic.StreamObject(stream_data=content)
        page = writer.PageObject(
            contents=w.add_object(stream),
            media_box=generic.ArrayObject(map(generic.NumberObject, A4)),
            resources=(
                shared_ref
                if shared_ref is not None
                else generic.DictionaryObject(resources)
            ),
        )
        w.insert_page(page)
    if not page_count_entry:
        del w.root['/Pages']['/Count']
    out = BytesIO()
    w.write(out)
    return out.getvalue()


def write_template(path, **kwargs):
    data = template_pdf(**kwargs)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return data


def read_page(data: bytes, page_ix: int):
    r = PdfFileReader(BytesIO(data))
    page_ref, _ = r.find_page_for_modification(page_ix)
    return page_ref.get_object()


def build_font(path, family='Test Sans', style='Regular'):
    """
    Write a small TrueType font with a box glyph for every digit.
    All glyphs are 500 units wide, on a 1000 unit em.
    """
    glyph_order = ['.notdef', 'space', *DIGIT_GLYPHS]
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder(glyph_order)
    cmap = {ord(' '): 'space'}
    cmap.update({ord(str(d)): name for d, name in enumerate(DIGIT_GLYPHS)})
    fb.setupCharacterMap(cmap)

    glyphs = {}
    for name in glyph_order:
        pen = TTGlyphPen(None)
        if name != 'space':
            pen.moveTo((50, 0))
            pen.lineTo((50, 700))
            pen.lineTo((450, 700))
            pen.lineTo((450, 0))
            pen.closePath()
        glyphs[name] = pen.glyph()
    fb.setupGlyf(glyphs)
    glyf = fb.font['glyf']
    fb.setupHorizontalMetrics(
        {name: (500, getattr(glyf[name], 'xMin', 0)) for name in glyph_order}
    )
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    fb.setupNameTable(
        {
            'familyName': family,
            'styleName': style,
            'psName': f"{family.replace(' ', '')}-{style}",
        }
    )
    fb.setupOS2(
        sTypoAscender=800,
        usWinAscent=800,
        usWinDescent=200,
        sCapHeight=700,
    )
    fb.setupPost()
    path.parent.mkdir(parents=True, exist_ok=True)
    fb.save(str(path))
    return path
