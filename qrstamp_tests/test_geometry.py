import pytest

from qrstamp.config.errors import ConfigurationError
from qrstamp.geometry import (
    FontStyle,
    GeometrySpec,
    PageSelector,
    QrPlacement,
    TextPlacement,
    Unit,
    mm_to_pt,
)


def test_mm_to_pt():
    assert mm_to_pt(10) == pytest.approx(28.34646)
    assert Unit.MM.to_points(1) == pytest.approx(2.834646)
    assert Unit.PT.to_points(12.5) == 12.5


def test_page_selector_normalises():
    sel = PageSelector.of(3, 1, 3)
    assert sel.pages == (1, 3)
    assert sel.includes(1)
    assert not sel.includes(2)
    assert sel.with_all_pages().includes(2)
    assert sel.with_pages(2).pages == (2,)


@pytest.mark.parametrize(
    'kwargs',
    [
        dict(),
        dict(pages=(0,)),
        dict(pages=(-2, 1)),
        dict(pages=(1.5,)),
        dict(pages=(True,)),
        dict(pages=(1,), all_pages=True),
    ],
)
def test_page_selector_invalid(kwargs):
    with pytest.raises(ConfigurationError):
        PageSelector(**kwargs)


def test_page_selector_all():
    sel = PageSelector.all()
    assert sel.all_pages
    assert sel.pages == ()
    assert all(sel.includes(n) for n in (1, 2, 100))


@pytest.mark.parametrize(
    'value,expected',
    [
        ('all', PageSelector.all()),
        ('ALL ', PageSelector.all()),
        (2, PageSelector.of(2)),
        ([2, 1], PageSelector.of(1, 2)),
    ],
)
def test_page_selector_from_config(value, expected):
    assert PageSelector.from_config(value) == expected


@pytest.mark.parametrize('value', ['first', 0, [], {'page': 1}, None])
def test_page_selector_from_config_invalid(value):
    with pytest.raises(ConfigurationError):
        PageSelector.from_config(value)


@pytest.mark.parametrize(
    'value,expected',
    [
        ('bold', FontStyle.BOLD),
        ('Bold Italic', FontStyle.BOLD_ITALIC),
        ('bold-italic', FontStyle.BOLD_ITALIC),
        ('Regular', FontStyle.NORMAL),
        ('normal', FontStyle.NORMAL),
        ('LIGHT', FontStyle.LIGHT),
    ],
)
def test_font_style_from_config(value, expected):
    assert FontStyle.from_config(value) is expected


def test_font_style_from_config_invalid():
    with pytest.raises(ConfigurationError, match='font style'):
        FontStyle.from_config('fancy')
    with pytest.raises(ConfigurationError):
        FontStyle.from_config(700)


def test_font_style_weights():
    assert FontStyle.BLACK.is_bold
    assert not FontStyle.LIGHT.is_bold
    assert FontStyle.BOLD_ITALIC.is_italic
    assert not FontStyle.HEAVY.is_italic


def test_placement_defaults():
    qr = QrPlacement(x=10, y=20, size=15)
    assert qr.pages == PageSelector.of(1)
    label = TextPlacement(x=10, y=20, size=12)
    assert label.font_family == 'Arial'
    assert label.font_style is FontStyle.NORMAL


@pytest.mark.parametrize('size', [0, -1])
def test_placement_size_must_be_positive(size):
    with pytest.raises(ConfigurationError):
        QrPlacement(x=0, y=0, size=size)
    with pytest.raises(ConfigurationError):
        TextPlacement(x=0, y=0, size=size)


def test_geometry_from_config():
    spec = GeometrySpec.from_config(
        {
            'unit': 'pt',
            'qr-codes': [{'x': 10, 'y': 20, 'size': 50, 'pages': 'all'}],
            'labels': [
                {'x': 30, 'y': 40, 'size': 12},
                {
                    'x': 30,
                    'y': 700,
                    'size': 9.5,
                    'pages': [2],
                    'font-family': 'Times New Roman',
                    'font-style': 'bold',
                },
            ],
        }
    )
    assert spec.unit is Unit.PT
    (qr,) = spec.qr_codes
    assert qr == QrPlacement(x=10, y=20, size=50, pages=PageSelector.all())
    first, second = spec.labels
    assert first.pages == PageSelector.of(1)
    assert second.font_family == 'Times New Roman'
    assert second.font_style is FontStyle.BOLD
    assert second.size == 9.5


def test_geometry_defaults_to_millimetres():
    spec = GeometrySpec.from_config({'labels': [{'x': 1, 'y': 2, 'size': 8}]})
    assert spec.unit is Unit.MM
    assert spec.qr_codes == ()


@pytest.mark.parametrize(
    'config,msg',
    [
        ({'qr-codes': [{'x': 1, 'y': 1, 'size': 0}]}, "'qr-codes' entry 0"),
        ({'qr-codes': [{'x': 1, 'y': 1}]}, 'size'),
        ({'labels': [{'x': 'a', 'y': 1, 'size': 1}]}, "'x'"),
        ({'labels': [{'x': 1, 'y': 1, 'size': 1, 'pages': 0}]}, '1-based'),
        ({'labels': {'x': 1}}, 'must be a list'),
        ({'unit': 'inch'}, 'unit'),
        ({'colour': 'red'}, 'colour'),
    ],
)
def test_geometry_from_config_errors(config, msg):
    with pytest.raises(ConfigurationError, match=msg):
        GeometrySpec.from_config(config)


def test_geometry_page_filtering():
    spec = GeometrySpec.build(
        qr_codes=[QrPlacement(x=1, y=1, size=5, pages=PageSelector.of(2))],
        labels=[
            TextPlacement(x=1, y=1, size=10),
            TextPlacement(x=1, y=1, size=10, pages=PageSelector.all()),
        ],
        unit='pt',
    )
    assert spec.qr_codes_for_page(1) == []
    assert len(spec.qr_codes_for_page(2)) == 1
    assert len(spec.labels_for_page(1)) == 2
    assert len(spec.labels_for_page(2)) == 1
    assert spec.labels_for_page(3) == [spec.labels[1]]
    assert spec.to_points(10) == 10


def test_font_requests_are_distinct():
    spec = GeometrySpec.build(
        labels=[
            TextPlacement(x=1, y=1, size=10),
            TextPlacement(x=2, y=1, size=12),
            TextPlacement(
                x=3,
                y=1,
                size=10,
                font_family='Times',
                font_style=FontStyle.BOLD,
            ),
        ]
    )
    assert spec.font_requests() == [
        ('Arial', FontStyle.NORMAL),
        ('Times', FontStyle.BOLD),
    ]
