"""
Built-in layouts for the known template groups.

All presets are expressed in millimetres and use Arial at regular weight
for the identifier text.
"""

from typing import Dict, Tuple

from .geometry import GeometrySpec, PageSelector, QrPlacement, TextPlacement
from .templates import DEFAULT_GROUP, TemplateInfo

__all__ = ['DEFAULT_GEOMETRY', 'PRESETS', 'preset_geometry', 'preset_for']


def _layout(qr, first, second, qr_pages=(1,), first_pages=(1,)):
    qr_x, qr_y, qr_size = qr
    return GeometrySpec(
        qr_codes=(
            QrPlacement(
                x=qr_x, y=qr_y, size=qr_size, pages=PageSelector.of(*qr_pages)
            ),
        ),
        labels=(
            TextPlacement(
                x=first[0],
                y=first[1],
                size=first[2],
                pages=PageSelector.of(*first_pages),
            ),
            TextPlacement(x=second[0], y=second[1], size=second[2]),
        ),
    )


DEFAULT_GEOMETRY = _layout((18, 18, 6.3), (27, 28, 12), (35, 229, 10))
"""
Layout used for end customer templates, and for any template whose group
is not recognised.
"""

# keyed by (group, trade show)
PRESETS: Dict[Tuple[str, bool], GeometrySpec] = {
    ('Apo', False): _layout((26, 21, 7), (35, 32, 14), (46, 240, 12)),
    ('Apo', True): _layout(
        (28, 25, 8),
        (42, 35, 14),
        (53, 247, 12),
        qr_pages=(1, 2),
        first_pages=(1, 2),
    ),
    ('Endkunde', False): DEFAULT_GEOMETRY,
    ('Endkunde', True): _layout((21, 28, 8.5), (32, 42, 12), (42, 254, 10)),
}


def preset_geometry(group: str, trade_show: bool = False) -> GeometrySpec:
    try:
        return PRESETS[(group, trade_show)]
    except KeyError:
        return PRESETS.get((DEFAULT_GROUP, trade_show), DEFAULT_GEOMETRY)


def preset_for(info: TemplateInfo) -> GeometrySpec:
    return preset_geometry(info.group, info.trade_show)
