"""
QR code rasterisation and embedding.

QR codes are embedded as 1-bit greyscale image XObjects with one image
pixel per QR module. Viewers scale the image to the placement size
without interpolation, so the result stays sharp at any size.
"""

import logging
from dataclasses import dataclass

import qrcode
from PIL import Image
from pyhanko.pdf_utils import generic
from pyhanko.pdf_utils.generic import pdf_name
from pyhanko.pdf_utils.writer import BasePdfFileWriter

__all__ = ['QrRaster', 'qr_raster', 'register_qr_image', 'QR_RESOURCE_NAME']

logger = logging.getLogger(__name__)

QR_RESOURCE_NAME = '/QR'


@dataclass(frozen=True)
class QrRaster:
    """
    Rasterised QR code.
    """

    size: int
    """
    Number of modules along each side.
    """

    data: bytes
    """
    Packed 1-bit pixel rows, top row first, each row padded to a whole
    byte. Set bits are light, cleared bits are dark.
    """

    def as_image(self) -> Image.Image:
        return Image.frombytes('1', (self.size, self.size), self.data)


def qr_raster(url: str) -> QrRaster:
    """
    Encode a URL as a QR code, using error correction level M and no quiet
    zone.

    :param url:
        The data to encode.
    :return:
        A :class:`QrRaster`.
    """
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=1,
        border=0,
    )
    qr.add_data(url)
    qr.make(fit=True)
    matrix = qr.get_matrix()
    size = len(matrix)
    img = Image.new('1', (size, size), 1)
    for y, row in enumerate(matrix):
        for x, dark in enumerate(row):
            if dark:
                img.putpixel((x, y), 0)
    logger.debug(f"QR code for {url!r} has {size}x{size} modules")
    return QrRaster(size=size, data=img.tobytes())


def register_qr_image(
    writer: BasePdfFileWriter, raster: QrRaster
) -> generic.IndirectObject:
    """
    Add a QR code to a document as an image XObject.

    :param writer:
        The writer of the output document.
    :param raster:
        The rasterised QR code.
    :return:
        A reference to the image XObject.
    """
    dict_data = {
        pdf_name('/Type'): pdf_name('/XObject'),
        pdf_name('/Subtype'): pdf_name('/Image'),
        pdf_name('/Width'): generic.NumberObject(raster.size),
        pdf_name('/Height'): generic.NumberObject(raster.size),
        pdf_name('/ColorSpace'): pdf_name('/DeviceGray'),
        pdf_name('/BitsPerComponent'): generic.NumberObject(1),
        pdf_name('/Interpolate'): generic.BooleanObject(False),
    }
    stream = generic.StreamObject(dict_data, stream_data=raster.data)
    stream.compress()
    return writer.add_object(stream)
