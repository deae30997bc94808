"""
Barcode and printable label rendering with python-barcode and Pillow.

Barcodes are Code128 of the donated item id with the id printed underneath.
Labels are 4x2 inch PNGs: item type and category on top, the barcode and id
in the middle, donor name and donation date at the bottom.
"""
import io
import logging
from typing import Optional

import barcode
from barcode.writer import ImageWriter, SVGWriter
from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

FORMAT_PNG = 'png'
FORMAT_SVG = 'svg'
CONTENT_TYPES = {
    FORMAT_PNG: 'image/png',
    FORMAT_SVG: 'image/svg+xml',
}

# Printable resolution with padding around the bars
BARCODE_OPTIONS = {
    'module_width': 0.3,
    'module_height': 15.0,
    'quiet_zone': 10.0,
    'font_size': 10,
    'text_distance': 5.0,
    'background': 'white',
    'foreground': 'black',
}

LABEL_WIDTH = 400  # 4 inches at 100 DPI
LABEL_HEIGHT = 200  # 2 inches at 100 DPI
LABEL_MARGIN = 10
MAX_LINE_LENGTH = 30


def normalize_format(fmt: Optional[str]) -> str:
    """png or svg; anything else falls back to png"""
    fmt = (fmt or FORMAT_PNG).strip().lower()
    return fmt if fmt in CONTENT_TYPES else FORMAT_PNG


def render_barcode(value: str, fmt: str = FORMAT_PNG) -> bytes:
    """Code128 barcode of value, with the text printed below the bars"""
    writer = SVGWriter() if fmt == FORMAT_SVG else ImageWriter()
    code128 = barcode.get_barcode_class('code128')(value, writer=writer)
    buffer = io.BytesIO()
    code128.write(buffer, options=BARCODE_OPTIONS)
    return buffer.getvalue()


def _load_fonts():
    try:
        return (
            ImageFont.truetype('/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf', 14),
            ImageFont.truetype('/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf', 12),
        )
    except OSError:
        try:
            return ImageFont.truetype('arial.ttf', 14), ImageFont.truetype('arial.ttf', 12)
        except OSError:
            return ImageFont.load_default(), ImageFont.load_default()


def _shorten(text: str) -> str:
    return text if len(text) <= MAX_LINE_LENGTH else text[:MAX_LINE_LENGTH] + '...'


def _draw_centered(draw, y, text, font, width=LABEL_WIDTH):
    bbox = draw.textbbox((0, 0), text, font=font)
    draw.text(((width - (bbox[2] - bbox[0])) // 2, y), text, fill='black', font=font)


def render_label(barcode_value: str, title: str, footer: Optional[str] = None,
                 width: int = LABEL_WIDTH, height: int = LABEL_HEIGHT) -> bytes:
    """
    Printable label PNG for one donated item.

    Args:
        barcode_value: Text encoded in the barcode (the donated item id)
        title: First line, e.g. "Laptop - Electronics"
        footer: Last line, e.g. "Jane Doe 2024-03-01"
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        PNG bytes. When the barcode cannot be rendered the value is printed
        as text in its place.
    """
    img = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(img)
    font_medium, font_small = _load_fonts()

    title_y = 8
    barcode_y = title_y + 18
    available_height = height - 12 - barcode_y - 20

    _draw_centered(draw, title_y, _shorten(title), font_medium, width)

    try:
        writer = ImageWriter()
        code128 = barcode.get_barcode_class('code128')(barcode_value, writer=writer)
        barcode_img = code128.render({
            'write_text': False,
            'module_width': 0.3,
            'module_height': 20.0,
            'quiet_zone': 2.0,
            'background': 'white',
            'foreground': 'black',
        })

        bars_width, bars_height = barcode_img.size
        target_width = width - 2 * LABEL_MARGIN
        scale = target_width / bars_width
        scaled_height = int(bars_height * scale)
        if scaled_height > available_height:
            scale = available_height / bars_height
            scaled_height = available_height
            target_width = int(bars_width * scale)

        barcode_img = barcode_img.resize((target_width, scaled_height), Image.Resampling.BILINEAR)
        img.paste(barcode_img, ((width - target_width) // 2, barcode_y))

        text_y = barcode_y + scaled_height + 5
        _draw_centered(draw, text_y, barcode_value, font_small, width)
        footer_y = text_y + 16
    except Exception as e:
        logger.error(f"Barcode rendering failed for label '{barcode_value}': {e}", exc_info=True)
        _draw_centered(draw, barcode_y, f'BARCODE: {barcode_value}', font_small, width)
        footer_y = barcode_y + 20

    if footer:
        _draw_centered(draw, footer_y, _shorten(footer), font_medium, width)

    buffer = io.BytesIO()
    img.save(buffer, format='PNG', optimize=False, compress_level=1)
    img.close()
    return buffer.getvalue()
