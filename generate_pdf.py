import logging

from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from PIL import Image, ImageOps, UnidentifiedImageError
from io import BytesIO
from typing import List, Optional, Tuple

PAGE_SIZE = landscape(A4)
MARGIN = 42  # ~15mm
BODY_FONT = "Helvetica"
TITLE_FONT = "Helvetica-Bold"


def create_storybook_pdf(title: str, reading_level_name: str, pages: List[Tuple[str, Optional[bytes]]]) -> bytes:
    """Lay out a landscape storybook and return the PDF bytes.

    ``pages`` holds (text, image bytes or None) in reading order. The first
    sheet is a title page; each story page puts the picture on the left half
    and the text on the right half.
    """
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=PAGE_SIZE)
    c.setTitle(title)
    page_w, page_h = PAGE_SIZE

    _draw_title_page(c, title, reading_level_name, page_w, page_h)
    c.showPage()

    half_w = (page_w - MARGIN * 3) / 2
    image_h = page_h - MARGIN * 2

    for number, (text, image_bytes) in enumerate(pages, start=1):
        reader = _image_reader(image_bytes, (int(half_w), int(image_h)))
        if reader is not None:
            c.drawImage(reader, MARGIN, MARGIN, width=half_w, height=image_h, mask="auto")

        text_x = MARGIN * 2 + half_w
        _draw_wrapped_text(c, text, text_x, page_h - MARGIN - 24, half_w, font_size=16, line_height=22)

        c.setFont(BODY_FONT, 10)
        c.drawRightString(page_w - MARGIN, MARGIN / 2, str(number))
        c.showPage()

    c.save()
    return buf.getvalue()


def _draw_title_page(c, title, reading_level_name, page_w, page_h):
    lines = _wrap(title, TITLE_FONT, 32, page_w - MARGIN * 2)
    y = page_h / 2 + (len(lines) * 40) / 2
    c.setFont(TITLE_FONT, 32)
    for line in lines:
        c.drawCentredString(page_w / 2, y, line)
        y -= 40
    c.setFont(BODY_FONT, 14)
    c.drawCentredString(page_w / 2, y - 10, f"Reading Level: {reading_level_name}")


def _image_reader(image_bytes: Optional[bytes], box: Tuple[int, int]) -> Optional[ImageReader]:
    if not image_bytes:
        return None
    try:
        pil = Image.open(BytesIO(image_bytes)).convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        logging.warning(f"[pdf] Skipping unreadable page image: {e}")
        return None
    pil = ImageOps.fit(pil, box, method=Image.Resampling.LANCZOS)
    return ImageReader(pil)


def _wrap(text, font, size, max_width):
    lines = []
    for paragraph in text.splitlines() or [""]:
        current = ""
        for w in paragraph.split():
            test = (current + " " + w).strip()
            if pdfmetrics.stringWidth(test, font, size) <= max_width:
                current = test
            else:
                if current:
                    lines.append(current)
                current = w
        lines.append(current)
    return lines


def _fit_text(text, max_width, max_height, font_size=16, line_height=22, min_font_size=8):
    """Shrink the font until the wrapped text fits the box; clip what still overflows."""
    ratio = line_height / font_size
    size = font_size
    while True:
        lh = size * ratio
        lines = _wrap(text, BODY_FONT, size, max_width)
        if len(lines) * lh <= max_height or size <= min_font_size:
            break
        size -= 1
    max_lines = max(int(max_height // lh), 1)
    return size, lh, lines[:max_lines]


def _draw_wrapped_text(c, text, x, top_y, max_width, bottom_y=MARGIN, font_size=16, line_height=18):
    size, lh, lines = _fit_text(text, max_width, top_y - bottom_y, font_size, line_height)
    c.setFont(BODY_FONT, size)
    y = top_y
    for line in lines:
        c.drawString(x, y, line)
        y -= lh
