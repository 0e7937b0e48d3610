import io
import httpx
import logging
from typing import List, Optional

from PIL import Image, ImageDraw, ImageFont

from .models import Story
from .settings import PLACEHOLDER_IMAGE_URL
from .utils import DATA_URL_PREFIX, from_data_url, strip_markdown

logger = logging.getLogger(__name__)

# A4 landscape at 150 dpi
DPI = 150
PAGE_WIDTH, PAGE_HEIGHT = 1754, 1240
MM = DPI / 25.4

NIGHT = (15, 23, 42)
GOLD = (199, 153, 0)
SLATE = (100, 116, 139)
BLANK = (241, 245, 249)
PAPER = (254, 253, 251)
SPINE = (230, 230, 230)
FOLIO = (200, 200, 200)
INK = (30, 41, 59)

_FONT_PATHS = {
    "regular": ["DejaVuSerif.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf", "times.ttf"],
    "bold": ["DejaVuSerif-Bold.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf", "timesbd.ttf"],
    "italic": ["DejaVuSerif-Italic.ttf", "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Italic.ttf", "timesi.ttf"],
}


def _font(kind: str, points: float):
    size = max(8, int(points * DPI / 72))
    for path in _FONT_PATHS[kind]:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default(size)


def wrap_text(text: str, font, max_width: int, draw) -> List[str]:
    """Greedy word wrap, keeping the author's paragraph breaks."""
    lines = []
    for paragraph in text.splitlines():
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        current_line = ""
        for word in words:
            test_line = current_line + (" " if current_line else "") + word
            bbox = draw.textbbox((0, 0), test_line, font=font)
            if bbox[2] - bbox[0] <= max_width or not current_line:
                current_line = test_line
            else:
                lines.append(current_line)
                current_line = word
        lines.append(current_line)
    return lines


def _centered(draw, y: float, text: str, font, fill):
    bbox = draw.textbbox((0, 0), text, font=font)
    draw.text(((PAGE_WIDTH - (bbox[2] - bbox[0])) / 2, y - (bbox[3] - bbox[1]) / 2), text, font=font, fill=fill)


def render_title_page(story: Story) -> Image.Image:
    page = Image.new("RGB", (PAGE_WIDTH, PAGE_HEIGHT), NIGHT)
    draw = ImageDraw.Draw(page)
    inset = int(15 * MM)
    draw.rectangle([inset, inset, PAGE_WIDTH - inset, PAGE_HEIGHT - inset], outline=GOLD, width=2)
    _centered(draw, PAGE_HEIGHT / 2 - 10 * MM, story.title.upper(), _font("bold", 54), (255, 255, 255))
    _centered(draw, PAGE_HEIGHT / 2 + 10 * MM, f"A {story.genre} Legend forged in Mythos", _font("italic", 24), SLATE)
    return page


def _cover(img: Image.Image, width: int, height: int) -> Image.Image:
    img = img.convert("RGB")
    scale = max(width / img.width, height / img.height)
    resized = img.resize((max(width, round(img.width * scale)), max(height, round(img.height * scale))), Image.LANCZOS)
    left = (resized.width - width) // 2
    top = (resized.height - height) // 2
    return resized.crop((left, top, left + width, top + height))


def render_story_page(story: Story, index: int, image_data: Optional[bytes]) -> Image.Image:
    page = Image.new("RGB", (PAGE_WIDTH, PAGE_HEIGHT), PAPER)
    draw = ImageDraw.Draw(page)
    split = PAGE_WIDTH // 2

    # Left half: illustration, or a blank fill when there is none
    draw.rectangle([0, 0, split, PAGE_HEIGHT], fill=BLANK)
    if image_data:
        try:
            with Image.open(io.BytesIO(image_data)) as img:
                page.paste(_cover(img, split, PAGE_HEIGHT), (0, 0))
        except Exception as e:
            logger.warning(f"Page {index + 1} image could not be drawn, leaving it blank: {e}")

    draw.line([split, 0, split, PAGE_HEIGHT], fill=SPINE, width=1)

    margin = int(25 * MM)
    left = split + margin
    draw.text((left, int(20 * MM) - 20), f"FOLIO {index + 1}", font=_font("bold", 10), fill=FOLIO)

    body = _font("regular", 18)
    line_height = int(18 * DPI / 72 * 1.6)
    y = int(50 * MM) - line_height
    for line in wrap_text(strip_markdown(story.pages[index].text), body, split - 2 * margin, draw):
        if y + line_height > PAGE_HEIGHT - margin:
            break
        draw.text((left, y), line, font=body, fill=INK)
        y += line_height

    indicator = f"{index + 1} / {len(story.pages)}"
    small = _font("regular", 12)
    bbox = draw.textbbox((0, 0), indicator, font=small)
    draw.text((PAGE_WIDTH - int(20 * MM) - (bbox[2] - bbox[0]), PAGE_HEIGHT - int(15 * MM) - (bbox[3] - bbox[1])),
              indicator, font=small, fill=SPINE)
    return page


def render_story_pdf(story: Story, images: List[Optional[bytes]]) -> bytes:
    """One title page, then one image | text spread per story page, in order."""
    if len(images) != len(story.pages):
        raise ValueError("need exactly one image slot per page")
    pages = [render_title_page(story)]
    pages.extend(render_story_page(story, i, data) for i, data in enumerate(images))
    out = io.BytesIO()
    pages[0].save(out, format="PDF", save_all=True, append_images=pages[1:], resolution=float(DPI),
                  title=story.title)
    return out.getvalue()


async def load_page_image(url: Optional[str], client: httpx.AsyncClient) -> Optional[bytes]:
    if not url or url == PLACEHOLDER_IMAGE_URL:
        return None
    try:
        if url.startswith(DATA_URL_PREFIX):
            return from_data_url(url)
        resp = await client.get(url)
        resp.raise_for_status()
        return resp.content
    except Exception as e:
        logger.warning(f"Could not load image for export: {e}")
        return None


async def export_story_pdf(story: Story, client: Optional[httpx.AsyncClient] = None) -> bytes:
    logger.info(f"Exporting story {story.id} ({len(story.pages)} pages) to PDF")
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30, follow_redirects=True)
    try:
        images = [await load_page_image(p.image_url, client) for p in story.pages]
    finally:
        if owns_client:
            await client.aclose()
    return render_story_pdf(story, images)
