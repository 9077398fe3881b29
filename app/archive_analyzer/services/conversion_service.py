"""
Document to image conversion service.

Normalizes every supported input format into a single PNG (or the original
raster image) so the analysis step has one fixed input contract:

- PDF: first page rasterized with pdf2image (poppler)
- DOCX: plain text drawn onto a fixed-size canvas
- DOC (legacy binary Word): placeholder image naming the file
- JPEG/PNG/GIF/BMP: passed through unchanged
"""

import base64
import io
import logging

from PIL import Image, ImageDraw, ImageFont

from ..models import ImagePayload, RetrievedFile
from .exceptions import ConversionError

logger = logging.getLogger(__name__)


PDF_MEDIA_TYPE = "application/pdf"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MEDIA_TYPE = "application/msword"
IMAGE_MEDIA_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/bmp"}
)

SUPPORTED_MEDIA_TYPES = frozenset(
    {PDF_MEDIA_TYPE, DOCX_MEDIA_TYPE, DOC_MEDIA_TYPE} | IMAGE_MEDIA_TYPES
)

# Upper bound for rasterized pages (A4 at 300 DPI)
MAX_PAGE_SIZE = (2480, 3508)

# Text canvas layout for word-processing documents
TEXT_CANVAS_SIZE = (800, 1000)
TEXT_FONT_SIZE = 16
TEXT_MARGIN = 20
TEXT_LINE_HEIGHT = 20
TEXT_BOTTOM_MARGIN = 50

PLACEHOLDER_SIZE = (800, 600)
PLACEHOLDER_NAME_LIMIT = 40


def _load_font(size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    return ImageFont.load_default(size=size)


def _encode_png(image: Image.Image) -> str:
    """Encode a PIL image as base64 PNG."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


def normalize_media_type(media_type: str) -> str:
    """Lower-case a MIME type and drop parameters such as charset."""
    return media_type.split(";", 1)[0].strip().lower()


def wrap_text(
    text: str,
    draw: ImageDraw.ImageDraw,
    font: ImageFont.ImageFont | ImageFont.FreeTypeFont,
    max_width: float,
) -> list[str]:
    """
    Greedy word wrap, keeping paragraph breaks.

    Args:
        text: Text to lay out.
        draw: Drawing context used to measure text.
        font: Font the text will be drawn with.
        max_width: Maximum line width in pixels.

    Returns:
        Lines that fit within ``max_width`` (a single overlong word is kept
        on its own line).
    """
    lines: list[str] = []
    for paragraph in text.splitlines():
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}" if current else word
            if current and draw.textlength(candidate, font=font) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


class ConversionService:
    """
    Dispatches a retrieved file to the converter for its format family.

    Uses pdf2image (backed by poppler) for PDFs, python-docx for DOCX text
    and Pillow for drawing.
    """

    def __init__(self, dpi: int = 300, max_page_size: tuple[int, int] = MAX_PAGE_SIZE):
        """
        Initialize the conversion service.

        Args:
            dpi: Resolution for PDF rasterization.
            max_page_size: Bounding box (width, height) for rasterized pages.
        """
        self.dpi = dpi
        self.max_page_size = max_page_size

    def convert(self, file: RetrievedFile) -> ImagePayload:
        """
        Convert a retrieved file into a single image.

        Args:
            file: The file to convert.

        Returns:
            The normalized image payload.

        Raises:
            ConversionError: If the media type is unsupported, the file is
                empty, or the conversion itself fails.
        """
        media_type = normalize_media_type(file.media_type)

        if media_type not in SUPPORTED_MEDIA_TYPES:
            raise ConversionError(f"Unsupported file type: {file.media_type}")

        if not file.data:
            raise ConversionError(f"File data is required for conversion: {file.name}")

        logger.info("Converting %s file to image: %s", media_type, file.name)

        if media_type == PDF_MEDIA_TYPE:
            return self.convert_pdf(file.data)
        if media_type == DOCX_MEDIA_TYPE:
            return self.convert_docx(file.data)
        if media_type == DOC_MEDIA_TYPE:
            return self.render_placeholder(file.name, "Unsupported legacy format")
        return self.passthrough_image(file.data, media_type)

    # =========================================================================
    # PDF
    # =========================================================================

    def convert_pdf(self, pdf_bytes: bytes) -> ImagePayload:
        """
        Rasterize the first page of a PDF to PNG.

        Raises:
            ConversionError: If the PDF is invalid or poppler is unavailable.
        """
        try:
            # Import here to provide clear error if poppler bindings are missing
            from pdf2image import convert_from_bytes
            from pdf2image.exceptions import (
                PDFInfoNotInstalledError,
                PDFPageCountError,
                PDFSyntaxError,
            )
        except ImportError as e:
            logger.error("pdf2image not installed: %s", e)
            raise ConversionError(
                "pdf2image library not installed. Run: pip install pdf2image"
            ) from e

        # Validate PDF magic bytes
        if not pdf_bytes[:4] == b"%PDF":
            raise ConversionError("Invalid PDF file: does not start with PDF header")

        try:
            logger.info("Converting PDF page 1 to image (dpi=%d)", self.dpi)
            images = convert_from_bytes(
                pdf_bytes,
                dpi=self.dpi,
                fmt="png",
                first_page=1,
                last_page=1,
            )

        except PDFInfoNotInstalledError as e:
            logger.error("Poppler not installed: %s", e)
            raise ConversionError(
                "Poppler not installed. Install poppler-utils: "
                "brew install poppler (macOS) or apt-get install poppler-utils (Linux)"
            ) from e

        except PDFPageCountError as e:
            logger.error("Could not get PDF page count: %s", e)
            raise ConversionError(f"Could not determine PDF page count: {e}") from e

        except PDFSyntaxError as e:
            logger.error("PDF syntax error: %s", e)
            raise ConversionError(f"Invalid or corrupted PDF file: {e}") from e

        except Exception as e:
            logger.exception("Unexpected error during PDF conversion")
            raise ConversionError(f"PDF conversion failed: {e}") from e

        if not images:
            raise ConversionError("No pages found in PDF")

        page = images[0]
        page.thumbnail(self.max_page_size, Image.Resampling.LANCZOS)
        return ImagePayload(mime_type="image/png", data=_encode_png(page))

    # =========================================================================
    # Word documents
    # =========================================================================

    def extract_docx_text(self, docx_bytes: bytes) -> str:
        """
        Extract plain text from a DOCX package (paragraphs, then tables).

        Raises:
            ConversionError: If the package cannot be read.
        """
        try:
            import docx
        except ImportError as e:
            raise ConversionError(
                "python-docx package required for DOCX conversion: pip install python-docx"
            ) from e

        try:
            document = docx.Document(io.BytesIO(docx_bytes))
        except Exception as e:
            logger.error("Could not open DOCX package: %s", e)
            raise ConversionError(f"Invalid or corrupted DOCX file: {e}") from e

        parts = [para.text for para in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.append("\t".join(cell.text.strip() for cell in row.cells))

        return "\n".join(parts)

    def convert_docx(self, docx_bytes: bytes) -> ImagePayload:
        """Render a DOCX file's text as an image."""
        text = self.extract_docx_text(docx_bytes)
        if not text.strip():
            raise ConversionError("No text content found in document")
        return self.render_text(text)

    def render_text(self, text: str) -> ImagePayload:
        """
        Draw word-wrapped text on a white canvas.

        Lines that do not fit above the bottom margin are dropped; this is
        an approximation of the page, not a faithful render.
        """
        width, height = TEXT_CANVAS_SIZE
        image = Image.new("RGB", TEXT_CANVAS_SIZE, color="white")
        draw = ImageDraw.Draw(image)
        font = _load_font(TEXT_FONT_SIZE)

        lines = wrap_text(text, draw, font, width - 2 * TEXT_MARGIN)
        max_lines = (height - TEXT_BOTTOM_MARGIN) // TEXT_LINE_HEIGHT
        if len(lines) > max_lines:
            logger.debug("Text canvas truncated: %d of %d lines drawn", max_lines, len(lines))

        for index, line in enumerate(lines[:max_lines]):
            draw.text(
                (TEXT_MARGIN, TEXT_MARGIN + index * TEXT_LINE_HEIGHT),
                line,
                fill="black",
                font=font,
            )

        return ImagePayload(mime_type="image/png", data=_encode_png(image))

    def render_placeholder(self, filename: str, reason: str) -> ImagePayload:
        """
        Build a placeholder image for formats that cannot be rendered.

        The output depends only on ``filename`` and ``reason``.
        """
        logger.info("Creating placeholder image for %s (%s)", filename, reason)

        width, height = PLACEHOLDER_SIZE
        image = Image.new("RGB", PLACEHOLDER_SIZE, color="#f8f9fa")
        draw = ImageDraw.Draw(image)
        draw.rectangle((10, 10, width - 11, height - 11), outline="#dee2e6", width=2)

        # Document glyph
        left, top = width // 2 - 30, 70
        draw.polygon(
            [(left, top), (left + 42, top), (left + 60, top + 18), (left + 60, top + 80), (left, top + 80)],
            outline="#6c757d",
            width=3,
        )

        if len(filename) > PLACEHOLDER_NAME_LIMIT:
            filename = filename[: PLACEHOLDER_NAME_LIMIT - 3] + "..."

        lines = [
            (filename, 24, "#212529", 200),
            (reason, 18, "#6c757d", 260),
            ("This file format cannot be previewed as an image.", 16, "#6c757d", 310),
            ("You can still analyze the document for text content.", 16, "#6c757d", 340),
        ]
        for text, size, color, y in lines:
            font = _load_font(size)
            x = (width - draw.textlength(text, font=font)) / 2
            draw.text((x, y), text, fill=color, font=font)

        return ImagePayload(mime_type="image/png", data=_encode_png(image))

    # =========================================================================
    # Raster images
    # =========================================================================

    def passthrough_image(self, image_bytes: bytes, media_type: str) -> ImagePayload:
        """Wrap raster image bytes unchanged, keeping their media type."""
        return ImagePayload(
            mime_type=media_type,
            data=base64.b64encode(image_bytes).decode("utf-8"),
        )
