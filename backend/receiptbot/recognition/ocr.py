from __future__ import annotations

import base64
import logging
import re
from abc import ABC, abstractmethod
from io import BytesIO

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from ..exceptions import ExtractionError, OcrError
from .fallback import first_result
from .llm import ChatModel

logger = logging.getLogger(__name__)

VISION_PROMPT = (
    "You read photographed shop receipts. Transcribe every printed line of the receipt "
    "exactly as it appears, one line per row, keeping prices and quantities. "
    "Return plain text only, no commentary."
)


def _clean_lines(text: str) -> str:
    normalised = text.replace("\r", "\n")
    normalised = re.sub(r"[ \t]+", " ", normalised)
    lines = [line.strip() for line in normalised.split("\n") if line.strip()]
    return "\n".join(lines)


def _preview(text: str) -> str:
    return text if len(text) <= 500 else f"{text[:500]}…"


class OcrEngine(ABC):
    name = "ocr"

    @abstractmethod
    def read(self, image_bytes: bytes) -> str:
        """Return the receipt text, or an empty string when nothing was read."""


class VisionOcr(OcrEngine):
    name = "vision"

    def __init__(self, chat_model: ChatModel, model: str) -> None:
        self.chat_model = chat_model
        self.model = model

    def read(self, image_bytes: bytes) -> str:
        if not self.chat_model.available:
            return ""
        encoded = base64.b64encode(image_bytes).decode("ascii")
        content = [
            {"type": "text", "text": "Transcribe this receipt."},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{encoded}"}},
        ]
        try:
            text = self.chat_model.complete(self.model, VISION_PROMPT, content, max_tokens=2000)
        except ExtractionError as exc:
            raise OcrError(str(exc)) from exc
        cleaned = _clean_lines(text)
        logger.info("Vision OCR extracted text: %s", _preview(cleaned))
        return cleaned


class TesseractOcr(OcrEngine):
    name = "tesseract"

    def __init__(self, lang: str = "eng") -> None:
        self.lang = lang

    def read(self, image_bytes: bytes) -> str:
        try:
            image = Image.open(BytesIO(image_bytes))
        except (UnidentifiedImageError, OSError) as exc:
            raise OcrError(f"Failed to open image for OCR: {exc}") from exc

        # Basic preprocessing to improve OCR results
        if max(image.width, image.height) < 1600:
            scale = 1600 / max(image.width, image.height)
            image = image.resize(
                (int(image.width * scale), int(image.height * scale)),
                Image.Resampling.LANCZOS,
            )

        image = image.convert("L")  # grayscale
        image = ImageOps.autocontrast(image)
        image = image.point(lambda x: 0 if x < 140 else 255, "1")

        try:
            text = pytesseract.image_to_string(image, lang=self.lang, config="--psm 6 --oem 3")
        except pytesseract.TesseractError as exc:
            raise OcrError(f"Tesseract failed: {exc}") from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise OcrError("Tesseract OCR is not installed in this environment.") from exc

        cleaned = _clean_lines(text)
        logger.info("OCR extracted text: %s", _preview(cleaned))
        return cleaned


class OcrPipeline:
    """Try each engine in order; the first non-empty transcription wins."""

    def __init__(self, engines: list[OcrEngine]) -> None:
        self.engines = engines

    def read(self, image_bytes: bytes) -> str:
        found = first_result(
            [(engine.name, lambda engine=engine: engine.read(image_bytes)) for engine in self.engines],
            label="ocr",
        )
        if found is None:
            raise OcrError("No OCR engine could read the image.")
        return found[1]
