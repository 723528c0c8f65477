"""Recognition chain: QR decode, receipt fetch, OCR fallback and AI extraction."""

from __future__ import annotations

import logging

from ..config import Settings
from ..domain.categories import CategoryMatcher
from ..domain.entities import Payload, RecognitionResult
from ..exceptions import ExtractionError, FetchError, RecognitionError
from .extractor import ReceiptExtractor
from .fallback import first_result
from .fetcher import ReceiptFetcher
from .llm import ChatModel
from .ocr import OcrPipeline, TesseractOcr, VisionOcr
from .qr import QrDecoder

logger = logging.getLogger(__name__)


class RecognitionChain:
    """Turn a job payload into recognised items.

    Blocking; callers on the event loop run it through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        qr: QrDecoder,
        fetcher: ReceiptFetcher,
        ocr: OcrPipeline,
        extractor: ReceiptExtractor,
    ) -> None:
        self.qr = qr
        self.fetcher = fetcher
        self.ocr = ocr
        self.extractor = extractor

    def recognize(
        self,
        payload: Payload,
        image: bytes | None,
        categories: list[str],
        default_currency: str,
    ) -> RecognitionResult:
        text = self._receipt_text(payload, image)

        try:
            result = self.extractor.extract(text, categories)
        except ExtractionError as exc:
            raise RecognitionError("Could not recognise the items on this receipt.", exc) from exc

        if not result.items:
            raise RecognitionError("No items were found on this receipt.")
        result.currency = (result.currency or default_currency).upper()
        logger.info(
            "Recognised %s items (%s %s) via %s", len(result.items), result.total, result.currency, result.source
        )
        return result

    def _receipt_text(self, payload: Payload, image: bytes | None) -> str:
        if not payload.is_photo:
            try:
                return self.fetcher.resolve(payload.value)
            except FetchError as exc:
                raise RecognitionError("Could not load the receipt from this link.", exc) from exc

        if not image:
            raise RecognitionError("The photo could not be downloaded.")

        found = first_result(
            [
                ("qr", lambda: self._text_from_qr(image)),
                ("ocr", lambda: self.ocr.read(image)),
            ],
            label="recognition",
        )
        if found is None:
            raise RecognitionError("No QR code or readable text was found on this photo.")
        return found[1]

    def _text_from_qr(self, image: bytes) -> str | None:
        decoded = self.qr.decode(image)
        if not decoded:
            return None
        logger.info("QR payload decoded: %s", decoded[:200])
        return self.fetcher.resolve(decoded)


def build_recognition_chain(
    settings: Settings,
    chat_model: ChatModel,
    matcher: CategoryMatcher | None = None,
) -> RecognitionChain:
    extractor = ReceiptExtractor(
        chat_model,
        models=[settings.ai_model, settings.ai_fallback_model],
        language=settings.display_language,
        default_category=settings.default_category,
        max_attempts=settings.extraction_max_attempts,
        backoff_seconds=settings.extraction_backoff_seconds,
        matcher=matcher,
    )
    return RecognitionChain(
        qr=QrDecoder(settings.qr_external_api_url if settings.qr_external_enabled else None),
        fetcher=ReceiptFetcher(
            timeout_ms=settings.page_timeout_ms,
            settle_ms=settings.page_settle_ms,
            min_content_chars=settings.min_page_content_chars,
        ),
        ocr=OcrPipeline([VisionOcr(chat_model, settings.vision_model), TesseractOcr(settings.tesseract_lang)]),
        extractor=extractor,
    )
