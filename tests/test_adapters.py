"""Tests for the QR, page fetch and OCR adapters with their external services mocked."""

import base64
from io import BytesIO
from unittest.mock import Mock, patch

import cv2
import httpx
import pytest
from PIL import Image
from playwright.sync_api import Error as PlaywrightError

from receiptbot.exceptions import ExtractionError, FetchError, OcrError, QrDecodeError
from receiptbot.recognition.fetcher import ReceiptFetcher, extract_urls, html_to_text, is_url
from receiptbot.recognition.ocr import OcrPipeline, TesseractOcr, VisionOcr
from receiptbot.recognition.qr import QrDecoder


def _png(color=255, size=(200, 300)):
    buffer = BytesIO()
    Image.new("RGB", size, (color, color, color)).save(buffer, format="PNG")
    return buffer.getvalue()


def _qr_png(text):
    code = cv2.QRCodeEncoder.create().encode(text)
    code = cv2.resize(code, None, fx=8, fy=8, interpolation=cv2.INTER_NEAREST)
    code = cv2.copyMakeBorder(code, 40, 40, 40, 40, cv2.BORDER_CONSTANT, value=255)
    ok, encoded = cv2.imencode(".png", code)
    assert ok
    return encoded.tobytes()


class TestFetcherHelpers:
    def test_html_to_text_strips_markup(self):
        markup = (
            "<html><head><style>p {color: red}</style><script>var x = 1;</script></head>"
            "<body><p>Bread&nbsp;&amp; butter</p>\n\n<b>3.00</b></body></html>"
        )
        assert html_to_text(markup) == "Bread & butter 3.00"

    def test_url_detection(self):
        assert is_url("https://example.com/receipt?id=1")
        assert not is_url("Bread 3.00")
        assert extract_urls("see https://a.example/r/1, and http://b.example.") == [
            "https://a.example/r/1",
            "http://b.example",
        ]


class TestReceiptFetcher:
    def test_raw_text_is_returned_as_is(self):
        assert ReceiptFetcher().resolve("  TOTAL 12.00  ") == "TOTAL 12.00"

    def test_rendered_page_is_converted_to_text(self):
        fetcher = ReceiptFetcher(min_content_chars=10)
        with patch.object(ReceiptFetcher, "_render", return_value="<div>Bread 3.00 Milk 1.20</div>"):
            assert fetcher.resolve("https://example.com/r") == "Bread 3.00 Milk 1.20"

    def test_short_page_is_an_error(self):
        fetcher = ReceiptFetcher(min_content_chars=100)
        with patch.object(ReceiptFetcher, "_render", return_value="<p>Loading...</p>"):
            with pytest.raises(FetchError):
                fetcher.resolve("https://example.com/r")

    def test_browser_errors_become_fetch_errors(self):
        fetcher = ReceiptFetcher()
        with patch.object(ReceiptFetcher, "_render", side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED")):
            with pytest.raises(FetchError):
                fetcher.fetch("https://nowhere.invalid")


class TestQrDecoder:
    def test_unreadable_bytes(self):
        with pytest.raises(QrDecodeError):
            QrDecoder().decode(b"not an image")

    def test_blank_image_has_no_code(self):
        assert QrDecoder().decode(_png()) is None

    def test_local_decode_skips_remote(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=[])

        client = httpx.Client(transport=httpx.MockTransport(handler))
        decoder = QrDecoder("https://qr.example/read", http_client=client)

        assert decoder.decode(_qr_png("https://example.com/r/1")) == "https://example.com/r/1"
        assert calls == []

    def test_remote_decoder_is_last_resort(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[{"type": "qrcode", "symbol": [{"seq": 0, "data": "https://example.com/r/9", "error": None}]}],
            )

        client = httpx.Client(transport=httpx.MockTransport(handler))
        decoder = QrDecoder("https://qr.example/read", http_client=client)

        assert decoder.decode(_png()) == "https://example.com/r/9"

    def test_remote_decoder_error_payload(self):
        def handler(request):
            return httpx.Response(200, json=[{"type": "qrcode", "symbol": [{"seq": 0, "data": None, "error": "no code"}]}])

        client = httpx.Client(transport=httpx.MockTransport(handler))
        assert QrDecoder("https://qr.example/read", http_client=client).decode(_png()) is None


class TestOcr:
    def test_pipeline_uses_first_engine_with_text(self):
        first = Mock(**{"read.return_value": ""})
        first.name = "vision"
        second = Mock(**{"read.return_value": "BREAD 3.00"})
        second.name = "tesseract"

        assert OcrPipeline([first, second]).read(b"img") == "BREAD 3.00"

    def test_pipeline_raises_when_nothing_reads(self):
        engine = Mock(**{"read.side_effect": OcrError("broken")})
        engine.name = "tesseract"

        with pytest.raises(OcrError):
            OcrPipeline([engine]).read(b"img")

    def test_tesseract_output_is_cleaned(self):
        with patch("receiptbot.recognition.ocr.pytesseract.image_to_string", return_value="BREAD   3.00\r\n\n  MILK\t1.20 \n"):
            assert TesseractOcr().read(_png()) == "BREAD 3.00\nMILK 1.20"

    def test_tesseract_rejects_non_images(self):
        with pytest.raises(OcrError):
            TesseractOcr().read(b"not an image")


class TestVisionOcr:
    def _chat_model(self, **kwargs):
        chat_model = Mock(available=True)
        chat_model.complete.configure_mock(**kwargs)
        return chat_model

    def test_image_is_sent_as_data_url(self):
        chat_model = self._chat_model(return_value="BREAD   3.00\n\nMILK 1.20")

        assert VisionOcr(chat_model, "vision-model").read(b"jpeg-bytes") == "BREAD 3.00\nMILK 1.20"

        model, _system, content = chat_model.complete.call_args.args
        assert model == "vision-model"
        expected = "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode("ascii")
        assert content[1]["image_url"]["url"] == expected

    def test_missing_key_reads_nothing(self):
        chat_model = self._chat_model()
        chat_model.available = False

        assert VisionOcr(chat_model, "vision-model").read(b"jpeg-bytes") == ""
        chat_model.complete.assert_not_called()

    def test_model_errors_become_ocr_errors(self):
        chat_model = self._chat_model(side_effect=ExtractionError("rate limited"))

        with pytest.raises(OcrError):
            VisionOcr(chat_model, "vision-model").read(b"jpeg-bytes")
