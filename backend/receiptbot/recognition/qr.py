"""QR code decoding for receipt photos."""

from __future__ import annotations

import logging
from io import BytesIO
from typing import Callable

import cv2
import httpx
import numpy as np
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from ..exceptions import QrDecodeError
from .fallback import first_result

logger = logging.getLogger(__name__)


def _resize(image: Image.Image, width: int) -> Image.Image:
    if image.width <= 0:
        return image
    height = max(1, round(image.height * width / image.width))
    return image.resize((width, height), Image.Resampling.LANCZOS)


def _sharpen_normalise(image: Image.Image) -> Image.Image:
    return ImageOps.autocontrast(image.convert("RGB").filter(ImageFilter.SHARPEN))


def _extreme_contrast(image: Image.Image) -> Image.Image:
    grey = ImageOps.autocontrast(_resize(image, 800).convert("L"))
    return grey.point(lambda value: max(0, min(255, int(value * 1.5 - 64))))


# Tried in order; the untouched image comes last.
VARIANTS: list[tuple[str, Callable[[Image.Image], Image.Image]]] = [
    ("500px-sharpen-grey", lambda image: _sharpen_normalise(_resize(image, 500)).convert("L")),
    ("800px-sharpen", lambda image: _sharpen_normalise(_resize(image, 800))),
    ("original-sharpen", _sharpen_normalise),
    ("800px", lambda image: _resize(image, 800)),
    ("500px", lambda image: _resize(image, 500)),
    ("extreme-contrast", _extreme_contrast),
    ("original", lambda image: image),
]


class QrDecoder:
    """Local OpenCV decoding over image variants, then an optional remote decoder."""

    def __init__(
        self,
        external_api_url: str | None = None,
        timeout: float = 15.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.external_api_url = external_api_url
        self.timeout = timeout
        self._http_client = http_client
        self._detector = cv2.QRCodeDetector()

    def decode(self, image_bytes: bytes) -> str | None:
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise QrDecodeError(f"Cannot open image: {exc}") from exc

        image = ImageOps.exif_transpose(image).convert("RGB")
        steps = [
            (name, lambda transform=transform: self._decode_local(transform(image)))
            for name, transform in VARIANTS
        ]
        if self.external_api_url:
            steps.append(("external-api", lambda: self._decode_remote(image_bytes)))

        found = first_result(steps, label="qr")
        if found is None:
            return None
        return found[1]

    def _decode_local(self, image: Image.Image) -> str | None:
        array = np.array(image)
        if array.ndim == 3:
            array = cv2.cvtColor(array, cv2.COLOR_RGB2BGR)
        data, _points, _ = self._detector.detectAndDecode(array)
        return data.strip() or None

    def _decode_remote(self, image_bytes: bytes) -> str | None:
        files = {"file": ("receipt.jpg", image_bytes, "image/jpeg")}
        if self._http_client is not None:
            response = self._http_client.post(self.external_api_url, files=files)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.external_api_url, files=files)
        response.raise_for_status()

        # [{"type": "qrcode", "symbol": [{"seq": 0, "data": "...", "error": null}]}]
        for entry in response.json() or []:
            for symbol in entry.get("symbol") or []:
                data = symbol.get("data")
                if data and not symbol.get("error"):
                    return str(data).strip()
        return None
