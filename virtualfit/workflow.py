from __future__ import annotations

import base64
import logging
import mimetypes
import pathlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .extractor import ExtractionPipeline
from .tryon import TryOnClient, parse_data_url

logger = logging.getLogger(__name__)

DEFAULT_RESULT_NAME = "virtualfit-ai-result.png"

_BLOCKED_FALLBACK = "Retailers often block scrapers. Please upload a screenshot manually."
_CONNECTION_ERROR = "Connection error. Amazon or other retailers might be blocking the request. Use manual upload."
_GENERATION_FALLBACK = "Generation failed. Check your API key and network."


class AppStatus(str, Enum):
    IDLE = "IDLE"
    EXTRACTING = "EXTRACTING"
    GENERATING = "GENERATING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


@dataclass
class ImageState:
    original: Optional[str] = None
    product: Optional[str] = None
    generated: Optional[str] = None


def file_to_data_url(path: Union[str, pathlib.Path]) -> str:
    path = pathlib.Path(path)
    mime_type, _ = mimetypes.guess_type(path.name)
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime_type or 'image/png'};base64,{encoded}"


def decode_data_url(value: str) -> bytes:
    _, data = parse_data_url(value)
    return base64.b64decode(data)


class TryOnWorkflow:
    """Holds the two input images and drives extraction and generation."""

    def __init__(self, extractor: ExtractionPipeline, tryon: TryOnClient) -> None:
        self._extractor = extractor
        self._tryon = tryon
        self.status = AppStatus.IDLE
        self.images = ImageState()
        self.url = ""
        self.error: Optional[str] = None
        # Bumped on every product change so late extraction results can be dropped
        self._product_version = 0

    def set_person_image(self, data_url: str) -> None:
        self.images.original = data_url

    def load_person_image(self, path: Union[str, pathlib.Path]) -> None:
        self.set_person_image(file_to_data_url(path))

    def upload_garment(self, path: Union[str, pathlib.Path]) -> None:
        self._set_product(file_to_data_url(path))
        self.status = AppStatus.IDLE
        self.error = None

    def _set_product(self, value: Optional[str]) -> None:
        self._product_version += 1
        self.images.product = value

    async def fetch_product(self, url: str) -> None:
        if not url:
            return
        self.url = url
        self.status = AppStatus.EXTRACTING
        self.error = None
        version = self._product_version

        try:
            result = await self._extractor.extract_product_image(url)
        except Exception as exc:
            logger.warning("Extraction crashed for %s: %s", url, exc)
            if version == self._product_version:
                self.error = _CONNECTION_ERROR
                self.status = AppStatus.ERROR
            return

        if version != self._product_version:
            logger.info("Discarding stale extraction result for %s", url)
            return

        if result.image_url:
            self._set_product(result.image_url)
            self.status = AppStatus.IDLE
        else:
            self.error = result.error or _BLOCKED_FALLBACK
            self.status = AppStatus.ERROR

    async def generate(self) -> Optional[str]:
        if not self.images.original or not self.images.product:
            return None

        self.status = AppStatus.GENERATING
        self.error = None
        try:
            garment = self.images.product
            if not garment.startswith("data:"):
                garment = await self._extractor.fetch_image_data_url(garment)

            generated = await self._tryon.generate(self.images.original, garment)
        except Exception as exc:
            logger.error("Generation error: %s", exc)
            self.error = str(exc) or _GENERATION_FALLBACK
            self.status = AppStatus.ERROR
            return None

        self.images.generated = generated
        self.status = AppStatus.SUCCESS
        return generated

    def reset(self) -> None:
        self.images = ImageState()
        self._product_version += 1
        self.status = AppStatus.IDLE
        self.url = ""
        self.error = None

    def save_result(self, path: Optional[Union[str, pathlib.Path]] = None) -> Optional[pathlib.Path]:
        if not self.images.generated:
            return None
        target = pathlib.Path(path or DEFAULT_RESULT_NAME)
        target.write_bytes(decode_data_url(self.images.generated))
        return target
