from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp

from .candidates import best_image, collect_candidates, page_title, parse_html
from .proxies import (
    EXTRACTION_STRATEGIES,
    IMAGE_SOURCES,
    ImageSource,
    ProxyStrategy,
    is_success,
)
from .utils import ExtractionResult, FetchedImage, dump_debug_payload

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Product image could not be found automatically."
BOT_BLOCK_MESSAGE = "Retailer (Amazon) is blocking the automated fetch. Please use manual upload."
IMAGE_FETCH_MESSAGE = "Unable to fetch the product image data. Please upload it manually."

_BOT_MARKERS = ("robot check", "captcha")


class ImageFetchError(RuntimeError):
    pass


def looks_bot_blocked(html: str) -> bool:
    lowered = html.lower()
    return any(marker in lowered for marker in _BOT_MARKERS)


class ExtractionPipeline:
    """Finds a product image on a retail page by walking a list of CORS proxies."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        strategies: Sequence[ProxyStrategy] = EXTRACTION_STRATEGIES,
        image_sources: Sequence[ImageSource] = IMAGE_SOURCES,
        http_timeout: Optional[float] = None,
        debug: bool = False,
        debug_dir: str = "debug-artifacts",
    ) -> None:
        self._session = session
        self._strategies = list(strategies)
        self._image_sources = list(image_sources)
        self._http_timeout = aiohttp.ClientTimeout(total=http_timeout) if http_timeout else None
        self._debug = debug
        self._debug_dir = debug_dir

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[aiohttp.ClientSession]:
        if self._session is not None:
            yield self._session
            return
        async with aiohttp.ClientSession() as session:
            yield session

    def _get(self, session: aiohttp.ClientSession, url: str):
        # Per request, so injected sessions honour the timeout too
        if self._http_timeout:
            return session.get(url, timeout=self._http_timeout)
        return session.get(url)

    async def extract_product_image(self, url: str) -> ExtractionResult:
        logger.info("Starting product image extraction for URL: %s", url)
        last_error = NOT_FOUND_MESSAGE
        attempts: List[Dict[str, Any]] = []
        result: Optional[ExtractionResult] = None

        async with self._client() as session:
            for strategy in self._strategies:
                attempt: Dict[str, Any] = {"strategy": strategy.name}
                attempts.append(attempt)
                try:
                    async with self._get(session, strategy.build_url(url)) as response:
                        attempt["status"] = response.status
                        if not is_success(response):
                            logger.warning("Strategy %s returned status %s", strategy.name, response.status)
                            continue
                        html = await strategy.parse_response(response)

                    if not html or not isinstance(html, str):
                        attempt["error"] = "empty response"
                        continue

                    if looks_bot_blocked(html):
                        logger.warning("Strategy %s hit a bot-protection page", strategy.name)
                        last_error = BOT_BLOCK_MESSAGE
                        attempt["error"] = "bot-block"
                        continue

                    soup = parse_html(html)
                    candidates = collect_candidates(soup)
                    attempt["candidates"] = candidates[:20]
                    best = best_image(candidates, url)
                    if best:
                        logger.info("Found product image via %s: %s", strategy.name, best[:100])
                        result = ExtractionResult(image_url=best, title=page_title(soup))
                        break
                    logger.debug("Strategy %s produced no usable candidate", strategy.name)
                except Exception as exc:
                    logger.warning("Strategy %s failed: %s", strategy.name, exc)
                    attempt["error"] = str(exc)

        if result is None:
            logger.warning("No product image found for %s: %s", url, last_error)
            result = ExtractionResult(image_url=None, title=None, error=last_error)

        if self._debug:
            payload = {"url": url, "attempts": attempts, "result": result.as_dict()}
            try:
                dump_debug_payload(self._debug_dir, f"extract-{abs(hash(url))}", payload)
            except Exception:  # pragma: no cover - best effort debug path
                logger.exception("Failed to write debug payload")

        return result

    async def fetch_image(self, url: str) -> FetchedImage:
        async with self._client() as session:
            for source in self._image_sources:
                try:
                    async with self._get(session, source.build_url(url)) as response:
                        if not is_success(response):
                            logger.debug("Image source %s returned status %s", source.name, response.status)
                            continue
                        data = await response.read()
                        content_type = response.headers.get("Content-Type", "")
                except Exception as exc:
                    logger.warning("Image source %s failed: %s", source.name, exc)
                    continue

                if not data:
                    logger.debug("Image source %s returned an empty body", source.name)
                    continue
                mime_type = content_type.split(";", 1)[0].strip().lower()
                if not mime_type.startswith("image/"):
                    mime_type = "image/png"
                logger.info("Fetched %d bytes of image data via %s", len(data), source.name)
                return FetchedImage(data=data, mime_type=mime_type)

        raise ImageFetchError(IMAGE_FETCH_MESSAGE)

    async def fetch_image_base64(self, url: str) -> str:
        image = await self.fetch_image(url)
        return base64.b64encode(image.data).decode("ascii")

    async def fetch_image_data_url(self, url: str) -> str:
        image = await self.fetch_image(url)
        encoded = base64.b64encode(image.data).decode("ascii")
        return f"data:{image.mime_type};base64,{encoded}"
