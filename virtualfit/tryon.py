from __future__ import annotations

import base64
import logging
import re
from typing import Any, Optional, Tuple

from google import genai
from google.genai import errors, types
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

TRYON_PROMPT = """
INSTRUCTION:
Apply the garment from the second image onto the person in the first image.

RULES:
- Keep the person's face, hair, and body shape identical.
- Replace only the clothing.
- Make the fit look natural with realistic folds and lighting.
- Return ONLY the final edited image.
"""

MISSING_KEY_MESSAGE = "API_KEY not found in environment. Please ensure the key is correctly set."
NO_RESPONSE_MESSAGE = "No response generated. The model may have filtered the content due to safety settings."
NO_IMAGE_MESSAGE = "The AI didn't return an image. Try using clearer photos."
INVALID_KEY_MESSAGE = "Invalid API Key. Please check the key provided in your environment."
RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment before trying again."
SERVER_ERROR_MESSAGE = "Gemini server error. The AI is temporarily unavailable."
GENERIC_FAILURE_MESSAGE = "Failed to generate try-on. Ensure your images are clear and suitable."


class TryOnError(RuntimeError):
    pass


def parse_data_url(value: str) -> Tuple[str, str]:
    """Split a data URL into (mime type, base64 payload).

    Anything that is not a data URL is assumed to already be raw base64 PNG.
    """
    match = _DATA_URL.match(value)
    if not match:
        return "image/png", value
    return match.group(1), match.group(2)


def _is_retryable(exc: BaseException) -> bool:
    if not isinstance(exc, errors.APIError):
        return False
    code = getattr(exc, "code", None) or 0
    return code == 429 or code >= 500


def describe_error(exc: BaseException) -> str:
    code = getattr(exc, "code", None)
    msg = str(getattr(exc, "message", None) or exc or "")
    if code == 401 or "401" in msg or "API key not valid" in msg:
        return INVALID_KEY_MESSAGE
    if code == 429 or "429" in msg:
        return RATE_LIMIT_MESSAGE
    if (isinstance(code, int) and code >= 500) or "500" in msg:
        return SERVER_ERROR_MESSAGE
    return msg or GENERIC_FAILURE_MESSAGE


class TryOnClient:
    """Thin wrapper around the Gemini image model used for virtual try-on."""

    def __init__(self, api_key: Optional[str], model: Optional[str], max_attempts: int = 3) -> None:
        self._api_key = api_key
        self._model = model or "gemini-2.5-flash-image"
        self._max_attempts = max_attempts
        self._client: Optional[genai.Client] = None

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def start(self) -> None:
        if not self.enabled or self._client:
            return
        self._client = genai.Client(api_key=self._api_key)

    async def close(self) -> None:
        if self._client:
            await self._client.aio.aclose()
            self._client = None

    async def generate(self, person_image: str, garment_image: str) -> str:
        """Return a data URL with the person wearing the garment."""
        if not self.enabled:
            raise TryOnError(MISSING_KEY_MESSAGE)
        await self.start()

        person_mime, person_data = parse_data_url(person_image)
        garment_mime, garment_data = parse_data_url(garment_image)
        contents = [
            types.Part.from_bytes(data=base64.b64decode(person_data), mime_type=person_mime),
            types.Part.from_bytes(data=base64.b64decode(garment_data), mime_type=garment_mime),
            TRYON_PROMPT,
        ]

        try:
            response = await self._call_model(contents)
        except errors.APIError as exc:
            logger.error("Gemini API error: %s", exc)
            raise TryOnError(describe_error(exc)) from exc

        return self._image_from_response(response)

    async def _call_model(self, contents: list) -> Any:
        if not self._client:
            raise RuntimeError("Gemini client not initialized")

        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=4, max=10),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async def _attempt():
            return await self._client.aio.models.generate_content(
                model=self._model,
                contents=contents,
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(aspect_ratio="1:1"),
                ),
            )

        logger.debug("Sending try-on request to %s", self._model)
        return await _attempt()

    def _image_from_response(self, response: Any) -> str:
        candidates = getattr(response, "candidates", None) or []
        candidate = candidates[0] if candidates else None
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None)
        if not parts:
            raise TryOnError(NO_RESPONSE_MESSAGE)

        for part in parts:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                data = inline.data
                if isinstance(data, bytes):
                    data = base64.b64encode(data).decode("ascii")
                return f"data:{inline.mime_type or 'image/png'};base64,{data}"

        refusal = next((part.text for part in parts if getattr(part, "text", None)), None)
        logger.warning("Model returned no image part: %s", refusal)
        raise TryOnError(refusal or NO_IMAGE_MESSAGE)
