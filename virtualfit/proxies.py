from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
from urllib.parse import quote

import aiohttp

# Same escaping as encodeURIComponent
_URI_COMPONENT_SAFE = "!~*'()"


def encode_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def is_success(response: aiohttp.ClientResponse) -> bool:
    return 200 <= response.status < 300


@dataclass(frozen=True)
class ProxyStrategy:
    """A public CORS proxy plus the logic to unwrap its response envelope."""

    name: str
    build_url: Callable[[str], str]
    parse_response: Callable[[aiohttp.ClientResponse], Awaitable[Optional[Any]]]


async def _parse_json_contents(response: aiohttp.ClientResponse) -> Optional[Any]:
    # allorigins does not always label the envelope as application/json
    data = await response.json(content_type=None)
    if not isinstance(data, dict):
        return None
    return data.get("contents")


async def _parse_text(response: aiohttp.ClientResponse) -> Optional[Any]:
    return await response.text()


def _allorigins_url(url: str) -> str:
    return f"https://api.allorigins.win/get?url={encode_component(url)}&_={int(time.time() * 1000)}"


def _corsproxy_url(url: str) -> str:
    return f"https://corsproxy.io/?{encode_component(url)}"


def _codetabs_url(url: str) -> str:
    return f"https://api.codetabs.com/v1/proxy?quest={encode_component(url)}"


EXTRACTION_STRATEGIES: List[ProxyStrategy] = [
    # High reliability but sometimes throttled
    ProxyStrategy("allorigins", _allorigins_url, _parse_json_contents),
    ProxyStrategy("corsproxy", _corsproxy_url, _parse_text),
    ProxyStrategy("codetabs", _codetabs_url, _parse_text),
]


@dataclass(frozen=True)
class ImageSource:
    """One way of reaching an image's raw bytes."""

    name: str
    build_url: Callable[[str], str]


def _allorigins_raw_url(url: str) -> str:
    return f"https://api.allorigins.win/raw?url={encode_component(url)}"


IMAGE_SOURCES: List[ImageSource] = [
    ImageSource("allorigins-raw", _allorigins_raw_url),
    ImageSource("corsproxy", _corsproxy_url),
    ImageSource("direct", lambda url: url),
]
