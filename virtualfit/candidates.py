from __future__ import annotations

import json
import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

BLACKLIST: Tuple[str, ...] = (
    "logo",
    "icon",
    "sprite",
    "banner",
    "nav",
    "footer",
    "social",
    "avatar",
    "loading",
    "pixel",
    "tracking",
    "ads",
    "spinner",
)

# Amazon high-res containers
RETAILER_SELECTORS: Tuple[str, ...] = (
    "#landingImage",
    "#main-image",
    "img[data-a-dynamic-image]",
    "img[data-old-hires]",
    "img[data-zoom-image]",
    ".a-dynamic-image",
)

META_IMAGE_NAMES: Tuple[str, ...] = ("og:image", "twitter:image", "image", "thumbnail")

PRODUCT_SELECTORS: Tuple[str, ...] = (
    "#landingImage",
    "#main-image",
    ".product-image img",
    ".pdp-image",
    "img.main",
    ".gallery-image",
    '[data-testid="pdp-main-image"]',
    ".product__img",
    ".img-responsive",
    ".product-main-image img",
)

MIN_HEURISTIC_SIZE = 200

_LEADING_INT = re.compile(r"^\s*[+-]?\d+")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def page_title(soup: BeautifulSoup) -> Optional[str]:
    if not soup.title:
        return None
    title = soup.title.get_text(strip=True)
    return title or None


def _is_inline_data(value: str) -> bool:
    return value.startswith("data:") or "base64" in value


def _longest_dynamic_image(raw: str) -> Optional[str]:
    """Pick the URL key of a responsive-image map, longest string first."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not data:
        return None
    return max(data.keys(), key=len)


def retailer_image(soup: BeautifulSoup, selectors: Sequence[str] = RETAILER_SELECTORS) -> Optional[str]:
    for selector in selectors:
        img = soup.select_one(selector)
        if img is None:
            continue

        dynamic = img.get("data-a-dynamic-image")
        if dynamic:
            best = _longest_dynamic_image(dynamic)
            if best:
                return best

        hi_res = img.get("data-old-hires") or img.get("data-zoom-image")
        if hi_res:
            return hi_res

        src = img.get("src")
        if src and not _is_inline_data(src):
            return src
    return None


def meta_images(soup: BeautifulSoup, names: Iterable[str] = META_IMAGE_NAMES) -> List[str]:
    found: List[str] = []
    for name in names:
        meta = soup.select_one(
            f'meta[property="{name}"], meta[name="{name}"], meta[property="og:image:secure_url"]'
        )
        content = meta.get("content") if meta else None
        if content:
            found.append(content)
    return found


def selector_images(soup: BeautifulSoup, selectors: Iterable[str] = PRODUCT_SELECTORS) -> List[str]:
    found: List[str] = []
    for selector in selectors:
        element = soup.select_one(selector)
        src = element.get("src") if element else None
        if src:
            found.append(src)
    return found


def _parse_dimension(value: Optional[str]) -> int:
    if not value:
        return 0
    match = _LEADING_INT.match(value)
    return int(match.group()) if match else 0


def _is_large_enough(img: Tag) -> bool:
    width = _parse_dimension(img.get("width"))
    height = _parse_dimension(img.get("height"))
    if width > MIN_HEURISTIC_SIZE and height > MIN_HEURISTIC_SIZE:
        return True
    # No declared size: could be anything, keep it
    return not width and not height


def heuristic_images(soup: BeautifulSoup) -> List[str]:
    found: List[str] = []
    for img in soup.find_all("img"):
        if not _is_large_enough(img):
            continue
        src = img.get("src") or img.get("data-src") or img.get("data-lazy-src")
        if src:
            found.append(src)
    return found


def collect_candidates(soup: BeautifulSoup) -> List[str]:
    """Raw candidates, best-known sources first. Duplicates are kept."""
    candidates: List[str] = []

    retailer = retailer_image(soup)
    if retailer:
        candidates.append(retailer)
    candidates.extend(meta_images(soup))
    candidates.extend(selector_images(soup))
    candidates.extend(heuristic_images(soup))
    return candidates


def normalize_candidate(candidate: str, source_url: str) -> str:
    if candidate.startswith("//"):
        return f"https:{candidate}"
    if candidate.startswith("/"):
        parsed = urlparse(source_url)
        if not parsed.scheme or not parsed.netloc:
            return candidate
        return f"{parsed.scheme}://{parsed.netloc}{candidate}"
    return candidate


def is_valid_candidate(candidate: str, blacklist: Sequence[str] = BLACKLIST) -> bool:
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return False
    if not parsed.scheme.lower().startswith("http") or not parsed.netloc:
        return False
    path = parsed.path.lower()
    return not any(entry in path for entry in blacklist)


def valid_candidates(candidates: Iterable[str], source_url: str, blacklist: Sequence[str] = BLACKLIST) -> List[str]:
    normalized = (normalize_candidate(c, source_url) for c in candidates if c)
    return [c for c in normalized if is_valid_candidate(c, blacklist)]


def pick_best_candidate(candidates: Sequence[str]) -> Optional[str]:
    if not candidates:
        return None
    for candidate in candidates:
        lowered = candidate.lower()
        if "pixel" not in lowered and not lowered.endswith(".gif"):
            return candidate
    return candidates[0]


def best_image(candidates: Iterable[str], source_url: str) -> Optional[str]:
    valid = valid_candidates(candidates, source_url)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Valid image candidates (sample): %s", valid[:10])
    return pick_best_candidate(valid)
