from __future__ import annotations

import json
import logging
import os
import pathlib
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

load_dotenv()


class Settings(BaseModel):
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash-image"
    http_timeout: Optional[float] = None
    debug_extract: bool = False
    debug_dir: str = "debug-artifacts"

    model_config = {
        "extra": "ignore"
    }


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def load_settings() -> Settings:
    raw = {
        "gemini_api_key": os.getenv("API_KEY") or os.getenv("GEMINI_API_KEY"),
        "gemini_model": os.getenv("GEMINI_MODEL") or "gemini-2.5-flash-image",
        "http_timeout": os.getenv("HTTP_TIMEOUT") or None,
        "debug_extract": _parse_bool(os.getenv("DEBUG_EXTRACT"), False),
        "debug_dir": os.getenv("DEBUG_DIR") or "debug-artifacts",
    }

    try:
        settings = Settings(**raw)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.debug_extract:
        pathlib.Path(settings.debug_dir).mkdir(parents=True, exist_ok=True)

    return settings


@dataclass
class ExtractionResult:
    image_url: Optional[str] = None
    title: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.image_url is not None

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            data.pop("error")
        return data


@dataclass
class FetchedImage:
    data: bytes
    mime_type: str = "image/png"


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def dump_debug_payload(debug_dir: str, prefix: str, payload: Dict[str, Any]) -> pathlib.Path:
    path = pathlib.Path(debug_dir) / f"{prefix}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path
