"""Command-line front end for VirtualFit.

Usage:
    virtualfit extract https://www.amazon.com/dp/B07F2KW7T5
    virtualfit encode https://m.media-amazon.com/images/I/shirt.jpg
    virtualfit tryon --person me.jpg --garment https://example.com/product --output result.png
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import pathlib
import sys
from typing import List, Optional

from .extractor import ExtractionPipeline, ImageFetchError
from .tryon import TryOnClient
from .utils import Settings, configure_logging, load_settings
from .workflow import AppStatus, TryOnWorkflow

logger = logging.getLogger(__name__)


def _build_pipeline(settings: Settings) -> ExtractionPipeline:
    return ExtractionPipeline(
        http_timeout=settings.http_timeout,
        debug=settings.debug_extract,
        debug_dir=settings.debug_dir,
    )


async def _cmd_extract(args: argparse.Namespace, settings: Settings) -> int:
    result = await _build_pipeline(settings).extract_product_image(args.url)
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.ok else 1


async def _cmd_encode(args: argparse.Namespace, settings: Settings) -> int:
    try:
        encoded = await _build_pipeline(settings).fetch_image_base64(args.url)
    except ImageFetchError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(encoded)
    return 0


async def _cmd_tryon(args: argparse.Namespace, settings: Settings) -> int:
    tryon = TryOnClient(settings.gemini_api_key, settings.gemini_model)
    workflow = TryOnWorkflow(_build_pipeline(settings), tryon)
    try:
        garment = args.garment
        from_page = garment.startswith(("http://", "https://"))
        try:
            workflow.load_person_image(args.person)
            if not from_page:
                workflow.upload_garment(pathlib.Path(garment))
        except OSError as exc:
            print(f"Cannot read image: {exc}", file=sys.stderr)
            return 1

        if from_page:
            await workflow.fetch_product(garment)

        if workflow.status is not AppStatus.ERROR:
            await workflow.generate()
    finally:
        await tryon.close()

    if workflow.status is not AppStatus.SUCCESS:
        print(workflow.error or "Try-on failed.", file=sys.stderr)
        return 1

    saved = workflow.save_result(args.output)
    print(str(saved))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="virtualfit", description="Virtual try-on from retail product pages")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Find the product image on a retail page")
    extract.add_argument("url")
    extract.set_defaults(handler=_cmd_extract)

    encode = sub.add_parser("encode", help="Download an image and print it as base64")
    encode.add_argument("url")
    encode.set_defaults(handler=_cmd_encode)

    tryon = sub.add_parser("tryon", help="Render a person wearing a garment")
    tryon.add_argument("--person", required=True, help="Path to the personal photo")
    tryon.add_argument("--garment", required=True, help="Product page URL or path to a garment image")
    tryon.add_argument("--output", default=None, help="Where to write the generated image")
    tryon.set_defaults(handler=_cmd_tryon)

    return parser


def run_cli(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings.debug_extract or args.verbose)

    sys.exit(asyncio.run(args.handler(args, settings)))


if __name__ == "__main__":
    run_cli()
