"""Unit tests for virtualfit.extractor — proxy fallback and image fetching."""

import base64
import json

import aiohttp
import pytest

from virtualfit.extractor import (
    BOT_BLOCK_MESSAGE,
    IMAGE_FETCH_MESSAGE,
    NOT_FOUND_MESSAGE,
    ExtractionPipeline,
    ImageFetchError,
    looks_bot_blocked,
)
from virtualfit.proxies import ImageSource, ProxyStrategy

from fakes import ALLORIGINS, ALLORIGINS_RAW, CODETABS, CORSPROXY, FakeResponse, FakeSession, allorigins_envelope, route

PRODUCT_URL = "https://example.com/product"


def _pipeline(session, **kwargs) -> ExtractionPipeline:
    return ExtractionPipeline(session=session, **kwargs)


class TestExtractProductImage:

    @pytest.mark.asyncio
    async def test_meta_image_resolved_against_page(self, product_html):
        session = FakeSession(route({ALLORIGINS: allorigins_envelope(product_html)}))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://example.com/img/shirt.jpg"
        assert result.title == "Classic Oxford Shirt"
        assert result.error is None
        assert len(session.requested) == 1

    @pytest.mark.asyncio
    async def test_all_strategies_fail_with_server_errors(self):
        session = FakeSession(route({}, default=FakeResponse(status=500)))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url is None
        assert result.title is None
        assert result.error == NOT_FOUND_MESSAGE
        assert len(session.requested) == 3

    @pytest.mark.asyncio
    async def test_short_circuits_after_first_success(self, product_html):
        session = FakeSession(route({
            ALLORIGINS: FakeResponse(status=503),
            CORSPROXY: FakeResponse(body=product_html),
            CODETABS: FakeResponse(body=product_html),
        }))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://example.com/img/shirt.jpg"
        assert not any(url.startswith(CODETABS) for url in session.requested)

    @pytest.mark.asyncio
    async def test_bot_block_moves_on_to_next_strategy(self, product_html):
        blocked = "<html><title>Amazon.com</title><h4>ROBOT CHECK</h4></html>"
        session = FakeSession(route({
            ALLORIGINS: allorigins_envelope(blocked),
            CORSPROXY: FakeResponse(body=product_html),
        }))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://example.com/img/shirt.jpg"
        assert result.error is None

    @pytest.mark.asyncio
    async def test_bot_block_message_kept_when_exhausted(self):
        session = FakeSession(route({
            ALLORIGINS: allorigins_envelope("<p>Please solve this captcha</p>"),
            CORSPROXY: aiohttp.ClientConnectionError("connection reset"),
            CODETABS: FakeResponse(status=403),
        }))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url is None
        assert result.error == BOT_BLOCK_MESSAGE

    @pytest.mark.asyncio
    async def test_unparseable_envelope_is_a_strategy_failure(self, product_html):
        session = FakeSession(route({
            ALLORIGINS: FakeResponse(body="<html>not json</html>"),
            CORSPROXY: FakeResponse(body=""),
            CODETABS: FakeResponse(body=product_html),
        }))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://example.com/img/shirt.jpg"
        assert len(session.requested) == 3

    @pytest.mark.asyncio
    async def test_page_without_usable_images(self):
        html = '<html><title>Empty</title><img src="/assets/logo.svg" width="50" height="50"></html>'
        session = FakeSession(route({}, default=FakeResponse(body=html)))
        strategies = [
            ProxyStrategy("only", lambda url: f"https://proxy.test/?{url}", lambda res: res.text()),
        ]

        result = await _pipeline(session, strategies=strategies).extract_product_image(PRODUCT_URL)

        assert result.image_url is None
        assert result.error == NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_gif_candidate_loses_to_later_image(self):
        html = """
        <meta property="og:image" content="https://x.com/spacer.gif">
        <meta name="twitter:image" content="https://x.com/b.jpg">
        """
        session = FakeSession(route({ALLORIGINS: allorigins_envelope(html)}))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://x.com/b.jpg"

    @pytest.mark.asyncio
    async def test_gif_kept_when_it_is_the_only_candidate(self):
        html = '<meta property="og:image" content="/img/spacer.gif">'
        session = FakeSession(route({ALLORIGINS: allorigins_envelope(html)}))

        result = await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert result.image_url == "https://example.com/img/spacer.gif"

    @pytest.mark.asyncio
    async def test_timeout_applied_to_injected_session(self, product_html):
        session = FakeSession(route({ALLORIGINS: allorigins_envelope(product_html)}))

        await _pipeline(session, http_timeout=7).extract_product_image(PRODUCT_URL)

        timeout = session.request_kwargs[0]["timeout"]
        assert isinstance(timeout, aiohttp.ClientTimeout)
        assert timeout.total == 7

    @pytest.mark.asyncio
    async def test_no_timeout_kwarg_by_default(self, product_html):
        session = FakeSession(route({ALLORIGINS: allorigins_envelope(product_html)}))

        await _pipeline(session).extract_product_image(PRODUCT_URL)

        assert session.request_kwargs == [{}]

    @pytest.mark.asyncio
    async def test_debug_payload_written(self, tmp_path, product_html):
        session = FakeSession(route({ALLORIGINS: FakeResponse(status=500), CORSPROXY: FakeResponse(body=product_html)}))

        await _pipeline(session, debug=True, debug_dir=str(tmp_path)).extract_product_image(PRODUCT_URL)

        files = list(tmp_path.glob("extract-*.json"))
        assert len(files) == 1
        payload = json.loads(files[0].read_text(encoding="utf-8"))
        assert payload["url"] == PRODUCT_URL
        assert [a["strategy"] for a in payload["attempts"]] == ["allorigins", "corsproxy"]
        assert payload["attempts"][0]["status"] == 500
        assert payload["result"]["image_url"] == "https://example.com/img/shirt.jpg"


def test_looks_bot_blocked():
    assert looks_bot_blocked("<title>Robot Check</title>")
    assert looks_bot_blocked("Enter the CAPTCHA below")
    assert not looks_bot_blocked("<title>Oxford shirt</title>")


class TestFetchImage:

    IMAGE_URL = "https://cdn.example.com/shirt.jpg"

    @pytest.mark.asyncio
    async def test_first_source_success(self):
        session = FakeSession(route({
            ALLORIGINS_RAW: FakeResponse(body=b"\x89PNGdata", headers={"Content-Type": "image/jpeg; charset=binary"}),
        }))

        image = await _pipeline(session).fetch_image(self.IMAGE_URL)

        assert image.data == b"\x89PNGdata"
        assert image.mime_type == "image/jpeg"
        assert len(session.requested) == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_direct_fetch(self):
        session = FakeSession(route({
            ALLORIGINS_RAW: FakeResponse(status=404),
            CORSPROXY: aiohttp.ClientConnectionError("refused"),
            self.IMAGE_URL: FakeResponse(body=b"bytes", headers={"Content-Type": "text/plain"}),
        }))

        encoded = await _pipeline(session).fetch_image_base64(self.IMAGE_URL)

        assert encoded == base64.b64encode(b"bytes").decode("ascii")
        assert session.requested[-1] == self.IMAGE_URL

    @pytest.mark.asyncio
    async def test_data_url_defaults_to_png(self):
        session = FakeSession(route({}, default=FakeResponse(body=b"abc")))
        sources = [ImageSource("direct", lambda url: url)]

        data_url = await _pipeline(session, image_sources=sources).fetch_image_data_url(self.IMAGE_URL)

        assert data_url == "data:image/png;base64,YWJj"

    @pytest.mark.asyncio
    async def test_empty_bodies_and_failures_raise(self):
        session = FakeSession(route({ALLORIGINS_RAW: FakeResponse(body=b"")}, default=FakeResponse(status=500)))

        with pytest.raises(ImageFetchError, match=IMAGE_FETCH_MESSAGE):
            await _pipeline(session).fetch_image_base64(self.IMAGE_URL)
        assert len(session.requested) == 3
