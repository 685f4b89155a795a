import asyncio
import json

import httpx
import pytest

from app.config import Settings
from app.services.errors import InvalidInputError, RemoteError
from app.services.whatsapp_service import (
    DocumentPayload,
    ImagePayload,
    TextPayload,
    WhatsAppService,
    build_payload,
)


def _service(handler):
    return WhatsAppService("https://graph.test/v22.0/", transport=httpx.MockTransport(handler))


class TestBuildPayload:
    def test_text(self):
        assert build_payload(" Hello ") == TextPayload(body="Hello")

    def test_media_defaults_to_image_with_caption(self):
        payload = build_payload("Look", "https://cdn.test/a.png")
        assert payload == ImagePayload(link="https://cdn.test/a.png", caption="Look")

    def test_document(self):
        payload = build_payload(None, "https://cdn.test/a.pdf", "Document")
        assert isinstance(payload, DocumentPayload)
        assert payload.caption is None

    def test_unsupported_media_type(self):
        with pytest.raises(InvalidInputError):
            build_payload(None, "https://cdn.test/a.ogg", "audio")

    def test_nothing_to_send(self):
        with pytest.raises(InvalidInputError) as exc_info:
            build_payload(None, None)
        assert exc_info.value.message == "Missing required fields"


class TestGraphPayloads:
    def test_text_shape(self):
        assert TextPayload(body="Hi").to_graph_payload() == {"type": "text", "text": {"body": "Hi"}}

    def test_image_without_caption_omits_it(self):
        assert ImagePayload(link="https://x").to_graph_payload() == {"type": "image", "image": {"link": "https://x"}}

    def test_document_with_caption(self):
        payload = DocumentPayload(link="https://x", caption="c").to_graph_payload()
        assert payload == {"type": "document", "document": {"link": "https://x", "caption": "c"}}


class TestSend:
    def test_posts_to_phone_number_endpoint(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

        result = asyncio.run(_service(handler).send("123", "tok", "15550001111", TextPayload(body="Hi")))

        assert result.whatsapp_message_id == "wamid.1"
        assert str(seen[0].url) == "https://graph.test/v22.0/123/messages"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        assert json.loads(seen[0].content)["messaging_product"] == "whatsapp"

    def test_missing_message_id_is_tolerated(self):
        result = asyncio.run(
            _service(lambda r: httpx.Response(200, json={})).send("123", "tok", "1555", TextPayload(body="Hi"))
        )
        assert result.whatsapp_message_id is None

    def test_graph_error_raises_remote_error(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}})

        with pytest.raises(RemoteError) as exc_info:
            asyncio.run(_service(handler).send("123", "bad", "1555", TextPayload(body="Hi")))

        assert exc_info.value.upstream_status == 401
        assert exc_info.value.detail == "Invalid OAuth access token"
        assert exc_info.value.message == "WhatsApp send failed"

    def test_network_error_raises_remote_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RemoteError) as exc_info:
            asyncio.run(_service(handler).send("123", "tok", "1555", TextPayload(body="Hi")))

        assert exc_info.value.upstream_status is None


def test_from_settings_builds_versioned_url():
    settings = Settings(graph_api_base_url="https://graph.example/", graph_api_version="v99.0", whatsapp_timeout_seconds=5)
    service = WhatsAppService.from_settings(settings)
    assert service.graph_api_url == "https://graph.example/v99.0"
    assert service.timeout == 5
