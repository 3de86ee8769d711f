"""Tests for generation providers and the provider registry.

Live providers are exercised against ``httpx.MockTransport`` so no network
is needed.
"""

import base64

import httpx
import pytest

from studio.exceptions import (
    CapabilityNotSupportedError,
    CredentialInvalidError,
    ProviderNotFoundError,
    ProviderOperationError,
    ProviderTransportError,
    ServerCredentialInvalidError,
    ValidationError,
)
from studio.schemas.generation import GenerationRequest
from studio.services.credentials import ResolvedCredential
from studio.services.generation_providers import (
    NANO_FAST,
    NANO_PRO,
    VEO,
    Capability,
    GeminiImageProvider,
    MockNanoProvider,
    MockVideoProvider,
    OperationHandle,
    ProviderRegistry,
    VeoVideoProvider,
    build_provider_registry,
    decode_image,
    derive_target,
)

from conftest import SERVER_KEY

BASE_URL = "https://generativelanguage.test/v1beta"
IMAGE_B64 = base64.b64encode(b"generated-image").decode()


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHelpers:
    def test_decode_data_url(self):
        data, mime_type = decode_image(f"data:image/jpeg;base64,{IMAGE_B64}")
        assert data == b"generated-image"
        assert mime_type == "image/jpeg"

    def test_decode_bare_base64(self):
        assert decode_image(IMAGE_B64) == (b"generated-image", "image/png")

    def test_decode_invalid(self):
        with pytest.raises(ValidationError):
            decode_image("not base64!!")

    @pytest.mark.parametrize("index,expected", [(None, "character"), (0, "root"), (1, "extension"), (7, "extension")])
    def test_derive_target(self, index, expected):
        assert derive_target(index) == expected


class TestProviderRegistry:
    def test_lookup_and_capabilities(self):
        registry = ProviderRegistry()
        registry.register(MockNanoProvider(NANO_FAST))
        registry.register(MockVideoProvider(VEO))

        assert registry.ids() == [NANO_FAST, VEO]
        assert NANO_FAST in registry
        assert registry.require(VEO, Capability.GENERATE_VIDEO).kind == "lro"
        with pytest.raises(CapabilityNotSupportedError):
            registry.require(VEO, Capability.PREVIEW)
        with pytest.raises(ProviderNotFoundError):
            registry.get("sora")

    def test_duplicate_registration(self):
        registry = ProviderRegistry()
        registry.register(MockNanoProvider(NANO_FAST))
        with pytest.raises(ValueError):
            registry.register(MockNanoProvider(NANO_FAST))

    def test_build_mock_and_live(self, settings):
        mock = build_provider_registry(settings)
        assert isinstance(mock.get(NANO_PRO), MockNanoProvider)

        live = build_provider_registry(settings.model_copy(update={"provider_mode": "live"}))
        assert isinstance(live.get(NANO_FAST), GeminiImageProvider)
        assert isinstance(live.get(VEO), VeoVideoProvider)

    @pytest.mark.asyncio
    async def test_unsupported_capability_on_base_class(self, user_credential):
        with pytest.raises(CapabilityNotSupportedError):
            await MockVideoProvider().preview(GenerationRequest(text_prompt="x"), user_credential)


class TestGeminiImageProvider:
    @pytest.mark.asyncio
    async def test_preview_parses_inline_image(self, user_credential):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-goog-api-key"]
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "parts": [
                                    {"text": "Wide establishing shot"},
                                    {"inlineData": {"mimeType": "image/png", "data": IMAGE_B64}},
                                ]
                            }
                        }
                    ]
                },
            )

        async with _client(handler) as client:
            provider = GeminiImageProvider(NANO_FAST, "image-model", BASE_URL, client)
            result = await provider.preview(GenerationRequest(text_prompt="Harbour at night"), user_credential)

        assert seen["url"] == f"{BASE_URL}/models/image-model:generateContent"
        assert seen["key"] == user_credential.key
        assert result.data == b"generated-image"
        assert result.prompt_echo == "Wide establishing shot"
        assert result.request_id.startswith("nano-prev-")

    @pytest.mark.asyncio
    async def test_response_without_image_has_no_output(self, user_credential):
        def handler(request):
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "I can't"}]}}]})

        async with _client(handler) as client:
            provider = GeminiImageProvider(NANO_FAST, "image-model", BASE_URL, client)
            result = await provider.preview(GenerationRequest(text_prompt="x"), user_credential)
        assert not result.has_output

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,error",
        [
            (401, CredentialInvalidError),
            (403, CredentialInvalidError),
            (429, ProviderTransportError),
            (503, ProviderTransportError),
            (400, ProviderOperationError),
        ],
    )
    async def test_http_status_mapping(self, user_credential, status_code, error):
        def handler(request):
            return httpx.Response(status_code, json={"error": {"message": "nope", "status": "X"}})

        async with _client(handler) as client:
            provider = GeminiImageProvider(NANO_FAST, "image-model", BASE_URL, client)
            with pytest.raises(error) as exc_info:
                await provider.preview(GenerationRequest(text_prompt="x"), user_credential)
        if error is ProviderOperationError:
            assert exc_info.value.raw == {"error": {"message": "nope", "status": "X"}}

    @pytest.mark.asyncio
    async def test_rejected_server_key_is_operator_error(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "API key not valid"}})

        credential = ResolvedCredential(source="server", key=SERVER_KEY)
        async with _client(handler) as client:
            provider = GeminiImageProvider(NANO_FAST, "image-model", BASE_URL, client)
            with pytest.raises(ServerCredentialInvalidError) as exc_info:
                await provider.preview(GenerationRequest(text_prompt="x"), credential)
        assert exc_info.value.code == "SERVER_CREDENTIAL_INVALID"
        assert SERVER_KEY not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_error_is_transport_error(self, user_credential):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            provider = GeminiImageProvider(NANO_FAST, "image-model", BASE_URL, client)
            with pytest.raises(ProviderTransportError) as exc_info:
                await provider.preview(GenerationRequest(text_prompt="x"), user_credential)
        assert user_credential.key not in exc_info.value.message


class TestVeoVideoProvider:
    @pytest.mark.asyncio
    async def test_start_poll_and_download(self, user_credential):
        polls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith(":predictLongRunning"):
                return httpx.Response(200, json={"name": "models/veo-model/operations/op-9"})
            if request.url.path.endswith("/operations/op-9"):
                polls["count"] += 1
                if polls["count"] == 1:
                    return httpx.Response(200, json={"name": "models/veo-model/operations/op-9"})
                return httpx.Response(
                    200,
                    json={
                        "done": True,
                        "response": {
                            "generateVideoResponse": {
                                "generatedSamples": [{"video": {"uri": "https://files.test/video.mp4"}}]
                            }
                        },
                    },
                )
            if request.url.host == "files.test":
                return httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})
            return httpx.Response(404)

        async with _client(handler) as client:
            provider = VeoVideoProvider("veo-model", BASE_URL, client=client)
            handle = await provider.start_video(
                GenerationRequest(text_prompt="Waves", base_image=IMAGE_B64), user_credential
            )
            assert handle.operation_id == "models/veo-model/operations/op-9"
            assert handle.poll_url == f"{BASE_URL}/models/veo-model/operations/op-9"

            first = await provider.poll(handle, user_credential)
            second = await provider.poll(handle, user_credential)

        assert first.done is False
        assert second.done is True
        assert second.result.data == b"mp4-bytes"
        assert second.result.mime_type == "video/mp4"

    @pytest.mark.asyncio
    async def test_operation_error_is_reported(self, user_credential):
        native = {"code": 3, "message": "Prompt blocked"}

        def handler(request):
            return httpx.Response(200, json={"done": True, "error": native})

        async with _client(handler) as client:
            provider = VeoVideoProvider("veo-model", BASE_URL, client=client)
            status = await provider.poll(provider_handle("models/veo-model/operations/op-1"), user_credential)
        assert status.done
        assert status.error == native

    @pytest.mark.asyncio
    async def test_gcs_uri_result(self, user_credential):
        def handler(request):
            return httpx.Response(
                200,
                json={"done": True, "response": {"videos": [{"gcsUri": "gs://bucket/v.mp4", "mimeType": "video/mp4"}]}},
            )

        async with _client(handler) as client:
            provider = VeoVideoProvider("veo-model", BASE_URL, client=client)
            status = await provider.poll(provider_handle("operations/op-2"), user_credential)
        assert status.result.uri == "gs://bucket/v.mp4"
        assert status.result.data is None

    @pytest.mark.asyncio
    async def test_missing_operation_name(self, user_credential):
        def handler(request):
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            provider = VeoVideoProvider("veo-model", BASE_URL, client=client)
            with pytest.raises(ProviderOperationError):
                await provider.start_video(GenerationRequest(text_prompt="Waves"), user_credential)


def provider_handle(operation_id: str) -> OperationHandle:
    return OperationHandle(operation_id=operation_id, poll_url=f"{BASE_URL}/{operation_id}")


class TestMockProviders:
    @pytest.mark.asyncio
    async def test_mock_video_completes_after_polls(self, user_credential):
        provider = MockVideoProvider(polls_until_done=3)
        handle = await provider.start_video(GenerationRequest(text_prompt="Rain"), user_credential)

        statuses = [await provider.poll(handle, user_credential) for _ in range(3)]

        assert [s.done for s in statuses] == [False, False, True]
        assert statuses[-1].result.data == b"mock-video:Rain"

    @pytest.mark.asyncio
    async def test_mock_variant_notes(self, user_credential):
        result = await MockNanoProvider().variant(IMAGE_B64, "close-up", user_credential)
        assert result.data == b"generated-image"
        assert result.notes["delta_instruction"] == "Reframe the shot as a close-up"
