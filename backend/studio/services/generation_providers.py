"""Generation providers.

Each provider is a tagged variant: it declares whether it answers inline
(``sync``) or through a long-running operation (``lro``), and which
capabilities it supports. The orchestrator looks providers up in a
``ProviderRegistry`` built at startup and never inspects their shape.
"""

import base64
import binascii
import logging
import time
from abc import ABC
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

import httpx

from studio.config import Settings
from studio.exceptions import (
    CapabilityNotSupportedError,
    CredentialInvalidError,
    ProviderNotFoundError,
    ProviderOperationError,
    ProviderTransportError,
    ServerCredentialInvalidError,
    ValidationError,
)
from studio.schemas.generation import GenerationRequest, GenerationTarget
from studio.services.credentials import ResolvedCredential

logger = logging.getLogger(__name__)

NANO_FAST = "nano-fast"
NANO_PRO = "nano-pro"
VEO = "veo"

# 1x1 transparent PNG, used by the mock provider when no base image is given.
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class Capability(str, Enum):
    PREVIEW = "preview"
    RETOUCH = "retouch"
    BATCH_VARIANTS = "batch_variants"
    GENERATE_VIDEO = "generate_video"


@dataclass(frozen=True)
class ProviderResult:
    """Output of a finished generation: bytes, a URI, or (invalidly) neither."""

    data: bytes | None = None
    uri: str | None = None
    mime_type: str = "image/png"
    prompt_echo: str = ""
    notes: dict[str, Any] = field(default_factory=dict)
    request_id: str = ""

    @property
    def has_output(self) -> bool:
        return bool(self.data) or bool(self.uri)


@dataclass(frozen=True)
class OperationHandle:
    operation_id: str
    poll_url: str


@dataclass(frozen=True)
class OperationStatus:
    done: bool
    result: ProviderResult | None = None
    error: dict[str, Any] | None = None


def decode_image(image: str) -> tuple[bytes, str]:
    """Decode a ``data:`` URL or bare base64 string into bytes and mime type."""
    mime_type = "image/png"
    payload = image
    if image.startswith("data:"):
        header, _, payload = image.partition(",")
        mime_type = header[5:].split(";")[0] or mime_type
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError):
        raise ValidationError("base_image is not valid base64 image data")


def derive_target(segment_index: int | None) -> GenerationTarget:
    """Which keyframe a generation is for: no segment is a character sheet,
    the first segment is the root, later segments extend it."""
    if segment_index is None:
        return "character"
    return "root" if segment_index == 0 else "extension"


def build_prompt(request: GenerationRequest) -> str:
    parts = [request.text_prompt or "", request.instruction or ""]
    return "\n".join(p.strip() for p in parts if p and p.strip())


class GenerationProvider(ABC):
    """Base provider. Unsupported capabilities raise ``CapabilityNotSupportedError``."""

    provider_id: str
    kind: Literal["sync", "lro"] = "sync"
    capabilities: frozenset[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def _unsupported(self, capability: Capability) -> CapabilityNotSupportedError:
        return CapabilityNotSupportedError(self.provider_id, capability.value)

    async def preview(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        raise self._unsupported(Capability.PREVIEW)

    async def retouch(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        raise self._unsupported(Capability.RETOUCH)

    async def variant(self, base_image: str, label: str, credential: ResolvedCredential) -> ProviderResult:
        """One shot variant of ``base_image``. Batches call this once per label."""
        raise self._unsupported(Capability.BATCH_VARIANTS)

    async def start_video(self, request: GenerationRequest, credential: ResolvedCredential) -> OperationHandle:
        raise self._unsupported(Capability.GENERATE_VIDEO)

    async def poll(self, handle: OperationHandle, credential: ResolvedCredential) -> OperationStatus:
        raise self._unsupported(Capability.GENERATE_VIDEO)


class HttpProviderMixin:
    """Shared httpx plumbing: an injected client for tests, a fresh one otherwise."""

    _client: httpx.AsyncClient | None
    timeout: float

    @asynccontextmanager
    async def client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def _send(self, method: str, url: str, credential: ResolvedCredential, **kwargs: Any) -> dict[str, Any]:
        headers = {"x-goog-api-key": credential.key, "Content-Type": "application/json"}
        try:
            async with self.client() as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Provider transport error on {method} {url}: {type(e).__name__}")
            raise ProviderTransportError(f"Could not reach provider: {type(e).__name__}")

        if response.status_code in (401, 403):
            if credential.source == "server":
                raise ServerCredentialInvalidError("The provider rejected the server-managed API key")
            raise CredentialInvalidError("The provider rejected the API key")
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Provider returned {response.status_code} for {method} {url}")
            raise ProviderTransportError(f"Provider returned HTTP {response.status_code}")
        if response.status_code >= 400:
            logger.error(f"Provider error: {response.status_code} {response.text[:500]}")
            raise ProviderOperationError(
                f"Provider returned HTTP {response.status_code}",
                raw=_json_or_text(response),
            )
        return response.json()


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# =============================================================================
# Mock providers (development and tests)
# =============================================================================


class MockNanoProvider(GenerationProvider):
    """Echoes the base image back with camera and movement notes."""

    kind = "sync"
    capabilities = frozenset({Capability.PREVIEW, Capability.RETOUCH, Capability.BATCH_VARIANTS})

    def __init__(self, provider_id: str = NANO_FAST):
        self.provider_id = provider_id

    @staticmethod
    def _image(base_image: str | None) -> tuple[bytes, str]:
        if base_image:
            return decode_image(base_image)
        return PLACEHOLDER_PNG, "image/png"

    async def preview(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        data, mime_type = self._image(request.base_image)
        prompt = (request.text_prompt or "").strip()
        return ProviderResult(
            data=data,
            mime_type=mime_type,
            prompt_echo=f"[{request.target}] {prompt}",
            notes={
                "camera_notes": "Medium shot, eye level, 35mm",
                "movement_notes": "Slow push-in",
            },
            request_id=f"nano-prev-{int(time.time() * 1000)}",
        )

    async def retouch(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        data, mime_type = self._image(request.base_image)
        return ProviderResult(
            data=data,
            mime_type=mime_type,
            prompt_echo=f"Retouch ({request.target}): {request.instruction}",
            notes={"target": request.target},
            request_id=f"nano-ret-{int(time.time() * 1000)}",
        )

    async def variant(self, base_image: str, label: str, credential: ResolvedCredential) -> ProviderResult:
        data, mime_type = self._image(base_image)
        return ProviderResult(
            data=data,
            mime_type=mime_type,
            prompt_echo=label,
            notes={
                "camera_notes": f"{label} framing",
                "delta_instruction": f"Reframe the shot as a {label}",
            },
            request_id=f"nano-var-{int(time.time() * 1000)}",
        )


class MockVideoProvider(GenerationProvider):
    """Long-running mock that reports done after ``polls_until_done`` polls."""

    kind = "lro"
    capabilities = frozenset({Capability.GENERATE_VIDEO})

    def __init__(self, provider_id: str = VEO, polls_until_done: int = 2):
        self.provider_id = provider_id
        self.polls_until_done = polls_until_done
        self._polls: dict[str, int] = {}
        self._prompts: dict[str, str] = {}

    async def start_video(self, request: GenerationRequest, credential: ResolvedCredential) -> OperationHandle:
        operation_id = f"mock-operations/{uuid4()}"
        self._polls[operation_id] = 0
        self._prompts[operation_id] = build_prompt(request)
        return OperationHandle(operation_id=operation_id, poll_url=f"mock://{operation_id}")

    async def poll(self, handle: OperationHandle, credential: ResolvedCredential) -> OperationStatus:
        count = self._polls.get(handle.operation_id, 0) + 1
        self._polls[handle.operation_id] = count
        if count < self.polls_until_done:
            return OperationStatus(done=False)
        prompt = self._prompts.pop(handle.operation_id, "")
        self._polls.pop(handle.operation_id, None)
        return OperationStatus(
            done=True,
            result=ProviderResult(
                data=f"mock-video:{prompt}".encode(),
                mime_type="video/mp4",
                prompt_echo=prompt,
                request_id=handle.operation_id,
            ),
        )


# =============================================================================
# Live providers
# =============================================================================


class GeminiImageProvider(HttpProviderMixin, GenerationProvider):
    """Image generation and editing through ``models/{model}:generateContent``."""

    kind = "sync"
    capabilities = frozenset({Capability.PREVIEW, Capability.RETOUCH, Capability.BATCH_VARIANTS})

    def __init__(
        self,
        provider_id: str,
        model: str,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ):
        self.provider_id = provider_id
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    async def _generate(
        self,
        prompt: str,
        base_image: str | None,
        credential: ResolvedCredential,
        request_prefix: str,
    ) -> ProviderResult:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if base_image:
            data, mime_type = decode_image(base_image)
            parts.append({"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode()}})

        body = await self._send(
            "POST",
            f"{self.base_url}/models/{self.model}:generateContent",
            credential,
            json={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
            },
        )

        candidates = body.get("candidates") or []
        image: bytes | None = None
        image_mime = "image/png"
        texts: list[str] = []
        for part in (candidates[0].get("content", {}).get("parts", []) if candidates else []):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data") and image is None:
                image = base64.b64decode(inline["data"])
                image_mime = inline.get("mimeType") or inline.get("mime_type") or image_mime
            elif part.get("text"):
                texts.append(part["text"])

        if image is None:
            logger.info(f"[{self.provider_id}] Response had no image part (text parts: {len(texts)})")
        return ProviderResult(
            data=image,
            mime_type=image_mime,
            prompt_echo=" ".join(texts).strip() or prompt,
            notes={"model": self.model},
            request_id=f"{request_prefix}-{int(time.time() * 1000)}",
        )

    async def preview(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        prompt = f"Storyboard keyframe ({request.target}). {build_prompt(request)}"
        return await self._generate(prompt, request.base_image, credential, "nano-prev")

    async def retouch(self, request: GenerationRequest, credential: ResolvedCredential) -> ProviderResult:
        prompt = f"Edit this {request.target} keyframe: {request.instruction}"
        return await self._generate(prompt, request.base_image, credential, "nano-ret")

    async def variant(self, base_image: str, label: str, credential: ResolvedCredential) -> ProviderResult:
        prompt = f"Same scene and characters, reframed as a {label} shot."
        return await self._generate(prompt, base_image, credential, "nano-var")


class VeoVideoProvider(HttpProviderMixin, GenerationProvider):
    """Video generation through ``:predictLongRunning`` plus operation polling."""

    kind = "lro"
    capabilities = frozenset({Capability.GENERATE_VIDEO})

    def __init__(
        self,
        model: str,
        base_url: str,
        provider_id: str = VEO,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        self.provider_id = provider_id
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    async def start_video(self, request: GenerationRequest, credential: ResolvedCredential) -> OperationHandle:
        instance: dict[str, Any] = {"prompt": build_prompt(request)}
        if request.base_image:
            data, mime_type = decode_image(request.base_image)
            instance["image"] = {"bytesBase64Encoded": base64.b64encode(data).decode(), "mimeType": mime_type}

        body = await self._send(
            "POST",
            f"{self.base_url}/models/{self.model}:predictLongRunning",
            credential,
            json={"instances": [instance], "parameters": {"sampleCount": 1, **request.provider_options}},
        )
        name = body.get("name")
        if not name:
            raise ProviderOperationError("Provider did not return an operation name", raw=body)
        logger.info(f"[{self.provider_id}] Started operation {name}")
        return OperationHandle(operation_id=name, poll_url=f"{self.base_url}/{name}")

    async def poll(self, handle: OperationHandle, credential: ResolvedCredential) -> OperationStatus:
        body = await self._send("GET", handle.poll_url, credential)
        if not body.get("done"):
            return OperationStatus(done=False)
        if body.get("error"):
            return OperationStatus(done=True, error=body["error"])

        response = body.get("response") or {}
        samples = (response.get("generateVideoResponse") or {}).get("generatedSamples") or []
        videos = response.get("videos") or []
        if samples:
            uri = (samples[0].get("video") or {}).get("uri")
            if uri:
                return OperationStatus(done=True, result=await self._download(uri, credential, handle))
        if videos:
            video = videos[0]
            if video.get("bytesBase64Encoded"):
                return OperationStatus(
                    done=True,
                    result=ProviderResult(
                        data=base64.b64decode(video["bytesBase64Encoded"]),
                        mime_type=video.get("mimeType", "video/mp4"),
                        request_id=handle.operation_id,
                    ),
                )
            if video.get("gcsUri"):
                return OperationStatus(
                    done=True,
                    result=ProviderResult(
                        uri=video["gcsUri"],
                        mime_type=video.get("mimeType", "video/mp4"),
                        request_id=handle.operation_id,
                    ),
                )
        # Done without a payload; the orchestrator treats this as no output.
        return OperationStatus(done=True, result=ProviderResult(request_id=handle.operation_id))

    async def _download(self, uri: str, credential: ResolvedCredential, handle: OperationHandle) -> ProviderResult:
        """Generated-file URIs need the API key, so fetch the bytes here."""
        try:
            async with self.client() as client:
                response = await client.get(
                    uri, headers={"x-goog-api-key": credential.key}, follow_redirects=True
                )
        except httpx.TransportError as e:
            raise ProviderTransportError(f"Could not download generated video: {type(e).__name__}")
        if response.status_code != 200:
            raise ProviderTransportError(f"Video download returned HTTP {response.status_code}")
        return ProviderResult(
            data=response.content,
            mime_type=response.headers.get("content-type", "video/mp4").split(";")[0],
            request_id=handle.operation_id,
        )


# =============================================================================
# Registry
# =============================================================================


class ProviderRegistry:
    """Explicit provider lookup table, built once at startup."""

    def __init__(self) -> None:
        self._providers: dict[str, GenerationProvider] = {}

    def register(self, provider: GenerationProvider) -> None:
        if provider.provider_id in self._providers:
            raise ValueError(f"Provider already registered: {provider.provider_id}")
        self._providers[provider.provider_id] = provider

    def get(self, provider_id: str) -> GenerationProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def require(self, provider_id: str, capability: Capability) -> GenerationProvider:
        provider = self.get(provider_id)
        if not provider.supports(capability):
            raise CapabilityNotSupportedError(provider_id, capability.value)
        return provider

    def ids(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers


def build_provider_registry(settings: Settings, client: httpx.AsyncClient | None = None) -> ProviderRegistry:
    registry = ProviderRegistry()
    if settings.provider_mode == "mock":
        registry.register(MockNanoProvider(NANO_FAST))
        registry.register(MockNanoProvider(NANO_PRO))
        registry.register(MockVideoProvider(VEO, polls_until_done=settings.mock_video_polls_until_done))
        return registry

    timeout = settings.provider_request_timeout_s
    base_url = settings.gemini_api_base_url
    registry.register(GeminiImageProvider(NANO_FAST, settings.nano_fast_model, base_url, client, timeout))
    registry.register(GeminiImageProvider(NANO_PRO, settings.nano_pro_model, base_url, client, timeout))
    registry.register(VeoVideoProvider(settings.veo_model, base_url, client=client, timeout=timeout))
    return registry
