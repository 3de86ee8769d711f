"""Generation orchestrator.

Resolves the credential, dispatches to a registered provider, polls
long-running operations, stores the artifact and drives the revision to a
terminal state. Every failure after a revision starts is recorded on the
revision as an error code and message; nothing escapes raw.
"""

import asyncio
import base64
import logging
import mimetypes
import time
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID, uuid4

import httpx

from studio.exceptions import (
    GenerationCancelledError,
    GenerationTimeoutError,
    InternalError,
    InvalidRevisionTransitionError,
    NoOutputProducedError,
    ProviderOperationError,
    ProviderTransportError,
    SegmentBusyError,
    StorageError,
    StudioError,
    ValidationError,
)
from studio.schemas.generation import (
    BatchRequest,
    BatchResult,
    GenerationQueueItem,
    GenerationRequest,
    GenerationResult,
    GenerationTarget,
    Quality,
    VariantResult,
)
from studio.schemas.storage import UploadOptions
from studio.schemas.timeline import Asset, Revision, RevisionStatus
from studio.services.credentials import ResolvedCredential, resolve_credential
from studio.services.generation_providers import (
    NANO_FAST,
    NANO_PRO,
    Capability,
    GenerationProvider,
    OperationHandle,
    ProviderRegistry,
    ProviderResult,
)
from studio.services.generation_queue import GenerationQueue
from studio.services.repository import TimelineRepository
from studio.services.revision_service import RevisionOutcome, RevisionService
from studio.services.storage_service import StorageSelector
from studio.utils.logging_setup import log_context

logger = logging.getLogger(__name__)


def choose_variant(explicit_quality: Quality | None, target: GenerationTarget) -> str:
    """Pick the image model variant.

    An explicit quality always wins. Otherwise only the root keyframe gets the
    high-fidelity model; extensions and character sheets use the fast one.
    """
    if explicit_quality == "pro":
        return NANO_PRO
    if explicit_quality == "fast":
        return NANO_FAST
    return NANO_PRO if target == "root" else NANO_FAST


def _extension(mime_type: str) -> str:
    return mimetypes.guess_extension(mime_type) or ".bin"


class GenerationOrchestrator:
    def __init__(
        self,
        repository: TimelineRepository,
        providers: ProviderRegistry,
        storage: StorageSelector,
        revisions: RevisionService,
        queue: GenerationQueue,
        *,
        server_key: str | None = None,
        min_key_length: int = 20,
        poll_interval_s: float = 5.0,
        timeout_s: float = 600.0,
        cache_control: str = "3600",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository
        self.providers = providers
        self.storage = storage
        self.revisions = revisions
        self.queue = queue
        self._server_key = server_key
        self.min_key_length = min_key_length
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.cache_control = cache_control
        self._clock = clock
        self._sleep = sleep

    def resolve_credential(self, user_key: str | None) -> ResolvedCredential:
        return resolve_credential(self._server_key, user_key, min_length=self.min_key_length)

    # ------------------------------------------------------------------
    # Stateless image generation
    # ------------------------------------------------------------------

    def _select_provider(
        self,
        provider_id: str | None,
        quality: Quality | None,
        target: GenerationTarget,
        capability: Capability,
    ) -> GenerationProvider:
        return self.providers.require(provider_id or choose_variant(quality, target), capability)

    async def _artifact_ref(self, result: ProviderResult, stem: str) -> str:
        if result.data:
            upload = await self.storage.upload(
                result.data,
                f"{stem}{_extension(result.mime_type)}",
                UploadOptions(content_type=result.mime_type, cache_control=self.cache_control),
            )
            return upload.public_url
        if result.uri:
            return result.uri
        raise NoOutputProducedError()

    async def _generate_image(
        self,
        request: GenerationRequest,
        capability: Capability,
        user_key: str | None,
    ) -> GenerationResult:
        credential = self.resolve_credential(user_key)
        provider = self._select_provider(request.provider, request.quality, request.target, capability)
        if capability == Capability.RETOUCH:
            result = await provider.retouch(request, credential)
        else:
            result = await provider.preview(request, credential)

        request_id = result.request_id or f"gen-{uuid4()}"
        ref = await self._artifact_ref(result, request_id)
        logger.info(f"[{provider.provider_id}] {capability.value} {request_id} stored")
        return GenerationResult(
            request_id=request_id,
            preview_artifact_ref=ref,
            generated_prompt_echo=result.prompt_echo,
            provider=provider.provider_id,
            notes=result.notes,
        )

    async def preview(self, request: GenerationRequest, *, user_key: str | None = None) -> GenerationResult:
        return await self._generate_image(request, Capability.PREVIEW, user_key)

    async def retouch(self, request: GenerationRequest, *, user_key: str | None = None) -> GenerationResult:
        return await self._generate_image(request, Capability.RETOUCH, user_key)

    async def batch_variants(self, request: BatchRequest, *, user_key: str | None = None) -> BatchResult:
        """Generate one variant per label, one at a time.

        A failing label yields an entry with ``artifact_ref=None`` and an error
        payload; the remaining labels still run. The result always has one
        entry per requested label, in request order.
        """
        credential = self.resolve_credential(user_key)
        provider = self._select_provider(
            request.provider, request.quality, request.target, Capability.BATCH_VARIANTS
        )
        request_id = f"nano-var-{int(time.time() * 1000)}"

        variants: list[VariantResult] = []
        for index, label in enumerate(request.shot_list):
            try:
                result = await provider.variant(request.base_image, label, credential)
                ref = await self._artifact_ref(result, f"{request_id}-{index}")
                note = result.notes.get("delta_instruction") or result.prompt_echo or None
                variants.append(VariantResult(label=label, artifact_ref=ref, note=note))
            except StudioError as e:
                logger.warning(f"[{provider.provider_id}] Variant '{label}' failed: {e.code}")
                variants.append(
                    VariantResult(label=label, artifact_ref=None, note=e.message, error=e.to_error_json())
                )
            except Exception as e:
                logger.exception(f"[{provider.provider_id}] Variant '{label}' raised {type(e).__name__}")
                error = InternalError(f"Variant generation failed: {type(e).__name__}")
                variants.append(
                    VariantResult(label=label, artifact_ref=None, note=error.message, error=error.to_error_json())
                )
        return BatchResult(request_id=request_id, variants=variants)

    # ------------------------------------------------------------------
    # Revision-bound generation
    # ------------------------------------------------------------------

    async def submit_revision(self, revision_id: UUID) -> Revision:
        """Validate and queue a revision so a worker can run it."""
        revision = await self.repository.get_revision(revision_id)
        self.providers.get(revision.provider)
        self.queue.check_admission(revision.segment_id)
        if revision.status in (RevisionStatus.DRAFT, RevisionStatus.FAILED):
            return await self.revisions.mark_queued(revision_id)
        if revision.status == RevisionStatus.QUEUED:
            return revision
        raise InvalidRevisionTransitionError(
            str(revision_id), revision.status.value, RevisionStatus.QUEUED.value
        )

    async def run_revision(
        self,
        revision_id: UUID,
        credential: ResolvedCredential,
        *,
        priority: int = 0,
        cancel: asyncio.Event | None = None,
    ) -> RevisionOutcome:
        """Run one revision to a terminal state.

        Waits for the segment's generation slot, so runs for one segment never
        overlap. ``cancel`` is checked between polls.
        """
        revision = await self.repository.get_revision(revision_id)
        if revision.status != RevisionStatus.QUEUED:
            revision = await self.submit_revision(revision_id)

        item = GenerationQueueItem(segment_id=revision.segment_id, revision_id=revision_id, priority=priority)
        with log_context(segment_id=str(revision.segment_id), revision_id=str(revision_id)):
            try:
                self.queue.check_admission(revision.segment_id)
            except SegmentBusyError as e:
                # Admitted at submit time but another run took the segment since.
                logger.info(f"Revision {revision_id} rejected: segment {revision.segment_id} is busy")
                return await self.revisions.mark_failed(revision_id, e)
            async with self.queue.slot(item):
                return await self._execute(revision_id, credential, cancel)

    async def _execute(
        self,
        revision_id: UUID,
        credential: ResolvedCredential,
        cancel: asyncio.Event | None,
    ) -> RevisionOutcome:
        started = self._clock()
        revision = await self.repository.get_revision(revision_id)
        if revision.status != RevisionStatus.QUEUED:
            raise InvalidRevisionTransitionError(
                str(revision_id), revision.status.value, RevisionStatus.RUNNING.value
            )
        metrics: dict[str, Any] = {"provider": revision.provider, "credential_source": credential.source}

        try:
            provider = self.providers.get(revision.provider)
            request = await self._request_from_revision(revision)
            await self.revisions.mark_running(revision_id)
            logger.info(f"Dispatching revision {revision_id} to {provider.provider_id} ({provider.kind})")

            if provider.kind == "lro":
                provider = self.providers.require(provider.provider_id, Capability.GENERATE_VIDEO)
                handle = await provider.start_video(request, credential)
                metrics["operation_id"] = handle.operation_id
                result = await self._poll_until_done(provider, handle, credential, cancel, metrics)
            elif request.instruction and request.base_image:
                result = await self.providers.require(provider.provider_id, Capability.RETOUCH).retouch(
                    request, credential
                )
            else:
                result = await self.providers.require(provider.provider_id, Capability.PREVIEW).preview(
                    request, credential
                )

            if not result.has_output:
                raise NoOutputProducedError()
            asset = await self._persist_output(revision, result)
            metrics["latency_ms"] = int((self._clock() - started) * 1000)
            outcome = await self.revisions.mark_succeeded(revision_id, asset.id, metrics)
            logger.info(f"Revision {revision_id} {outcome.outcome} in {metrics['latency_ms']}ms")
            return outcome
        except StudioError as e:
            metrics["latency_ms"] = int((self._clock() - started) * 1000)
            return await self.revisions.mark_failed(revision_id, e, metrics)
        except Exception as e:
            logger.exception(f"Unexpected error while generating revision {revision_id}")
            metrics["latency_ms"] = int((self._clock() - started) * 1000)
            return await self.revisions.mark_failed(
                revision_id, InternalError(f"Generation failed: {type(e).__name__}"), metrics
            )

    async def _poll_until_done(
        self,
        provider: GenerationProvider,
        handle: OperationHandle,
        credential: ResolvedCredential,
        cancel: asyncio.Event | None,
        metrics: dict[str, Any],
    ) -> ProviderResult:
        """Poll at a fixed interval until done, error, cancel or the ceiling.

        Transport errors are retried until the ceiling. No poll is issued at
        or after the ceiling.
        """
        deadline = self._clock() + self.timeout_s
        polls = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise GenerationCancelledError(raw={"operation": handle.operation_id, "polls": polls})
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise GenerationTimeoutError(
                    f"Operation did not finish within {self.timeout_s:g}s ({polls} polls)",
                    raw={"operation": handle.operation_id, "polls": polls},
                )
            await self._sleep(min(self.poll_interval_s, remaining))
            if cancel is not None and cancel.is_set():
                continue
            if self._clock() >= deadline:
                continue

            polls += 1
            metrics["polls"] = polls
            try:
                status = await provider.poll(handle, credential)
            except ProviderTransportError as e:
                logger.warning(f"Poll {polls} for {handle.operation_id} failed transiently: {e.message}")
                continue

            if not status.done:
                continue
            if status.error is not None:
                message = status.error.get("message") if isinstance(status.error, dict) else None
                raise ProviderOperationError(message or None, raw=status.error)
            return status.result or ProviderResult()

    async def _request_from_revision(self, revision: Revision) -> GenerationRequest:
        prompt = revision.prompt_json
        text = "\n".join(
            str(prompt[key]).strip()
            for key in ("root_prompt", "extend_prompt")
            if prompt.get(key) and str(prompt[key]).strip()
        )
        options = dict(prompt.get("provider_options") or {})
        if prompt.get("negative_prompt"):
            options.setdefault("negativePrompt", prompt["negative_prompt"])

        base_image = prompt.get("base_image")
        if revision.base_asset_id is not None:
            base_image = await self._load_asset_as_data_url(revision.base_asset_id)

        return GenerationRequest(
            base_image=base_image,
            text_prompt=text or None,
            instruction=prompt.get("instruction"),
            target=prompt.get("target", "root"),
            quality=prompt.get("quality"),
            provider=revision.provider,
            provider_options=options,
        )

    async def _load_asset_as_data_url(self, asset_id: UUID) -> str:
        asset = await self.repository.get_asset(asset_id)
        if asset.storage_provider is None:
            raise ValidationError(f"Base asset {asset_id} has no stored bytes")
        backend = self.storage.get(asset.storage_provider)
        try:
            data = await backend.download(asset.storage_path)
        except (OSError, httpx.HTTPError) as e:
            raise StorageError(f"Could not read base asset {asset_id}: {e}")
        return f"data:{asset.mime_type};base64,{base64.b64encode(data).decode()}"

    async def _persist_output(self, revision: Revision, result: ProviderResult) -> Asset:
        segment = await self.repository.get_segment(revision.segment_id)
        kind = "video" if result.mime_type.startswith("video/") else "image"
        if result.data:
            upload = await self.storage.upload(
                result.data,
                f"{revision.id}{_extension(result.mime_type)}",
                UploadOptions(
                    content_type=result.mime_type,
                    cache_control=self.cache_control,
                    metadata={"revision_id": str(revision.id), "segment_id": str(segment.id)},
                ),
            )
            asset = Asset(
                project_id=segment.project_id,
                kind=kind,
                storage_path=upload.path,
                storage_provider=upload.provider,
                public_url=upload.public_url,
                mime_type=result.mime_type,
                file_size_bytes=upload.size,
            )
        else:
            # The provider kept the file (e.g. a gs:// URI); reference it as-is.
            asset = Asset(
                project_id=segment.project_id,
                kind=kind,
                storage_path=result.uri or "",
                public_url=result.uri if (result.uri or "").startswith("http") else None,
                mime_type=result.mime_type,
            )
        return await self.repository.create_asset(asset)
