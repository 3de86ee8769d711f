from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Request, status
from fastapi.responses import JSONResponse

from studio.api.deps import Context, Services, UserApiKey, envelope, envelope_content
from studio.middleware.request_context import read_idempotency_key
from studio.schemas.envelope import EnvelopeResponse
from studio.schemas.generation import GenerateRevisionRequest, RevisionOutcomeResponse
from studio.schemas.timeline import KeyframeCreate, RevisionRetry

router = APIRouter()


@router.get("/{revision_id}", response_model=EnvelopeResponse)
async def get_revision(revision_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.repository.get_revision(revision_id))


@router.delete("/{revision_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_revision(revision_id: UUID, services: Services) -> None:
    await services.revisions.delete_revision(revision_id)


@router.post("/{revision_id}/generate")
async def generate_revision(
    revision_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services,
    context: Context,
    user_key: UserApiKey,
    body: GenerateRevisionRequest | None = None,
) -> JSONResponse:
    """Queue a revision for generation.

    Returns 202 with the queued revision and runs the generation in the
    background, or with ``wait`` runs it inline and returns the outcome.
    Credential problems are reported before anything is queued.
    """
    body = body or GenerateRevisionRequest()
    idempotency_key = read_idempotency_key(request)
    fingerprint = f"generate:{revision_id}:{body.wait}"
    cached = services.idempotency.lookup(idempotency_key, fingerprint)
    if cached is not None:
        return JSONResponse(status_code=cached.status_code, content=cached.body)

    orchestrator = services.orchestrator
    credential = orchestrator.resolve_credential(user_key)
    if body.wait:
        outcome = await orchestrator.run_revision(revision_id, credential, priority=body.priority)
        data = RevisionOutcomeResponse(revision=outcome.revision, outcome=outcome.outcome)
        status_code = status.HTTP_200_OK
    else:
        revision = await orchestrator.submit_revision(revision_id)
        background_tasks.add_task(orchestrator.run_revision, revision_id, credential, priority=body.priority)
        data = RevisionOutcomeResponse(revision=revision, outcome="queued")
        status_code = status.HTTP_202_ACCEPTED

    content = envelope_content(context, data)
    services.idempotency.save(idempotency_key, fingerprint, status_code, content)
    return JSONResponse(status_code=status_code, content=content)


@router.post("/{revision_id}/retry", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def retry_revision(
    revision_id: UUID, services: Services, context: Context, body: RevisionRetry | None = None
) -> EnvelopeResponse:
    """Branch a draft child from a failed revision (or re-queue it in place)."""
    body = body or RevisionRetry()
    return envelope(context, await services.revisions.retry(revision_id, in_place=body.in_place))


@router.get("/{revision_id}/keyframes", response_model=EnvelopeResponse)
async def list_keyframes(revision_id: UUID, services: Services, context: Context) -> EnvelopeResponse:
    return envelope(context, await services.revisions.list_keyframes(revision_id))


@router.post("/{revision_id}/keyframes", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def add_keyframe(
    revision_id: UUID, body: KeyframeCreate, services: Services, context: Context
) -> EnvelopeResponse:
    keyframe = await services.revisions.add_keyframe(revision_id, body.t_sec, body.asset_id, body.note)
    return envelope(context, keyframe)
