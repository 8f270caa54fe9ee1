from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from fuze.config import get_settings
from fuze.extractor import CollaboratorError
from fuze.proxy import OpenAIProxy
from fuze.schemas import (
    HealthOut,
    MessageOut,
    StatisticsOut,
    SubmissionCreated,
    SubmissionIn,
    SubmissionOut,
)
from fuze.store import RecordStore, StoreUnavailable, build_store

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    store = build_store(settings)
    store.open()
    app.state.store = store
    app.state.proxy = OpenAIProxy.from_settings(settings)
    try:
        yield
    finally:
        store.close()


app = FastAPI(
    title="FUZE Submission Portal",
    version="0.1.0",
    description=(
        "Intake API for company and technology submissions. Stores structured "
        "and transcript-only submissions, reports aggregate statistics, and "
        "relays chat and transcription calls to OpenAI with a server-held key."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Submissions", "description": "Create, browse, update, and delete submissions."},
        {"name": "Stats", "description": "Aggregate statistics."},
        {"name": "AI", "description": "OpenAI proxy endpoints. Requires OPENAI_API_KEY on the server."},
        {"name": "Admin", "description": "Operational endpoints."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_proxy(request: Request) -> OpenAIProxy:
    return request.app.state.proxy


def _store_failure(action: str, exc: StoreUnavailable) -> HTTPException:
    log.exception("Store failure while trying to %s: %s", action, exc)
    return HTTPException(500, f"Failed to {action}")


def _not_found(submission_id: int) -> HTTPException:
    log.debug("Submission %s not found", submission_id)
    return HTTPException(404, "Submission not found")


def _collaborator_response(exc: CollaboratorError) -> JSONResponse:
    content = exc.body if exc.body is not None else {"error": str(exc)}
    return JSONResponse(status_code=exc.status_code, content=content)


# ---------------------------------------------------------------------------
# Routes: Submissions
# ---------------------------------------------------------------------------


@app.post("/api/submissions", response_model=SubmissionCreated, status_code=201,
          tags=["Submissions"], summary="Create a submission (all fields optional)")
async def create_submission(body: SubmissionIn, store: RecordStore = Depends(get_store)):
    try:
        submission_id = store.create(body.provided_fields())
    except StoreUnavailable as exc:
        raise _store_failure("save submission", exc) from exc
    log.info("Saved submission %s", submission_id)
    return SubmissionCreated(message="Submission saved successfully", submission_id=submission_id)


@app.get("/api/submissions", response_model=list[SubmissionOut],
         tags=["Submissions"], summary="List submissions, newest first")
async def list_submissions(store: RecordStore = Depends(get_store)):
    try:
        return store.list()
    except StoreUnavailable as exc:
        raise _store_failure("fetch submissions", exc) from exc


@app.get("/api/submissions/{submission_id}", response_model=SubmissionOut,
         tags=["Submissions"], summary="Get one submission")
async def get_submission(submission_id: int, store: RecordStore = Depends(get_store)):
    try:
        submission = store.get(submission_id)
    except StoreUnavailable as exc:
        raise _store_failure("fetch submission", exc) from exc
    if submission is None:
        raise _not_found(submission_id)
    return submission


@app.put("/api/submissions/{submission_id}", response_model=MessageOut,
         tags=["Submissions"], summary="Partially update a submission (only sent fields change)")
async def update_submission(submission_id: int, body: SubmissionIn, store: RecordStore = Depends(get_store)):
    try:
        changed = store.update(submission_id, body.provided_fields())
    except StoreUnavailable as exc:
        raise _store_failure("update submission", exc) from exc
    if not changed:
        raise _not_found(submission_id)
    return {"message": "Submission updated successfully"}


@app.delete("/api/submissions/{submission_id}", response_model=MessageOut,
            tags=["Submissions"], summary="Permanently delete a submission")
async def delete_submission(submission_id: int, store: RecordStore = Depends(get_store)):
    try:
        changed = store.delete(submission_id)
    except StoreUnavailable as exc:
        raise _store_failure("delete submission", exc) from exc
    if not changed:
        raise _not_found(submission_id)
    return {"message": "Submission deleted successfully"}


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/statistics", response_model=StatisticsOut,
         tags=["Stats"], summary="Totals, average capability score, registration and maturity counts")
async def get_statistics(store: RecordStore = Depends(get_store)):
    try:
        return store.statistics()
    except StoreUnavailable as exc:
        raise _store_failure("fetch statistics", exc) from exc


# ---------------------------------------------------------------------------
# Routes: AI proxy
# ---------------------------------------------------------------------------


@app.post("/api/chat", tags=["AI"], summary="Relay a chat completion request to OpenAI")
async def chat(payload: dict[str, Any] = Body(...), proxy: OpenAIProxy = Depends(get_proxy)):
    try:
        return await proxy.chat(payload)
    except CollaboratorError as exc:
        return _collaborator_response(exc)


@app.post("/api/transcribe", tags=["AI"], summary="Relay an audio file to OpenAI transcription")
async def transcribe(
    file: UploadFile | None = File(None),
    model: str | None = Form(None),
    proxy: OpenAIProxy = Depends(get_proxy),
):
    if file is None:
        raise HTTPException(400, "No audio file provided")
    audio = await file.read()
    try:
        return await proxy.transcribe(
            audio, filename=file.filename or "audio.webm",
            content_type=file.content_type, model=model,
        )
    except CollaboratorError as exc:
        return _collaborator_response(exc)


# ---------------------------------------------------------------------------
# Routes: Admin
# ---------------------------------------------------------------------------


@app.get("/api/health", response_model=HealthOut, tags=["Admin"], summary="Liveness and active store backend")
async def health(store: RecordStore = Depends(get_store)):
    return {"status": "ok", "store": store.backend}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("fuze.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
