"""Sync router, administrative operations on the knowledge index."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.events import BulkSyncRequest

sync_router = APIRouter(prefix="/ai/sync", tags=["Sync"])


@sync_router.post("/bulk", dependencies=[Depends(verify_api_key)])
async def handle_bulk_sync(request: Request, body: BulkSyncRequest) -> JSONResponse:
    """Queue batch indexing jobs for all given entities.

    Returns:
        JSONResponse: {"queued": n, "failed": m}
    """
    result = await request.app.state.sync_coordinator.bulk_sync(body.entities)
    return JSONResponse(content=result.model_dump())


@sync_router.post("/reindex/{vector_id}", dependencies=[Depends(verify_api_key)])
async def handle_reindex(request: Request, vector_id: str) -> JSONResponse:
    """Re-index one entry from the content stored in the tracker. 404 if unknown."""
    job_id = await request.app.state.sync_coordinator.reindex_document(vector_id)
    return JSONResponse(content={"status": "queued", "vector_id": vector_id, "job_id": job_id})


@sync_router.post("/reconcile", dependencies=[Depends(verify_api_key)])
async def handle_reconcile(request: Request) -> JSONResponse:
    """Queue deletes for orphaned points and re-indexes for missing ones."""
    state = request.app.state
    result = await state.sync_coordinator.reconcile(state.rag_client, state.collection)
    return JSONResponse(content=result.model_dump())


@sync_router.get("/status", dependencies=[Depends(verify_api_key)])
async def handle_sync_status(request: Request) -> JSONResponse:
    """Queue counters, tracker counters and the active collection."""
    state = request.app.state
    queue_counts = await state.queue.get_counts()
    tracker_counts = await state.tracker.get_counts()
    return JSONResponse(content={
        "collection": state.collection.model_dump(),
        "queue": queue_counts.model_dump(),
        "tracker": tracker_counts,
        "pending_events": state.sync_coordinator.pending_events(),
    })
