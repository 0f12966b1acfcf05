"""Event router for domain lifecycle events.

The facility-management features post here after their own write has
committed. Events are handed to the sync coordinator's background dispatcher
so the response never waits for queueing or indexing.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.events import LifecycleEvent

event_router = APIRouter(prefix="/ai", tags=["Events"])


@event_router.post("/events", dependencies=[Depends(verify_api_key)], status_code=202)
async def handle_lifecycle_event(request: Request, body: LifecycleEvent) -> JSONResponse:
    """Accept a created/updated/deleted event for asynchronous indexing.

    Returns:
        JSONResponse: 202 acknowledgement with the action and entity id.
    """
    entity_id = body.entity.id if body.entity is not None else body.entity_id
    request.app.state.logging.info("Lifecycle event received: %s %s", body.action, entity_id)
    request.app.state.sync_coordinator.submit(body)
    return JSONResponse(status_code=202, content={"status": "accepted", "action": body.action, "entity_id": entity_id})
