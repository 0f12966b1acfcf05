"""Classification router, automatic category and priority for incident reports."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.classification import ClassifyRequest, SuggestPriorityRequest, SuggestPriorityResponse

classification_router = APIRouter(prefix="/ai", tags=["Classification"])


@classification_router.post("/classify", dependencies=[Depends(verify_api_key)])
async def handle_classify(request: Request, body: ClassifyRequest) -> JSONResponse:
    result = await request.app.state.classification_service.classify_report(body.description, body.location)
    return JSONResponse(content=result.model_dump(by_alias=True))


@classification_router.post("/classify/suggest-priority", dependencies=[Depends(verify_api_key)])
async def handle_suggest_priority(request: Request, body: SuggestPriorityRequest) -> JSONResponse:
    priority = await request.app.state.classification_service.suggest_priority(body.description)
    return JSONResponse(content=SuggestPriorityResponse(priority=priority).model_dump())
