"""Chat router, natural language questions answered from the knowledge collection."""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.search import ChatRequest, QueryOptions

chat_router = APIRouter(prefix="/ai/chat", tags=["Chat"])


@chat_router.post("", dependencies=[Depends(verify_api_key)])
async def handle_chat(request: Request, body: ChatRequest) -> JSONResponse:
    """Answer a question, optionally restricted to source types and with conversation memory.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (ChatRequest): The question, the optional user id and source types.

    Returns:
        JSONResponse: answer, sources and token usage.
    """
    retrieval_service = request.app.state.retrieval_service
    result = await retrieval_service.do_query(
        body.query,
        QueryOptions(source_types=body.source_types, user_id=body.user_id),
    )
    return JSONResponse(content=result.model_dump(mode="json"))


@chat_router.get("/faq", dependencies=[Depends(verify_api_key)])
async def handle_chat_faq(
    request: Request,
    q: str = Query(min_length=3, max_length=500),
    user_id: str | None = None,
) -> JSONResponse:
    result = await request.app.state.retrieval_service.chat_faq(q, user_id=user_id)
    return JSONResponse(content=result.model_dump(mode="json"))


@chat_router.get("/facilities", dependencies=[Depends(verify_api_key)])
async def handle_search_facilities(
    request: Request,
    q: str = Query(min_length=3, max_length=500),
    user_id: str | None = None,
) -> JSONResponse:
    result = await request.app.state.retrieval_service.search_facilities(q, user_id=user_id)
    return JSONResponse(content=result.model_dump(mode="json"))


@chat_router.get("/sop", dependencies=[Depends(verify_api_key)])
async def handle_search_sops(
    request: Request,
    q: str = Query(min_length=3, max_length=500),
    user_id: str | None = None,
) -> JSONResponse:
    result = await request.app.state.retrieval_service.search_sops(q, user_id=user_id)
    return JSONResponse(content=result.model_dump(mode="json"))


@chat_router.get("/similar-reports", dependencies=[Depends(verify_api_key)])
async def handle_search_similar_reports(
    request: Request,
    q: str = Query(min_length=3, max_length=500),
    user_id: str | None = None,
) -> JSONResponse:
    result = await request.app.state.retrieval_service.search_similar_reports(q, user_id=user_id)
    return JSONResponse(content=result.model_dump(mode="json"))
