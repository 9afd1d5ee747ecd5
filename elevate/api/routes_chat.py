import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse, StreamingResponse

from elevate.core import settings
from elevate.schemas.chat import (
    ChatStreamRequest,
    SessionDeleteResponse,
    TitleRequest,
    TitleResponse,
)
from elevate.services import flowise_relay
from elevate.services.flowise_relay import RelayError
from elevate.services.title_generation import generate_title

logger = logging.getLogger("elevate.routes_chat")

router = APIRouter(prefix="/chat", tags=["chat"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _error_response(exc: RelayError) -> JSONResponse:
    logger.error("Relay error (%s): %s", exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@router.post("/stream", response_model=None)
async def chat_stream(payload: ChatStreamRequest) -> StreamingResponse | JSONResponse:
    try:
        upstream = await flowise_relay.open_stream(payload)
    except RelayError as exc:
        return _error_response(exc)

    return StreamingResponse(
        upstream.relay(settings.heartbeat_sec()),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.post("/act", response_model=None)
async def chat_act(payload: ChatStreamRequest) -> JSONResponse:
    try:
        reply = await flowise_relay.run_agent(payload)
    except RelayError as exc:
        return _error_response(exc)
    return JSONResponse(content=reply.model_dump(by_alias=True))


@router.post("/title", response_model=TitleResponse)
def chat_title(payload: TitleRequest) -> TitleResponse:
    return TitleResponse(title=generate_title(payload.prompt))


@router.delete("/sessions/{session_id}", response_model=SessionDeleteResponse)
async def delete_chat_session(session_id: str) -> SessionDeleteResponse:
    return await flowise_relay.delete_session(session_id)
