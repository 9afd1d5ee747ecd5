from fastapi import APIRouter

from elevate.core import settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "chatflow_configured": bool(settings.flowise_chatflow_id()),
        "act_chatflow_configured": bool(settings.flowise_act_chatflow_id()),
    }
