from fastapi import Header, HTTPException, Request
from typing import Optional

from logging_config import get_logger
from realtime_core.errors import AuthError
from realtime_core.hub import ChatHub
from realtime_core.ports import UserIdentity

logger = get_logger(__name__)


def get_hub(request: Request) -> ChatHub:
    return request.app.state.hub


def get_store(request: Request):
    return request.app.state.store


async def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> UserIdentity:
    hub: ChatHub = request.app.state.hub
    try:
        return await hub.gate.authenticate(authorization)
    except AuthError as e:
        logger.warning(f"Rejected request to {request.url.path}: {e.message}")
        raise HTTPException(status_code=401, detail=e.message)
