"""Map live chat errors raised on the REST path to JSON error responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apps.livechat.exceptions import LiveChatError

logger = logging.getLogger(__name__)


def create_error_response(code: str, message: str, session_id: str = None) -> dict:
    error = {"code": code, "message": message}
    if session_id:
        error["sessionId"] = session_id
    return {"error": error}


async def livechat_error_handler(request: Request, exc: LiveChatError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.code, exc.message, exc.session_id),
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(LiveChatError, livechat_error_handler)
