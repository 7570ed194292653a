"""FastAPI router for the capture service.

Relays command messages to the :class:`~page_capture.capturer.orchestrator.Capturer`
held on ``app.state.capturer``.  Request and response bodies use the same
camelCase shapes as the page agent's messages.

Routes:
    POST   /capturer/{command}  : run a capture command (``captureTab``, …)
    GET    /capturer/sessions   : active sessions and pending downloads
"""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from page_capture.capturer.orchestrator import Capturer
from page_capture.core.exceptions import UnknownCommandError

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_capturer(request: Request) -> Capturer:
    """Return the capturer of the running application."""
    return request.app.state.capturer


def _decode_blob(payload: dict[str, Any]) -> dict[str, Any]:
    """Decode the base64 ``data`` field of a ``downloadBlob`` message."""
    data = payload.get("data")
    if not isinstance(data, str):
        return payload
    try:
        decoded = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="data must be base64 encoded.",
        ) from exc
    return {**payload, "data": decoded}


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/sessions")
async def list_sessions(
    capturer: Annotated[Capturer, Depends(get_capturer)],
) -> dict[str, Any]:
    """List active capture sessions.

    Returns:
        ``{"sessions": [...], "pendingDownloads": n}``.
    """
    return {
        "sessions": capturer.sessions.session_ids(),
        "pendingDownloads": len(capturer.coordinator),
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@router.post("/{command}")
async def run_command(
    command: str,
    capturer: Annotated[Capturer, Depends(get_capturer)],
    payload: Annotated[dict[str, Any], Body()],
) -> Any:
    """Run one capture command.

    Args:
        command: Command name, e.g. ``captureTab`` or ``downloadFile``.
        capturer: The application's capturer.
        payload: camelCase parameters of the command.

    Returns:
        The camelCase result of the command.

    Raises:
        HTTPException 404: If *command* is unknown.
        RequestValidationError: If *payload* does not fit the command (422).
    """
    if command == "downloadBlob":
        payload = _decode_blob(payload)

    try:
        result = await capturer.invoke(command, payload)
    except UnknownCommandError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise RequestValidationError(
            exc.errors(include_url=False, include_context=False, include_input=False)
        ) from exc

    logger.info("capturer.command", command=command)
    return result
