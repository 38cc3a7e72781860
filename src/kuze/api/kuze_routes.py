"""Kuze HTTP routes: token issuance, the one-time entry form and agent redemption.

The form and redemption endpoints are **unauthenticated**: the unguessable
token in the path is the access control. Issuance endpoints are meant to be
reachable only by the trusted issuer (bind to localhost or put them behind
the deployment's own auth).

Endpoints:
  POST /kuze/issue/human?secret_ref=&type=                Mint a human entry link
  POST /kuze/issue/agent?agent_id=&secret_ref=&type=&purpose=  Mint an agent token
  GET  /s/{token}                                         Serve the entry form
  POST /s/{token}                                         Accept the submitted value
  GET  /kuze/redeem/{token}   (X-Agent-ID header)         Agent redemption
"""

import logging
from typing import Optional

from fastapi import APIRouter, Form, Header, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .. import templates
from ..exceptions import (
    AgentIDMismatchError,
    DeadTokenError,
    EmptySecretValueError,
    InvalidInputError,
    MissingAgentIDError,
    NotConfiguredError,
    SecretStoreError,
    StorageError,
)
from ..server import KuzeServer
from ..tokens import safe_prefix

logger = logging.getLogger(__name__)

router = APIRouter(tags=["kuze"])

_NO_STORE = {"Cache-Control": "no-store"}
_HTML_HEADERS = {
    **_NO_STORE,
    "Content-Security-Policy": (
        "default-src 'none'; style-src 'unsafe-inline'; "
        "form-action 'self'; frame-ancestors 'none'"
    ),
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}


# ── Response Models ──────────────────────────────────────────────────


class IssueHumanResponse(BaseModel):
    link: str
    token: str
    expires_at: str = Field(..., description="RFC 3339 UTC")
    secret_ref: str


class IssueAgentResponse(BaseModel):
    redeem_url: str
    token: str
    expires_at: str = Field(..., description="RFC 3339 UTC")
    secret_ref: str
    agent_id: str


class RedeemResponse(BaseModel):
    secret_ref: str
    secret_type: str
    value: str = Field(..., description="Secret bytes, standard base64")


class ErrorResponse(BaseModel):
    error: str


_ISSUE_ERRORS = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
_REDEEM_ERRORS = {
    code: {"model": ErrorResponse} for code in (401, 403, 410, 500, 501)
}


def _get_server(request: Request) -> KuzeServer:
    return request.app.state.kuze


def _html(content: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(content=content, status_code=status_code, headers=_HTML_HEADERS)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=_NO_STORE)


# ── Issuance ─────────────────────────────────────────────────────────


@router.post(
    "/kuze/issue/human", response_model=IssueHumanResponse, responses=_ISSUE_ERRORS,
)
async def issue_human(
    request: Request,
    response: Response,
    secret_ref: str = Query(""),
    secret_type: str = Query("", alias="type"),
):
    """Mint a one-time entry link for a human."""
    try:
        result = await _get_server(request).issue_human_token(secret_ref, secret_type)
    except InvalidInputError as exc:
        return _error(str(exc), 400)
    except StorageError:
        logger.exception("Issue human token failed (ref=%s)", secret_ref)
        return _error("internal error", 500)
    response.headers.update(_NO_STORE)
    return IssueHumanResponse(**result.to_dict())


@router.post(
    "/kuze/issue/agent", response_model=IssueAgentResponse, responses=_ISSUE_ERRORS,
)
async def issue_agent(
    request: Request,
    response: Response,
    agent_id: str = Query(""),
    secret_ref: str = Query(""),
    secret_type: str = Query("", alias="type"),
    purpose: str = Query(""),
):
    """Mint a short-lived redemption token bound to agent_id."""
    try:
        result = await _get_server(request).issue_agent_token(
            agent_id, secret_ref, secret_type, purpose,
        )
    except InvalidInputError as exc:
        return _error(str(exc), 400)
    except StorageError:
        logger.exception("Issue agent token failed (agent=%s, ref=%s)", agent_id, secret_ref)
        return _error("internal error", 500)
    response.headers.update(_NO_STORE)
    return IssueAgentResponse(**result.to_dict())


# ── Human entry form ─────────────────────────────────────────────────


@router.get("/s/{token}", response_class=HTMLResponse)
async def entry_form(token: str, request: Request):
    """Serve the entry form. Does not consume the token.

    Agent-scoped tokens get the same 410 page as used or expired ones.
    """
    try:
        pt = await _get_server(request).validate_entry(token)
    except DeadTokenError:
        return _html(templates.render_expired(), 410)
    except StorageError:
        logger.exception("Validate failed for token %s", safe_prefix(token))
        return PlainTextResponse("internal error", status_code=500, headers=_NO_STORE)
    return _html(templates.render_form(pt.secret_ref, token))


@router.post("/s/{token}", response_class=HTMLResponse)
async def submit_entry(token: str, request: Request, secret_value: str = Form("")):
    """Store the submitted value, then burn the token."""
    try:
        pt = await _get_server(request).accept_entry(token, secret_value)
    except EmptySecretValueError as exc:
        return _html(templates.render_form(exc.secret_ref, token, error=str(exc)))
    except DeadTokenError:
        return _html(templates.render_expired(), 410)
    except SecretStoreError:
        return PlainTextResponse(
            "failed to store secret; please try again", status_code=500, headers=_NO_STORE,
        )
    except NotConfiguredError:
        return PlainTextResponse(
            "service not fully initialised", status_code=501, headers=_NO_STORE,
        )
    except StorageError:
        logger.exception("Form submission failed for token %s", safe_prefix(token))
        return PlainTextResponse("internal error", status_code=500, headers=_NO_STORE)
    return _html(templates.render_success(pt.secret_ref))


# ── Agent redemption ─────────────────────────────────────────────────


@router.get(
    "/kuze/redeem/{token}", response_model=RedeemResponse, responses=_REDEEM_ERRORS,
)
async def redeem(
    token: str,
    request: Request,
    response: Response,
    x_agent_id: Optional[str] = Header(None),
):
    """Redeem an agent token. The caller asserts identity via X-Agent-ID."""
    try:
        result = await _get_server(request).redeem(token, x_agent_id or "")
    except MissingAgentIDError:
        return _error("X-Agent-ID header is required", 401)
    except NotConfiguredError:
        return _error("service not fully initialised", 501)
    except DeadTokenError:
        return _error("token not valid or already used", 410)
    except AgentIDMismatchError:
        return _error("agent identity mismatch", 403)
    except SecretStoreError:
        return _error("secret unavailable; request a new token", 500)
    except StorageError:
        logger.exception("Redeem failed for token %s", safe_prefix(token))
        return _error("internal error", 500)
    response.headers.update(_NO_STORE)
    return RedeemResponse(**result.to_dict())
