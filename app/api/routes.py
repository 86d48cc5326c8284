"""
FastAPI routes for account connection, webhooks and message sync.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, List
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from app.connectors.registry import parse_platform
from app.core.errors import (
    AccountNotFoundError,
    ChallengeRejectedError,
    IntegrationError,
    InvalidPlatformError,
    NotConfiguredError,
    NotSupportedError,
)
from app.dependencies import (
    get_account_connection_service,
    get_account_store,
    get_app_settings,
    get_message_sync_service,
    get_token_refresh_service,
    get_webhook_ingress,
)
from app.models.message import WebhookRejection, WebhookStatus
from app.schemas import (
    AccountResponse,
    AuthorizationResponse,
    SyncResultResponse,
    SyncRunResponse,
    SyncStatusResponse,
    TokenRefreshResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _accounts_redirect(settings: Any, **params: str) -> RedirectResponse:
    url = f"{settings.accounts_redirect_url}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=HTTPStatus.TEMPORARY_REDIRECT)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


# -- Accounts ---------------------------------------------------------------


@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(
    store: Annotated[Any, Depends(get_account_store)],
    user_id: str = Query(..., description="Owner of the accounts."),
) -> List[AccountResponse]:
    return [AccountResponse.from_account(account) for account in store.list_for_user(user_id)]


@router.get("/accounts/{platform}/connect", status_code=HTTPStatus.OK)
async def start_account_connection(
    platform: str,
    request: Request,
    connection: Annotated[Any, Depends(get_account_connection_service)],
    user_id: str = Query(..., description="User identifier initiating the connection."),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the provider consent screen.",
    ),
) -> Any:
    """Kick off the OAuth flow by minting a state token and authorization URL."""
    try:
        authorization_url, state = connection.start(user_id, platform)
    except (InvalidPlatformError, NotConfiguredError) as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=exc.message) from exc

    wants_html = "text/html" in request.headers.get("accept", "").lower()
    if redirect or wants_html:
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)
    return AuthorizationResponse(authorization_url=authorization_url, state=state)


@router.get("/oauth/{platform}/callback")
async def handle_oauth_callback(
    platform: str,
    connection: Annotated[Any, Depends(get_account_connection_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
) -> RedirectResponse:
    """Complete the provider redirect and send the browser back to the accounts page."""
    if error:
        logger.info("OAuth authorization denied", extra={"platform": platform, "error": error})
        return _accounts_redirect(settings, error=error_description or error)
    if not code or not state:
        return _accounts_redirect(settings, error="Missing code or state parameter")

    try:
        account = await connection.complete(platform, code, state)
    except IntegrationError as exc:
        logger.warning(
            "OAuth callback failed: %s",
            exc.message,
            extra={"platform": platform, "error_code": exc.code.value},
        )
        return _accounts_redirect(settings, error=exc.message)
    except Exception:
        logger.exception("Unexpected OAuth callback failure", extra={"platform": platform})
        return _accounts_redirect(settings, error="Failed to connect account")

    return _accounts_redirect(
        settings,
        success="Account connected successfully",
        platform=account.platform.value,
    )


@router.delete("/accounts/{account_id}", status_code=HTTPStatus.OK)
async def disconnect_account(
    account_id: str,
    connection: Annotated[Any, Depends(get_account_connection_service)],
    user_id: str = Query(..., description="Owner of the account."),
) -> dict:
    if not connection.disconnect(account_id, user_id):
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Account not found")
    return {"status": "disconnected", "account_id": account_id}


@router.post("/accounts/refresh", response_model=TokenRefreshResponse)
async def refresh_expired_tokens(
    refresher: Annotated[Any, Depends(get_token_refresh_service)],
    user_id: str | None = Query(None, description="Limit the refresh to one user."),
) -> TokenRefreshResponse:
    refreshed = await refresher.refresh_expired(user_id=user_id)
    return TokenRefreshResponse(
        refreshed=len(refreshed),
        accounts=[AccountResponse.from_account(account) for account in refreshed],
    )


# -- Webhooks ---------------------------------------------------------------


@router.get("/webhooks/{platform}")
async def webhook_challenge(
    platform: str,
    request: Request,
    ingress: Annotated[Any, Depends(get_webhook_ingress)],
) -> Response:
    """Answer the platform's subscription handshake."""
    try:
        challenge = ingress.challenge(parse_platform(platform), request.query_params)
    except InvalidPlatformError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=exc.message) from exc
    except NotSupportedError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=exc.message) from exc
    except ChallengeRejectedError as exc:
        logger.warning("Webhook challenge rejected: %s", exc.message, extra={"platform": platform})
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail=exc.message) from exc
    return Response(content=challenge.body, media_type=challenge.media_type)


@router.post("/webhooks/{platform}")
async def receive_webhook(
    platform: str,
    request: Request,
    ingress: Annotated[Any, Depends(get_webhook_ingress)],
) -> JSONResponse:
    """Verify and store a webhook delivery using the exact bytes received."""
    try:
        resolved = parse_platform(platform)
    except InvalidPlatformError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=exc.message) from exc

    raw_payload = await request.body()
    signature = request.headers.get(ingress.signature_header(resolved))
    result = ingress.handle(resolved, raw_payload, signature)

    if result.status is WebhookStatus.ACCEPTED:
        return JSONResponse(content={"status": "ok", "new_messages": result.new_messages})
    if result.reason is WebhookRejection.INVALID_SIGNATURE:
        raise HTTPException(status_code=HTTPStatus.FORBIDDEN, detail="Invalid signature")
    if result.reason is WebhookRejection.MALFORMED_PAYLOAD:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="Malformed payload")
    return JSONResponse(content={"status": "ignored"})


# -- Sync -------------------------------------------------------------------


@router.post("/sync", response_model=SyncRunResponse)
async def trigger_sync(
    sync_service: Annotated[Any, Depends(get_message_sync_service)],
) -> SyncRunResponse:
    """Run a full sync pass now, outside the schedule."""
    results = await sync_service.sync_all()
    return SyncRunResponse.from_results(results)


@router.post("/sync/accounts/{account_id}", response_model=SyncResultResponse)
async def trigger_account_sync(
    account_id: str,
    sync_service: Annotated[Any, Depends(get_message_sync_service)],
) -> SyncResultResponse:
    try:
        result = await sync_service.sync_account_by_id(account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=exc.message) from exc
    return SyncResultResponse.from_result(result)


@router.post("/sync/platforms/{platform}", response_model=SyncRunResponse)
async def trigger_platform_sync(
    platform: str,
    sync_service: Annotated[Any, Depends(get_message_sync_service)],
) -> SyncRunResponse:
    try:
        resolved = parse_platform(platform)
    except InvalidPlatformError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=exc.message) from exc
    results = await sync_service.sync_by_platform(resolved)
    return SyncRunResponse.from_results(results)


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(
    sync_service: Annotated[Any, Depends(get_message_sync_service)],
) -> SyncStatusResponse:
    return SyncStatusResponse(**sync_service.get_stats())


__all__ = ["router"]
