"""Instagram OAuth, webhook and instance endpoints.

Webhook deliveries are authenticated in this order:
1. Signature - ``x-hub-signature-256`` HMAC over the raw body (403 on failure)
2. Decoding - body must be a JSON object (400 otherwise); entries are
   validated one by one while routing
3. Routing - handed to the EventRouter as a background task

Once a delivery passes the first two steps it is always acknowledged with
200, whatever happens while routing it.
"""

import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs, urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import ValidationError

from src.config import Settings, get_settings
from src.constants import CONNECTIONS_PAGE_PATH, WEBHOOK_SIGNATURE_HEADER
from src.db.repository import (
    delete_instance,
    delete_instances_by_account_id,
    find_instance_by_account_id,
    find_instance_by_id,
    find_instances_by_user_id,
    update_instance_status,
    upsert_instance_by_account_id,
)
from src.errors import InstanceNotFoundError, RequestValidationFailed
from src.models.api_models import (
    CreateInstanceRequest,
    ReplyCommentRequest,
    SendMessageRequest,
)
from src.models.instance_models import (
    InstagramInstance,
    InstagramInstanceCreate,
    InstanceSummary,
)
from src.models.webhook_models import WebhookEnvelope
from src.services.event_router import EventRouter, LoggingEventHandler
from src.services.instagram_service import (
    build_authorization_url,
    exchange_code_for_token,
    exchange_for_long_lived_token,
    get_subscribed_apps,
    get_user_info,
    reply_to_comment,
    send_direct_message,
)
from src.services.webhook_security import (
    parse_signed_request,
    verify_challenge,
    verify_signature,
)

logger = logging.getLogger(__name__)
router = APIRouter()

DEFAULT_INSTANCE_NAME = "Instagram"


def get_event_router(settings: Settings = Depends(get_settings)) -> EventRouter:
    """EventRouter backed by the Account Store."""
    return EventRouter(
        resolve_account=find_instance_by_account_id,
        handler=LoggingEventHandler(),
        object_type=settings.webhook_object_type,
    )


def _challenge_response(request: Request, settings: Settings) -> Response:
    """Answer a hub.* verification handshake with the challenge or 403."""
    challenge = verify_challenge(
        request.query_params.get("hub.mode"),
        request.query_params.get("hub.verify_token"),
        request.query_params.get("hub.challenge"),
        settings.instagram_webhook_verify_token,
    )

    if challenge is None:
        logger.warning("Webhook verification failed")
        return JSONResponse(
            status_code=403, content={"error": "Invalid verification token"}
        )

    logger.info("Webhook verified successfully")
    return PlainTextResponse(challenge)


def _frontend_redirect(settings: Settings, **params: str) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}{CONNECTIONS_PAGE_PATH}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


def _get_instance_or_404(instance_id: str) -> InstagramInstance:
    instance = find_instance_by_id(instance_id)
    if instance is None:
        raise InstanceNotFoundError(instance_id)
    return instance


# =============================================================================
# OAuth
# =============================================================================


@router.get("/auth/authorize")
async def authorize(
    user_id: str | None = Query(default=None, alias="userId"),
    instance_name: str | None = Query(default=None, alias="instanceName"),
    settings: Settings = Depends(get_settings),
):
    """Start the OAuth flow by redirecting to Instagram."""
    if not user_id:
        raise RequestValidationFailed("userId is required")

    return RedirectResponse(
        build_authorization_url(settings, user_id, instance_name),
        status_code=307,
    )


@router.get("/auth/callback")
async def oauth_callback(request: Request, settings: Settings = Depends(get_settings)):
    """OAuth redirect target.

    The provider may also call this URL with a webhook handshake, so
    hub.* parameters are answered before any authorization-code handling.
    """
    params = request.query_params

    if any(key.startswith("hub.") for key in params.keys()):
        return _challenge_response(request, settings)

    if params.get("error"):
        logger.error(
            "OAuth authorization failed: %s (%s)",
            params.get("error"),
            params.get("error_reason"),
        )
        return _frontend_redirect(settings, error="oauth_failed")

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return _frontend_redirect(settings, error="invalid_callback")

    try:
        state_data = json.loads(state)
        user_id = state_data["userId"]
    except (ValueError, KeyError, TypeError):
        logger.warning("OAuth callback with undecodable state")
        return _frontend_redirect(settings, error="invalid_callback")

    if not user_id:
        return _frontend_redirect(settings, error="invalid_callback")

    try:
        short_lived = await exchange_code_for_token(settings, code)
        token = await exchange_for_long_lived_token(settings, short_lived)
        user_info = await get_user_info(settings, token.access_token, token.user_id)

        instance = upsert_instance_by_account_id(
            InstagramInstanceCreate(
                name=state_data.get("instanceName")
                or user_info.username
                or DEFAULT_INSTANCE_NAME,
                user_id=str(user_id),
                instagram_account_id=user_info.id,
                access_token=token.access_token,
                token_type=token.token_type,
                token_expires_at=datetime.now(timezone.utc)
                + timedelta(seconds=token.expires_in),
                is_long_lived=token.is_long_lived,
                username=user_info.username,
            )
        )
    except Exception as e:
        logger.error("Error completing OAuth callback: %s", e, exc_info=True)
        return _frontend_redirect(settings, error="connection_failed")

    return _frontend_redirect(
        settings, success="instagram_connected", instanceId=instance.id
    )


# =============================================================================
# Webhook
# =============================================================================


@router.get("/webhook")
async def verify_webhook(request: Request, settings: Settings = Depends(get_settings)):
    """Webhook subscription handshake."""
    return _challenge_response(request, settings)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    event_router: EventRouter = Depends(get_event_router),
):
    """Receive a webhook delivery and acknowledge it."""
    raw_body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)

    if not signature and not settings.signature_required:
        logger.warning("Unsigned webhook delivery accepted (env=%s)", settings.env)
    elif not verify_signature(raw_body, signature, settings.instagram_client_secret):
        logger.error("Invalid webhook signature")
        return JSONResponse(status_code=403, content={"error": "Invalid signature"})

    try:
        body = json.loads(raw_body)
        if not isinstance(body, dict):
            raise ValueError(f"expected a JSON object, got {type(body).__name__}")
        envelope = WebhookEnvelope.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.error("Malformed webhook body: %s", e)
        return JSONResponse(status_code=400, content={"error": "Malformed JSON body"})

    background_tasks.add_task(event_router.dispatch, envelope)

    return {"status": "ok"}


# =============================================================================
# Deauthorization and data deletion
# =============================================================================


async def _read_signed_request(request: Request) -> str | None:
    """signed_request from a form-encoded or JSON body."""
    body = await request.body()
    if not body:
        return None

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            data: Any = json.loads(body)
        except ValueError:
            return None
        value = data.get("signed_request") if isinstance(data, dict) else None
        return value if isinstance(value, str) else None

    values = parse_qs(body.decode("utf-8", errors="replace")).get("signed_request")
    return values[0] if values else None


async def _verified_account_id(
    request: Request, settings: Settings
) -> tuple[str | None, JSONResponse | None]:
    signed_request = await _read_signed_request(request)
    if not signed_request:
        return None, JSONResponse(
            status_code=400, content={"error": "signed_request is required"}
        )

    payload = parse_signed_request(signed_request, settings.instagram_client_secret)
    if payload is None or not payload.get("user_id"):
        logger.warning("Rejected invalid signed_request")
        return None, JSONResponse(
            status_code=400, content={"error": "Invalid signed_request"}
        )

    return str(payload["user_id"]), None


@router.post("/deauthorize")
async def deauthorize(request: Request, settings: Settings = Depends(get_settings)):
    """The user removed the app from their account."""
    account_id, error = await _verified_account_id(request, settings)
    if error is not None:
        return error

    updated = update_instance_status(account_id, "disconnected")
    logger.info("Deauthorized account %s (%d instance(s))", account_id, updated)
    return {"status": "ok"}


@router.post("/data-deletion")
async def data_deletion(request: Request, settings: Settings = Depends(get_settings)):
    """The user asked for their data to be deleted."""
    account_id, error = await _verified_account_id(request, settings)
    if error is not None:
        return error

    deleted = delete_instances_by_account_id(account_id)
    confirmation_code = secrets.token_hex(8)
    logger.info(
        "Deleted data for account %s (%d instance(s), code %s)",
        account_id,
        deleted,
        confirmation_code,
    )

    status_url = (
        f"{settings.api_url.rstrip('/')}/api/instagram/data-deletion/status"
        f"?{urlencode({'code': confirmation_code})}"
    )
    return {"url": status_url, "confirmation_code": confirmation_code}


@router.get("/data-deletion/status")
async def data_deletion_status(code: str = Query(..., min_length=1)):
    """Deletion runs synchronously, so any issued code is complete."""
    return {"status": "completed", "confirmation_code": code}


# =============================================================================
# Instances
# =============================================================================


@router.post("/instances")
async def create_instance(
    body: CreateInstanceRequest,
    settings: Settings = Depends(get_settings),
):
    """Return the URL the client must open to connect the account."""
    auth_url = (
        f"{settings.api_url.rstrip('/')}/api/instagram/auth/authorize"
        f"?{urlencode({'userId': body.user_id, 'instanceName': body.name})}"
    )
    return {
        "status": "success",
        "message": "Redirect to the authorization URL",
        "authUrl": auth_url,
    }


@router.get("/instances")
async def list_instances(user_id: str | None = Query(default=None, alias="userId")):
    """List a user's instances."""
    if not user_id:
        raise RequestValidationFailed("userId is required")

    instances = find_instances_by_user_id(user_id)
    return {
        "status": "success",
        "instances": [
            InstanceSummary.from_instance(instance).model_dump(by_alias=True, mode="json")
            for instance in instances
        ],
    }


@router.get("/instances/{instance_id}")
async def get_instance(instance_id: str):
    """Get one instance."""
    instance = _get_instance_or_404(instance_id)
    return {
        "status": "success",
        "instance": InstanceSummary.from_instance(instance).model_dump(
            by_alias=True, mode="json"
        ),
    }


@router.get("/instances/{instance_id}/subscribed-apps")
async def list_subscribed_apps(
    instance_id: str,
    settings: Settings = Depends(get_settings),
):
    """Apps whose webhooks the instance's account is subscribed to."""
    instance = _get_instance_or_404(instance_id)
    return {"status": "success", "data": await get_subscribed_apps(settings, instance)}


@router.delete("/instances/{instance_id}")
async def remove_instance(instance_id: str):
    """Delete an instance."""
    if not delete_instance(instance_id):
        raise InstanceNotFoundError(instance_id)
    return {"status": "success", "message": "Instance deleted"}


# =============================================================================
# Messaging
# =============================================================================


@router.post("/messages")
async def send_message(
    body: SendMessageRequest,
    settings: Settings = Depends(get_settings),
):
    """Send a direct message from a connected account."""
    instance = _get_instance_or_404(body.instance_id)
    result = await send_direct_message(
        settings, instance, body.recipient_id, body.message
    )
    return {"status": "success", "message": "Message sent", "data": result}


@router.post("/comments/{comment_id}/replies")
async def reply_comment(
    comment_id: str,
    body: ReplyCommentRequest,
    settings: Settings = Depends(get_settings),
):
    """Reply to a comment from a connected account."""
    instance = _get_instance_or_404(body.instance_id)
    result = await reply_to_comment(settings, instance, comment_id, body.message)
    return {"status": "success", "message": "Comment replied", "data": result}
