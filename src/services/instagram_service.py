"""Instagram OAuth exchange and Graph API calls."""

import json
import time
from typing import Any
from urllib.parse import urlencode

import httpx
import logfire

from src.config import Settings
from src.constants import (
    DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
    DEFAULT_TOKEN_TYPE,
    INSTAGRAM_OAUTH_SCOPES,
    LONG_LIVED_GRANT_TYPE,
)
from src.errors import InstagramAPIError
from src.logging_config import mask_pii, redact_tokens
from src.models.instance_models import (
    InstagramInstance,
    InstagramUserInfo,
    TokenData,
)

USER_INFO_FIELDS = "id,username,account_type"


def _provider_error_message(response: httpx.Response) -> str | None:
    """Pull the provider's error text out of an error response."""
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    if data.get("error_message"):
        return str(data["error_message"])
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or None
    if error:
        return str(error)
    return None


def _versioned_url(settings: Settings, path: str) -> str:
    return f"{settings.instagram_api_url}/{settings.instagram_api_version}/{path}"


def build_authorization_url(
    settings: Settings,
    user_id: str,
    instance_name: str | None = None,
) -> str:
    """
    Build the Instagram Business Login URL for a user.

    The owning user and chosen instance name travel in ``state`` and come
    back untouched on the OAuth callback.
    """
    state = json.dumps({"userId": user_id, "instanceName": instance_name})
    params = {
        "force_reauth": "true",
        "client_id": settings.instagram_client_id,
        "redirect_uri": settings.instagram_redirect_uri,
        "response_type": "code",
        "scope": ",".join(INSTAGRAM_OAUTH_SCOPES),
        "state": state,
    }
    return f"{settings.instagram_oauth_url}?{urlencode(params)}"


async def exchange_code_for_token(settings: Settings, code: str) -> TokenData:
    """
    Exchange an authorization code for a short-lived access token.

    The token endpoint requires an application/x-www-form-urlencoded body.

    Raises:
        InstagramAPIError: If the exchange fails
    """
    start_time = time.time()

    logfire.info(
        "Exchanging authorization code for token",
        code=mask_pii(code),
        token_url=settings.instagram_token_url,
    )

    form = {
        "client_id": settings.instagram_client_id,
        "client_secret": settings.instagram_client_secret,
        "grant_type": "authorization_code",
        "redirect_uri": settings.instagram_redirect_uri,
        "code": code,
    }

    try:
        async with httpx.AsyncClient(
            timeout=settings.instagram_api_timeout_seconds
        ) as client:
            response = await client.post(settings.instagram_token_url, data=form)
    except httpx.RequestError as e:
        logfire.error(
            "Token exchange request error",
            error=str(e),
            error_type=type(e).__name__,
            response_time_ms=(time.time() - start_time) * 1000,
        )
        raise InstagramAPIError("Failed to obtain Instagram access token") from e

    elapsed = time.time() - start_time

    if response.status_code != 200:
        provider_message = _provider_error_message(response)
        logfire.error(
            "Token exchange failed",
            status_code=response.status_code,
            provider_message=provider_message,
            response_time_ms=elapsed * 1000,
        )
        message = "Failed to obtain Instagram access token"
        if provider_message:
            message = f"{message}: {provider_message}"
        raise InstagramAPIError(message, upstream_status=response.status_code)

    data: dict[str, Any] = response.json()
    # Some responses wrap the token in a one-element "data" list
    if isinstance(data.get("data"), list) and data["data"]:
        data = data["data"][0]

    logfire.info(
        "Access token obtained",
        response=redact_tokens(data),
        response_time_ms=elapsed * 1000,
    )

    user_id = data.get("user_id")
    return TokenData(
        access_token=data["access_token"],
        token_type=data.get("token_type") or DEFAULT_TOKEN_TYPE,
        expires_in=data.get("expires_in") or DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
        user_id=str(user_id) if user_id is not None else None,
        permissions=data.get("permissions") or [],
    )


async def exchange_for_long_lived_token(
    settings: Settings,
    short_lived: TokenData,
) -> TokenData:
    """
    Exchange a short-lived token for a long-lived one.

    Not every app type supports the exchange, so any failure falls back to
    the short-lived token (valid for one hour) instead of raising.
    """
    url = f"{settings.instagram_api_url}/access_token"
    params = {
        "grant_type": LONG_LIVED_GRANT_TYPE,
        "client_secret": settings.instagram_client_secret,
        "access_token": short_lived.access_token,
    }

    try:
        async with httpx.AsyncClient(
            timeout=settings.instagram_api_timeout_seconds
        ) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

        logfire.info(
            "Long-lived token obtained",
            user_id=short_lived.user_id,
            expires_in=data.get("expires_in"),
        )
        return TokenData(
            access_token=data["access_token"],
            token_type=data.get("token_type") or DEFAULT_TOKEN_TYPE,
            expires_in=data.get("expires_in") or DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
            user_id=short_lived.user_id,
            permissions=short_lived.permissions,
            is_long_lived=True,
        )
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logfire.warn(
            "Long-lived token exchange failed, keeping short-lived token",
            user_id=short_lived.user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return short_lived.model_copy(
            update={
                "expires_in": DEFAULT_TOKEN_EXPIRES_IN_SECONDS,
                "is_long_lived": False,
            }
        )


async def get_user_info(
    settings: Settings,
    access_token: str,
    user_id: str | None = None,
) -> InstagramUserInfo:
    """
    Identify the account behind an access token.

    When the token exchange already returned the user id it is used as-is
    without a Graph API call. Otherwise ``/me`` is tried unversioned, then
    versioned.

    Raises:
        InstagramAPIError: If no user id is known and both lookups fail
    """
    if user_id:
        return InstagramUserInfo(id=user_id, account_type="BUSINESS")

    params = {"fields": USER_INFO_FIELDS, "access_token": access_token}
    urls = [
        f"{settings.instagram_api_url}/me",
        _versioned_url(settings, "me"),
    ]

    last_status: int | None = None
    async with httpx.AsyncClient(
        timeout=settings.instagram_api_timeout_seconds
    ) as client:
        for url in urls:
            try:
                response = await client.get(url, params=params)
            except httpx.RequestError as e:
                logfire.warn(
                    "User info request error",
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if response.status_code == 200:
                data = response.json()
                logfire.info(
                    "User info fetched",
                    account_id=data.get("id"),
                    account_type=data.get("account_type"),
                )
                return InstagramUserInfo(
                    id=str(data["id"]),
                    username=data.get("username"),
                    account_type=data.get("account_type"),
                )

            last_status = response.status_code
            logfire.warn(
                "User info lookup failed",
                url=url,
                status_code=response.status_code,
                response_body=response.text[:500],
            )

    raise InstagramAPIError(
        "Failed to fetch Instagram user info and no user id is available",
        upstream_status=last_status,
    )


async def _post_as_instance(
    settings: Settings,
    instance: InstagramInstance,
    url: str,
    payload: dict[str, Any],
    operation: str,
    **log_context: Any,
) -> dict[str, Any]:
    """POST to the Graph API with the instance's bearer token."""
    start_time = time.time()
    headers = {"Authorization": f"Bearer {instance.access_token}"}

    try:
        async with httpx.AsyncClient(
            timeout=settings.instagram_api_timeout_seconds
        ) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.RequestError as e:
        logfire.error(
            f"Instagram {operation} request error",
            instance_id=instance.id,
            error=str(e),
            error_type=type(e).__name__,
            response_time_ms=(time.time() - start_time) * 1000,
            **log_context,
        )
        raise InstagramAPIError(f"Failed to {operation}") from e

    elapsed = time.time() - start_time

    if response.status_code != 200:
        provider_message = _provider_error_message(response)
        logfire.error(
            f"Instagram {operation} failed",
            instance_id=instance.id,
            status_code=response.status_code,
            response_body=response.text[:500],
            response_time_ms=elapsed * 1000,
            **log_context,
        )
        message = f"Failed to {operation}"
        if provider_message:
            message = f"{message}: {provider_message}"
        raise InstagramAPIError(message, upstream_status=response.status_code)

    logfire.info(
        f"Instagram {operation} succeeded",
        instance_id=instance.id,
        status_code=response.status_code,
        response_time_ms=elapsed * 1000,
        **log_context,
    )
    return response.json()


async def send_direct_message(
    settings: Settings,
    instance: InstagramInstance,
    recipient_id: str,
    text: str,
) -> dict[str, Any]:
    """
    Send a direct message from a connected account.

    Args:
        settings: Application settings
        instance: Connected instance sending the message
        recipient_id: Instagram-scoped id of the recipient
        text: Message text

    Returns:
        Graph API response (recipient_id, message_id)
    """
    url = _versioned_url(settings, f"{instance.instagram_account_id}/messages")
    payload = {"recipient": {"id": recipient_id}, "message": {"text": text}}
    return await _post_as_instance(
        settings,
        instance,
        url,
        payload,
        "send direct message",
        recipient_id=recipient_id,
        message_length=len(text),
    )


async def reply_to_comment(
    settings: Settings,
    instance: InstagramInstance,
    comment_id: str,
    text: str,
) -> dict[str, Any]:
    """Reply to a comment on one of the account's media."""
    url = _versioned_url(settings, f"{comment_id}/replies")
    return await _post_as_instance(
        settings,
        instance,
        url,
        {"message": text},
        "reply to comment",
        comment_id=comment_id,
    )


async def get_subscribed_apps(
    settings: Settings,
    instance: InstagramInstance,
) -> list[dict[str, Any]]:
    """List the apps whose webhooks the account is subscribed to."""
    url = _versioned_url(settings, f"{instance.instagram_account_id}/subscribed_apps")
    headers = {"Authorization": f"Bearer {instance.access_token}"}

    try:
        async with httpx.AsyncClient(
            timeout=settings.instagram_api_timeout_seconds
        ) as client:
            response = await client.get(url, headers=headers)
    except httpx.RequestError as e:
        raise InstagramAPIError("Failed to fetch subscribed apps") from e

    if response.status_code != 200:
        logfire.error(
            "Subscribed apps lookup failed",
            instance_id=instance.id,
            status_code=response.status_code,
            response_body=response.text[:500],
        )
        raise InstagramAPIError(
            "Failed to fetch subscribed apps", upstream_status=response.status_code
        )

    return response.json().get("data", [])
