"""Instagram instance repository (the Account Store).

Instances are keyed by the provider's account id, which is the only
routing key used for inbound webhook events.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import logfire

from src.config import get_settings
from src.constants import INSTANCES_TABLE
from src.db.client import get_supabase_client
from src.db.query_executor import timed_query
from src.models.instance_models import (
    InstagramInstance,
    InstagramInstanceCreate,
    InstanceStatus,
)
from src.utils.token_generator import generate_instance_name, generate_instance_token


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _first_instance(data: list[dict[str, Any]] | None) -> Optional[InstagramInstance]:
    if not data:
        return None
    return InstagramInstance(**data[0])


def create_instance(instance: InstagramInstanceCreate) -> InstagramInstance:
    """
    Insert a new connected instance.

    The internal instance name, instance token and webhook URL are
    generated here; callers only provide what the OAuth flow produced.

    Returns:
        The created InstagramInstance
    """
    now = _now().isoformat()
    data = {
        "id": str(uuid.uuid4()),
        "instance_name": generate_instance_name(),
        "name": instance.name,
        "user_id": instance.user_id,
        "token": generate_instance_token(),
        "instagram_account_id": instance.instagram_account_id,
        "access_token": instance.access_token,
        "token_type": instance.token_type,
        "token_expires_at": _isoformat(instance.token_expires_at),
        "is_long_lived": instance.is_long_lived,
        "username": instance.username,
        "status": "connected",
        "webhook_url": get_settings().webhook_url,
        "created_at": now,
        "updated_at": now,
    }

    supabase = get_supabase_client()

    with timed_query(
        "create_instance",
        user_id=instance.user_id,
        account_id=instance.instagram_account_id,
    ):
        result = supabase.table(INSTANCES_TABLE).insert(data).execute()

    created = _first_instance(result.data)
    if created is None:
        raise ValueError("Failed to create Instagram instance")

    logfire.info(
        "Instagram instance created",
        instance_id=created.id,
        account_id=created.instagram_account_id,
        user_id=created.user_id,
    )
    return created


def upsert_instance_by_account_id(
    instance: InstagramInstanceCreate,
) -> InstagramInstance:
    """
    Create the instance for an account, or refresh the existing one.

    An existing instance keeps its id, name, owner and instance token; only
    the credentials, username and status are replaced.
    """
    existing = find_instance_by_account_id(instance.instagram_account_id)
    if existing is None:
        return create_instance(instance)

    updates = {
        "access_token": instance.access_token,
        "token_type": instance.token_type,
        "token_expires_at": _isoformat(instance.token_expires_at),
        "is_long_lived": instance.is_long_lived,
        "username": instance.username or existing.username,
        "status": "connected",
        "updated_at": _now().isoformat(),
    }

    supabase = get_supabase_client()

    with timed_query(
        "refresh_instance",
        instance_id=existing.id,
        account_id=existing.instagram_account_id,
    ):
        result = (
            supabase.table(INSTANCES_TABLE)
            .update(updates)
            .eq("id", existing.id)
            .execute()
        )

    refreshed = _first_instance(result.data)
    if refreshed is None:
        raise ValueError("Failed to refresh Instagram instance")

    logfire.info(
        "Instagram instance refreshed",
        instance_id=refreshed.id,
        account_id=refreshed.instagram_account_id,
    )
    return refreshed


def find_instance_by_account_id(account_id: str) -> Optional[InstagramInstance]:
    """Get the instance for a provider account id, or None."""
    supabase = get_supabase_client()

    with timed_query("find_instance_by_account_id", account_id=account_id):
        result = (
            supabase.table(INSTANCES_TABLE)
            .select("*")
            .eq("instagram_account_id", account_id)
            .limit(1)
            .execute()
        )

    return _first_instance(result.data)


def find_instance_by_id(instance_id: str) -> Optional[InstagramInstance]:
    """Get an instance by its id, or None."""
    supabase = get_supabase_client()

    with timed_query("find_instance_by_id", instance_id=instance_id):
        result = (
            supabase.table(INSTANCES_TABLE)
            .select("*")
            .eq("id", instance_id)
            .limit(1)
            .execute()
        )

    return _first_instance(result.data)


def find_instances_by_user_id(user_id: str) -> list[InstagramInstance]:
    """All instances owned by a user, newest first."""
    supabase = get_supabase_client()

    with timed_query("find_instances_by_user_id", user_id=user_id) as query_log:
        result = (
            supabase.table(INSTANCES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        query_log["rows"] = len(result.data or [])

    return [InstagramInstance(**row) for row in result.data or []]


def delete_instance(instance_id: str) -> bool:
    """Delete an instance. Returns False if it did not exist."""
    supabase = get_supabase_client()

    with timed_query("delete_instance", instance_id=instance_id):
        result = (
            supabase.table(INSTANCES_TABLE).delete().eq("id", instance_id).execute()
        )

    deleted = bool(result.data)
    if deleted:
        logfire.info("Instagram instance deleted", instance_id=instance_id)
    return deleted


def update_instance_status(account_id: str, status: InstanceStatus) -> int:
    """Set the status of every instance of an account; returns rows changed."""
    supabase = get_supabase_client()

    with timed_query(
        "update_instance_status", account_id=account_id, status=status
    ) as query_log:
        result = (
            supabase.table(INSTANCES_TABLE)
            .update({"status": status, "updated_at": _now().isoformat()})
            .eq("instagram_account_id", account_id)
            .execute()
        )
        query_log["rows"] = len(result.data or [])

    return query_log["rows"]


def delete_instances_by_account_id(account_id: str) -> int:
    """Delete every instance of an account; returns rows removed."""
    supabase = get_supabase_client()

    with timed_query(
        "delete_instances_by_account_id", account_id=account_id
    ) as query_log:
        result = (
            supabase.table(INSTANCES_TABLE)
            .delete()
            .eq("instagram_account_id", account_id)
            .execute()
        )
        query_log["rows"] = len(result.data or [])

    return query_log["rows"]
