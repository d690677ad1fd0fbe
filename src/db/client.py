"""Supabase client for the Account Store."""

from supabase import Client, create_client

from src.config import Settings, get_settings


def get_supabase_client(settings: Settings | None = None) -> Client:
    """
    Create a Supabase client authenticated with the service key.

    Args:
        settings: Settings to read the project URL and key from
            (process settings if not provided)
    """
    settings = settings or get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_key)
