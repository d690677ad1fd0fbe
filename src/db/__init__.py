"""Database client and Account Store repository."""

from src.db.query_executor import timed_query
from src.db.repository import (
    find_instance_by_account_id,
    find_instance_by_id,
    upsert_instance_by_account_id,
)

__all__ = [
    "timed_query",
    "find_instance_by_account_id",
    "find_instance_by_id",
    "upsert_instance_by_account_id",
]
