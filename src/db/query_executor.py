"""Timing and logging around Account Store queries."""

import time
from contextlib import contextmanager
from typing import Any, Generator

import logfire


@contextmanager
def timed_query(
    operation_name: str,
    **log_context: Any,
) -> Generator[dict[str, Any], None, None]:
    """
    Log a database operation with its elapsed time.

    Yields a dict the caller may fill with result details (e.g. a row
    count); they are added to the completion log. On failure the error is
    logged with the same context and re-raised.

    Example:
        with timed_query("delete_instances_by_account_id", account_id=account_id) as query_log:
            result = client.table(INSTANCES_TABLE).delete().eq(...).execute()
            query_log["rows"] = len(result.data)
    """
    start_time = time.time()
    result_context: dict[str, Any] = {}

    try:
        yield result_context
    except Exception as e:
        logfire.error(
            f"{operation_name} failed",
            operation=operation_name,
            error=str(e),
            error_type=type(e).__name__,
            response_time_ms=(time.time() - start_time) * 1000,
            **log_context,
        )
        raise

    logfire.debug(
        f"{operation_name} completed",
        operation=operation_name,
        response_time_ms=(time.time() - start_time) * 1000,
        **log_context,
        **result_context,
    )
