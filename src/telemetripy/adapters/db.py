"""Database query logging."""

import functools
import inspect
from collections.abc import Callable
from typing import Any

from telemetripy.core.log_batcher import LogBatcher


def wrap_query(
    batcher: LogBatcher, query: Callable[..., Any], sql_arg: int = 1
) -> Callable[..., Any]:
    """Wrap a query callable so each call queues a ``db_query`` debug entry.

    Only the SQL text is logged, never the bound parameters. Sync and async
    callables are both supported.

    Args:
        batcher: Batcher receiving the entries.
        query: Callable shaped like ``query(connection, sql, params)``.
        sql_arg: Positional index of the SQL text; ``sql=`` keywords also work.
    """

    def _sql(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        if "sql" in kwargs:
            return kwargs["sql"]
        return args[sql_arg] if len(args) > sql_arg else None

    if inspect.iscoroutinefunction(query):

        @functools.wraps(query)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            batcher.debug("db_query", sql=_sql(args, kwargs))
            return await query(*args, **kwargs)

        return async_wrapper

    @functools.wraps(query)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        batcher.debug("db_query", sql=_sql(args, kwargs))
        return query(*args, **kwargs)

    return wrapper
