"""Database access: connection pool, table names and migrations."""

from pgv.db.pool import close_pool, get_pool

__all__ = ["close_pool", "get_pool"]
