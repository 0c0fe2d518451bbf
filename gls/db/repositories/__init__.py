"""Repository package for database access."""

from .projects import SqliteProjectRepository
from .meta import SqliteContextRepository, SqliteMetaRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteMetaRepository",
    "SqliteContextRepository",
]
