"""Repository interface and its default implementation.

:class:`Repository` is the abstract per-model facade;
:class:`QueryRepository` implements it on top of the query builder.
"""

from .base import Repository
from .query_repository import QueryRepository

__all__ = ["QueryRepository", "Repository"]
