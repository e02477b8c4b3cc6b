"""Query building, SQL compilation and relationship loading."""

from .builder import QueryBuilder
from .grammar import Grammar, quote_identifier
from .resolver import RelationshipResolver, default_resolver

__all__ = [
    "Grammar",
    "QueryBuilder",
    "RelationshipResolver",
    "default_resolver",
    "quote_identifier",
]
