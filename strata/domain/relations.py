"""Relationship descriptors declared on models.

A model lists its relations in ``__relations__``::

    class User(Model):
        id: int | None = None
        name: str = ""

        __relations__ = {
            "posts": has_many("Post"),
            "roles": belongs_to_many("Role"),
        }

Keys left unset at declaration time follow naming conventions and are filled
in once, when the relation is first resolved (see
:mod:`strata.query.resolver`).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from ..errors import ConfigurationError

if TYPE_CHECKING:
    from .model import Model

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert a class name to snake case.

    >>> snake_case("BlogPost")
    'blog_post'
    >>> snake_case("HTTPLog")
    'http_log'
    """
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def pluralize(word: str) -> str:
    """Naive English plural used for default table names.

    >>> pluralize("category"), pluralize("address"), pluralize("user")
    ('categories', 'addresses', 'users')
    """
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


class RelationKind(str, Enum):
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"
    BELONGS_TO_MANY = "belongs_to_many"

    @property
    def is_collection(self) -> bool:
        return self in (RelationKind.HAS_MANY, RelationKind.BELONGS_TO_MANY)


@dataclass(frozen=True)
class Relationship:
    """Structural edge from the declaring model to ``target``.

    ``local_key`` is a column of the declaring model and ``foreign_key`` a
    column of the target model. For ``BELONGS_TO_MANY`` the join table links
    ``pivot_local_key`` (pointing at ``local_key``) to ``pivot_foreign_key``
    (pointing at ``foreign_key``).
    """

    kind: RelationKind
    target: Union[type["Model"], str]
    local_key: Optional[str] = None
    foreign_key: Optional[str] = None
    join_table: Optional[str] = None
    pivot_local_key: Optional[str] = None
    pivot_foreign_key: Optional[str] = None

    def __post_init__(self) -> None:
        pivot = (self.join_table, self.pivot_local_key, self.pivot_foreign_key)
        if self.kind is not RelationKind.BELONGS_TO_MANY and any(p is not None for p in pivot):
            raise ConfigurationError(f"{self.kind.value} relations take no join table")

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__name__

    @property
    def is_resolved(self) -> bool:
        keys = (self.local_key, self.foreign_key)
        if self.kind is RelationKind.BELONGS_TO_MANY:
            keys += (self.join_table, self.pivot_local_key, self.pivot_foreign_key)
        return not isinstance(self.target, str) and all(k is not None for k in keys)


def has_one(
    target: Union[type["Model"], str],
    *,
    foreign_key: Optional[str] = None,
    local_key: Optional[str] = None,
) -> Relationship:
    """The target holds ``foreign_key`` (default ``<owner>_id``) pointing back."""
    return Relationship(RelationKind.HAS_ONE, target, local_key=local_key, foreign_key=foreign_key)


def has_many(
    target: Union[type["Model"], str],
    *,
    foreign_key: Optional[str] = None,
    local_key: Optional[str] = None,
) -> Relationship:
    return Relationship(RelationKind.HAS_MANY, target, local_key=local_key, foreign_key=foreign_key)


def belongs_to(
    target: Union[type["Model"], str],
    *,
    foreign_key: Optional[str] = None,
    owner_key: Optional[str] = None,
) -> Relationship:
    """The declaring model holds ``foreign_key`` (default ``<target>_id``)."""
    return Relationship(
        RelationKind.BELONGS_TO, target, local_key=foreign_key, foreign_key=owner_key
    )


def belongs_to_many(
    target: Union[type["Model"], str],
    *,
    join_table: Optional[str] = None,
    pivot_local_key: Optional[str] = None,
    pivot_foreign_key: Optional[str] = None,
    local_key: Optional[str] = None,
    foreign_key: Optional[str] = None,
) -> Relationship:
    """Many-to-many through ``join_table`` (default: both names, sorted)."""
    return Relationship(
        RelationKind.BELONGS_TO_MANY,
        target,
        local_key=local_key,
        foreign_key=foreign_key,
        join_table=join_table,
        pivot_local_key=pivot_local_key,
        pivot_foreign_key=pivot_foreign_key,
    )
