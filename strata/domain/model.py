"""Model base class.

A model is a plain dataclass describing one persisted record. Subclasses of
:class:`Model` are turned into dataclasses automatically (do not decorate them
again) and registered by class name so relations can reference them lazily.

>>> class Widget(Model):
...     id: int | None = None
...     label: str = ""
>>> Widget.table_name(), Widget.columns()
('widgets', ('id', 'label'))
>>> Widget(label="cog").non_zero_fields()
{'label': 'cog'}
"""

from __future__ import annotations

import threading
import typing
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, ClassVar, Mapping, Optional, TypeVar

from ..errors import ConfigurationError, RelationNotDeclaredError, RelationNotLoadedError
from .relations import Relationship, pluralize, snake_case

M = TypeVar("M", bound="Model")

TIMESTAMP_COLUMNS = ("created_at", "updated_at")
DEFAULT_SOFT_DELETE_COLUMN = "deleted_at"

_registry: dict[str, type["Model"]] = {}
_registry_lock = threading.Lock()


def get_model(name: str) -> type["Model"]:
    """Return the model class registered under ``name``."""
    with _registry_lock:
        model = _registry.get(name)
    if model is None:
        raise ConfigurationError(f"unknown model '{name}'")
    return model


def registered_models() -> dict[str, type["Model"]]:
    with _registry_lock:
        return dict(_registry)


class Model:
    """Base class for persisted records.

    Class-level options:

    - ``__table__``: table name, defaults to the plural snake-cased class name.
    - ``__primary_key__``: identity column, ``"id"`` by default.
    - ``__soft_delete__``: nullable delete-marker column. When omitted a
      ``deleted_at`` field turns soft delete on; set it to ``None`` to opt out.
    - ``__timestamps__``: fill ``created_at``/``updated_at`` when declared.
    - ``__relations__``: relation name to :class:`Relationship`.
    - ``__abstract__``: shared bases set this to skip registration.
    """

    __table__: ClassVar[str] = ""
    __primary_key__: ClassVar[str] = "id"
    __timestamps__: ClassVar[bool] = True
    __relations__: ClassVar[Mapping[str, Relationship]] = {}
    __abstract__: ClassVar[bool] = True

    __columns__: ClassVar[tuple[str, ...]] = ()
    __soft_delete_column__: ClassVar[Optional[str]] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        dataclass(cls)
        cls.__columns__ = tuple(f.name for f in fields(cls))  # type: ignore[arg-type]
        if cls.__dict__.get("__abstract__", False):
            return
        cls.__abstract__ = False
        if not cls.__dict__.get("__table__"):
            cls.__table__ = pluralize(snake_case(cls.__name__))
        cls._validate_declaration()
        with _registry_lock:
            _registry[cls.__name__] = cls

    @classmethod
    def _validate_declaration(cls) -> None:
        columns = set(cls.__columns__)
        if cls.__primary_key__ not in columns:
            raise ConfigurationError(
                f"{cls.__name__} declares primary key '{cls.__primary_key__}' but has no such field"
            )

        soft = getattr(cls, "__soft_delete__", _UNSET)
        if soft is _UNSET:
            soft = DEFAULT_SOFT_DELETE_COLUMN if DEFAULT_SOFT_DELETE_COLUMN in columns else None
        elif soft is not None and soft not in columns:
            raise ConfigurationError(
                f"{cls.__name__} declares soft-delete column '{soft}' but has no such field"
            )
        cls.__soft_delete_column__ = soft

        for name, relation in cls.__relations__.items():
            if not isinstance(relation, Relationship):
                raise ConfigurationError(
                    f"{cls.__name__}.__relations__['{name}'] is not a Relationship"
                )
            if name in columns:
                raise ConfigurationError(
                    f"{cls.__name__} relation '{name}' collides with a column of the same name"
                )

    # -- class-level description -------------------------------------------

    @classmethod
    def table_name(cls) -> str:
        return cls.__table__

    @classmethod
    def primary_key(cls) -> str:
        return cls.__primary_key__

    @classmethod
    def columns(cls) -> tuple[str, ...]:
        return cls.__columns__

    @classmethod
    def soft_delete_column(cls) -> Optional[str]:
        return cls.__soft_delete_column__

    @classmethod
    def timestamp_columns(cls) -> tuple[str, ...]:
        if not cls.__timestamps__:
            return ()
        return tuple(c for c in TIMESTAMP_COLUMNS if c in cls.__columns__)

    @classmethod
    def relations(cls) -> Mapping[str, Relationship]:
        return cls.__relations__

    @classmethod
    def from_row(cls: type[M], row: Mapping[str, Any]) -> M:
        """Hydrate an instance from a row mapping, ignoring unknown keys.

        ISO-8601 strings are parsed for ``datetime``/``date`` fields and
        integers for ``bool`` fields, since SQLite stores neither natively.
        """
        hints = cls._field_types()
        values = {
            name: _coerce(row[name], hints.get(name))
            for name in cls.__columns__
            if name in row
        }
        return cls(**values)

    @classmethod
    def _field_types(cls) -> dict[str, Any]:
        cached = cls.__dict__.get("_strata_field_types")
        if cached is not None:
            return cached
        try:
            hints = typing.get_type_hints(cls)
        except (NameError, TypeError):
            # Forward references that cannot be resolved yet; skip coercion
            hints = {}
        cls._strata_field_types = hints  # type: ignore[attr-defined]
        return hints

    # -- instance helpers ------------------------------------------------------

    def primary_key_value(self) -> Any:
        return getattr(self, type(self).__primary_key__)

    def has_identity(self) -> bool:
        return not _is_zero(self.primary_key_value())

    def is_trashed(self) -> bool:
        column = type(self).__soft_delete_column__
        return column is not None and getattr(self, column) is not None

    def to_row(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in type(self).__columns__}

    def non_zero_fields(self) -> dict[str, Any]:
        """Columns holding a non-zero value (not None, empty, 0 or False)."""
        return {k: v for k, v in self.to_row().items() if not _is_zero(v)}

    def related(self, name: str) -> Any:
        """Return the eager-loaded value of relation ``name``."""
        if name not in type(self).__relations__:
            raise RelationNotDeclaredError(type(self).__name__, name)
        if name not in self.__dict__:
            raise RelationNotLoadedError(type(self).__name__, name)
        return self.__dict__[name]

    def is_loaded(self, name: str) -> bool:
        return name in type(self).__relations__ and name in self.__dict__

    def set_related(self, name: str, value: Any) -> None:
        self.__dict__[name] = value

    def relation_count(self, name: str) -> int:
        key = f"{name}_count"
        if key not in self.__dict__:
            raise RelationNotLoadedError(type(self).__name__, key)
        return self.__dict__[key]

    def set_relation_count(self, name: str, count: int) -> None:
        self.__dict__[f"{name}_count"] = count

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup failed
        relations = type(self).__relations__
        base = name[: -len("_count")] if name.endswith("_count") else name
        if name in relations or base in relations:
            raise RelationNotLoadedError(type(self).__name__, name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


_UNSET: Any = _Unset()


def _is_zero(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, int, float, list, tuple, dict, set)):
        return not value
    return False


def _accepts(hint: Any, kind: type) -> bool:
    if hint is None:
        return False
    if hint is kind:
        return True
    return kind in typing.get_args(hint)


def _coerce(value: Any, hint: Any) -> Any:
    if value is None or hint is None:
        return value
    if isinstance(value, str):
        if _accepts(hint, datetime):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                return value
        if _accepts(hint, date):
            try:
                return date.fromisoformat(value)
            except ValueError:
                return value
    if _accepts(hint, bool) and isinstance(value, int) and not isinstance(value, bool):
        return bool(value)
    return value
