"""Domain events raised while importing remote media objects.

Subscribers run before records are saved and may reshape what gets imported:
``ImportEvent`` exposes the records about to be updated, ``ImportSelectEvent``
exposes the filters used when listing objects for a full import.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    occurred_at: datetime
    aggregate_id: int | str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.occurred_at, datetime):
            raise TypeError("occurred_at must be a datetime")


@dataclass(frozen=True)
class ImportEvent(DomainEvent):
    """Raised once per imported object, before metadata is applied.

    ``records`` is shared with the importer; handlers may add, drop or
    modify entries through ``set_records`` or by mutating the records.
    """

    collection_key: str = ""
    remote_object: Any = None
    records: list[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.collection_key:
            raise ValueError("collection_key is required")

    def set_records(self, records: list[Any]) -> None:
        self.records[:] = records


@dataclass(frozen=True)
class ImportSelectEvent(DomainEvent):
    """Raised before listing a collection for a full import.

    Handlers add API query filters to ``filters``, e.g.
    ``event.filters["byCustomValue"] = "{excludeLocal}{false|-}"``.
    """

    collection_key: str = ""
    filters: dict[str, str] = field(default_factory=dict)
