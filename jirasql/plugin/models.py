from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    TypeVar,
)

T = TypeVar("T")

# Signatures of the functions a table binds to. The client handle is passed
# explicitly; no table reaches for a global connection.
ListFunc = Callable[[Any, "QueryContext"], AsyncIterator[Any]]
GetFunc = Callable[[Any, Dict[str, Any]], Awaitable[Optional[Any]]]
HydrateFunc = Callable[[Any, Any], Awaitable[Any]]


class ColumnType(str, Enum):
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    JSON = "json"
    TIMESTAMP = "timestamp"


@dataclass
class TransformData:
    """What a column transform sees for one row."""

    item: Any                  # typed record from the list/get call
    hydrate_item: Any = None   # output of the column's hydrate func, if any
    column_name: str = ""


Transform = Callable[[TransformData], Any]


@dataclass
class Column:
    name: str
    type: ColumnType
    description: str = ""
    hydrate: Optional[HydrateFunc] = None
    transform: Optional[Transform] = None   # None → attribute named like the column


@dataclass
class HydrateConfig:
    """Per-hydrate-function execution settings."""

    func: HydrateFunc
    max_concurrency: Optional[int] = None   # None → connection default


@dataclass
class ListConfig:
    hydrate: ListFunc


@dataclass
class GetConfig:
    key_columns: List[str]
    hydrate: GetFunc


@dataclass
class Table:
    """
    Declarative table definition: schema + the functions that fill it.

    Exactly one list function; optional single-item get keyed on
    get_config.key_columns; any number of per-row hydrate functions
    referenced from columns.
    """

    name: str
    description: str
    list_config: ListConfig
    columns: List[Column]
    get_config: Optional[GetConfig] = None
    hydrate_configs: List[HydrateConfig] = field(default_factory=list)

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def hydrate_funcs(self) -> List[HydrateFunc]:
        """Distinct hydrate functions referenced by columns, in column order."""
        funcs: List[HydrateFunc] = []
        for col in self.columns:
            if col.hydrate is not None and col.hydrate not in funcs:
                funcs.append(col.hydrate)
        return funcs

    def hydrate_config(self, func: HydrateFunc) -> HydrateConfig:
        for cfg in self.hydrate_configs:
            if cfg.func is func:
                return cfg
        return HydrateConfig(func=func)


@dataclass
class QueryContext:
    """
    What the host hands to a table scan.

    columns is accepted for interface parity with the host but never used to
    prune: every scan fetches the full projection.
    """

    limit: Optional[int] = None
    columns: List[str] = field(default_factory=list)
    key_quals: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Page(Generic[T]):
    """One page of an offset-paginated listing."""

    items: List[T]
    start_at: int = 0
    total: Optional[int] = None        # None when the endpoint does not report it
    max_results: Optional[int] = None  # page size the server actually applied


@dataclass
class ScanCursor:
    """Position of a Paginated Scan. offset only ever grows."""

    offset: int = 0
    page_size: int = 1000
    total_consumed: int = 0

    def advance(self, items_returned: int) -> None:
        self.offset += items_returned
