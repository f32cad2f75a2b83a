"""
Store-agnostic value types for the document store layer.

Handles, queries and snapshots defined here never hold a backend object; a
DocumentStore implementation resolves them to its own references. This keeps
the repositories and use cases free of framework-specific types.

Limits mirror the ones enforced by Cloud Firestore:

- a write batch accepts at most MAX_BATCH_OPERATIONS writes
- an ``in`` filter accepts at most MAX_IN_VALUES values
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel

MAX_BATCH_OPERATIONS = 500
MAX_IN_VALUES = 30

SUPPORTED_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})

T = TypeVar("T")
S = TypeVar("S")
M = TypeVar("M", bound=BaseModel)


class _ServerTimestamp:
    """Sentinel asking the store to write its own commit timestamp."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_ServerTimestamp":
        return self

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


# --- Converters ---


class Converter(Protocol[T]):
    """Maps a domain record to and from its stored representation."""

    def to_storage(self, model: T) -> Dict[str, Any]:
        ...

    def from_storage(self, data: Dict[str, Any]) -> T:
        ...


class ModelConverter(Generic[M]):
    """
    Converter for Pydantic models.

    Fields named in ``server_timestamp_fields`` are replaced with the
    SERVER_TIMESTAMP sentinel when their value is None, so the store assigns
    them at write time.
    """

    def __init__(
        self,
        model_class: Type[M],
        server_timestamp_fields: Sequence[str] = (),
    ) -> None:
        self.model_class = model_class
        self.server_timestamp_fields = tuple(server_timestamp_fields)

    def to_storage(self, model: M) -> Dict[str, Any]:
        data = model.model_dump(mode="python")
        for name in self.server_timestamp_fields:
            if data.get(name) is None:
                data[name] = SERVER_TIMESTAMP
        return data

    def from_storage(self, data: Dict[str, Any]) -> M:
        return self.model_class.model_validate(data)


# --- Handles ---


@dataclass(frozen=True)
class CollectionHandle(Generic[T]):
    """A typed collection bound to a fixed path and converter."""

    path: str
    converter: Converter[T] = field(compare=False, repr=False)

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent_path(self) -> Optional[str]:
        """Path of the owning document for sub-collections."""
        if "/" not in self.path:
            return None
        return self.path.rsplit("/", 1)[0]

    def document(self, doc_id: str) -> "DocumentHandle[T]":
        if not doc_id or "/" in doc_id:
            raise ValueError(f"Invalid document id: {doc_id!r}")
        return DocumentHandle(collection=self, id=doc_id)

    def query(self) -> "Query[T]":
        return Query(collection=self)

    def where(self, field_path: str, op: str, value: Any) -> "Query[T]":
        return self.query().where(field_path, op, value)

    def order_by(
        self, field_path: str, direction: str = "asc"
    ) -> "Query[T]":
        return self.query().order_by(field_path, direction)


@dataclass(frozen=True)
class DocumentHandle(Generic[T]):
    """Address of one document inside a collection."""

    collection: CollectionHandle[T]
    id: str

    @property
    def path(self) -> str:
        return f"{self.collection.path}/{self.id}"


# --- Queries ---


@dataclass(frozen=True)
class FieldFilter:
    field_path: str
    op: str
    value: Any


@dataclass(frozen=True)
class Query(Generic[T]):
    """
    An immutable filter over one collection.

    Only what the repositories need: conjunctive field filters, a single
    ordering and a limit.
    """

    collection: CollectionHandle[T]
    filters: Tuple[FieldFilter, ...] = ()
    ordering: Optional[Tuple[str, str]] = None
    limit_to: Optional[int] = None

    def where(self, field_path: str, op: str, value: Any) -> "Query[T]":
        if op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        if op == "in":
            value = list(value)
            if len(value) > MAX_IN_VALUES:
                raise ValueError(
                    f"'in' filters accept at most {MAX_IN_VALUES} values, "
                    f"got {len(value)}"
                )
        return Query(
            collection=self.collection,
            filters=self.filters + (FieldFilter(field_path, op, value),),
            ordering=self.ordering,
            limit_to=self.limit_to,
        )

    def order_by(
        self, field_path: str, direction: str = "asc"
    ) -> "Query[T]":
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported direction: {direction}")
        return Query(
            collection=self.collection,
            filters=self.filters,
            ordering=(field_path, direction),
            limit_to=self.limit_to,
        )

    def limit(self, count: int) -> "Query[T]":
        if count <= 0:
            raise ValueError("limit must be positive")
        return Query(
            collection=self.collection,
            filters=self.filters,
            ordering=self.ordering,
            limit_to=count,
        )


# --- Snapshots and results ---


@dataclass(frozen=True)
class DocumentSnapshot(Generic[T]):
    """The state of one document at read time. ``data`` is None if absent."""

    reference: DocumentHandle[T]
    data: Optional[T]

    @property
    def id(self) -> str:
        return self.reference.id

    @property
    def exists(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class QuerySnapshot(Generic[T]):
    """The documents matched by a query, in query order."""

    query: Query[T]
    docs: List[DocumentSnapshot[T]]

    @property
    def empty(self) -> bool:
        return not any(d.exists for d in self.docs)

    @property
    def size(self) -> int:
        return len(self.docs)

    def __iter__(self) -> Iterator[DocumentSnapshot[T]]:
        return iter(self.docs)

    def to_dict(self) -> Dict[str, T]:
        """Map document id to data for every existing document."""
        return {d.id: d.data for d in self.docs if d.data is not None}


@dataclass(frozen=True)
class WriteResult:
    path: str
    update_time: Optional[datetime] = None


Snapshot = Union[
    DocumentSnapshot[Any], QuerySnapshot[Any], Sequence[DocumentSnapshot[Any]]
]


def exists(snapshot: Snapshot) -> bool:
    """Tell whether a read result found anything.

    Accepts a single document snapshot, a list of document snapshots or a
    query snapshot.
    """
    if isinstance(snapshot, DocumentSnapshot):
        return snapshot.exists
    if isinstance(snapshot, QuerySnapshot):
        return not snapshot.empty
    if isinstance(snapshot, (list, tuple)):
        return any(exists(s) for s in snapshot)
    raise TypeError(f"unexpected snapshot type: {type(snapshot).__name__}")


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Stable partition of ``items`` into consecutive groups of ``size``."""
    if size <= 0:
        raise ValueError("size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
