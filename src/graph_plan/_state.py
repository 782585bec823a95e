"""
Persisted state of applied resources.

After every successful operation the executor writes a `StateRecord` for
the resource: the resolved attributes it applied, the outputs the provider
reported (computed values such as ``id``), the dependencies it had and its
declaration index. The planner diffs desired resources against these
records on the next run.

Two stores are provided:

- `MemoryStateStore`: in-process, for tests and dry runs
- `FileStateStore`: a JSON document written atomically

Every mutation is an atomic read-modify-write. A store remembers the serial
of the state it last loaded or wrote and raises `StateConflictError` if the
persisted serial moved in between, i.e. someone else wrote the state.
"""

import json
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from graph_plan._errors import StateConflictError
from graph_plan._logging import get_logger
from graph_plan._values import from_json_value, to_json_value

__all__ = [
    "StateRecord",
    "State",
    "StateStore",
    "MemoryStateStore",
    "FileStateStore",
]

logger = get_logger(__name__)

STATE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class StateRecord:
    """Last-applied attributes of one resource.

    Attributes:
        address: Resource address.
        type: Resource type.
        attributes: Resolved attributes sent to the provider.
        outputs: Attributes reported back by the provider.
        dependencies: Addresses the resource depended on when applied.
        declaration_index: Position of the resource in its resource set.
    """

    address: str
    type: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    declaration_index: int = 0

    @property
    def values(self) -> dict[str, Any]:
        """Applied attributes overlaid with provider outputs."""
        return {**self.attributes, **self.outputs}

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "type": self.type,
            "attributes": to_json_value(dict(self.attributes)),
            "outputs": to_json_value(dict(self.outputs)),
            "dependencies": list(self.dependencies),
            "declaration_index": self.declaration_index,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateRecord":
        return cls(
            address=data["address"],
            type=data["type"],
            attributes=from_json_value(data.get("attributes", {})),
            outputs=from_json_value(data.get("outputs", {})),
            dependencies=tuple(data.get("dependencies", ())),
            declaration_index=data.get("declaration_index", 0),
        )


@dataclass(frozen=True)
class State:
    """A snapshot of all state records.

    Attributes:
        records: State records keyed by address.
        serial: Incremented on every write.
        lineage: Identifier shared by all serials of one state.
    """

    records: Mapping[str, StateRecord] = field(default_factory=dict)
    serial: int = 0
    lineage: str = ""

    def __contains__(self, address: object) -> bool:
        return address in self.records

    def __iter__(self) -> Iterator[StateRecord]:
        return iter(self.records.values())

    def __len__(self) -> int:
        return len(self.records)

    def get(self, address: str) -> StateRecord | None:
        return self.records.get(address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": STATE_FORMAT_VERSION,
            "serial": self.serial,
            "lineage": self.lineage,
            "resources": [record.to_dict() for record in self.records.values()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "State":
        version = data.get("version", STATE_FORMAT_VERSION)
        if version != STATE_FORMAT_VERSION:
            raise ValueError(f"unsupported state format version {version}")
        records = [StateRecord.from_dict(item) for item in data.get("resources", [])]
        return cls(
            records={record.address: record for record in records},
            serial=data.get("serial", 0),
            lineage=data.get("lineage", ""),
        )


class StateStore(ABC):
    """Base class for state stores.

    Subclasses implement `_read` and `_write`; locking, conflict detection
    and serial bookkeeping live here.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._serial: int | None = None

    @abstractmethod
    def _read(self) -> State:
        """Return the persisted state."""

    @abstractmethod
    def _write(self, state: State) -> None:
        """Persist a full state snapshot."""

    def load(self) -> State:
        """Load the persisted state and remember its serial."""
        with self._lock:
            state = self._read()
            self._serial = state.serial
            return state

    def get(self, address: str) -> StateRecord | None:
        with self._lock:
            return self._read().get(address)

    def save(self, record: StateRecord) -> None:
        """Insert or replace the record of one resource."""

        def _apply(records: dict[str, StateRecord]) -> None:
            records[record.address] = record

        self._modify(_apply)
        logger.debug("state_saved", address=record.address)

    def delete(self, address: str) -> None:
        """Remove the record of one resource, if present."""

        def _apply(records: dict[str, StateRecord]) -> None:
            records.pop(address, None)

        self._modify(_apply)
        logger.debug("state_deleted", address=address)

    def _modify(self, apply: Callable[[dict[str, StateRecord]], None]) -> None:
        with self._lock:
            current = self._read()
            if self._serial is not None and current.serial != self._serial:
                raise StateConflictError(
                    f"state serial is {current.serial}, expected {self._serial}; "
                    "reload the state and plan again"
                )
            records = dict(current.records)
            apply(records)
            updated = State(
                records=records,
                serial=current.serial + 1,
                lineage=current.lineage or str(uuid.uuid4()),
            )
            self._write(updated)
            self._serial = updated.serial


class MemoryStateStore(StateStore):
    """A state store kept in memory.

    Args:
        state: Initial state. Defaults to an empty state.
    """

    def __init__(self, state: State | None = None) -> None:
        super().__init__()
        self._state = state if state is not None else State()

    def _read(self) -> State:
        return self._state

    def _write(self, state: State) -> None:
        self._state = state


class FileStateStore(StateStore):
    """A state store backed by a JSON file.

    Writes go to a temporary file in the same directory that then replaces
    the state file, so readers never see a partial document.

    Args:
        path: Location of the state file. A missing file is an empty state.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        super().__init__()
        self.path = Path(path)

    def _read(self) -> State:
        if not self.path.exists():
            return State()
        with self.path.open(encoding="utf-8") as f:
            return State.from_dict(json.load(f))

    def _write(self, state: State) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2, sort_keys=False)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
