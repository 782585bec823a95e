"""
Provider interface to the external cloud API.

The executor never talks to a cloud directly; it calls a `Provider`. A
provider raises `TransientAPIError` (or `TimeoutError` / `ConnectionError`)
for failures worth retrying and `PermanentAPIError` for everything else.

`InMemoryProvider` keeps objects in a dict. It is used by the CLI's dry
apply and by tests, and can inject failures and latency.
"""

import itertools
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from graph_plan._state import StateRecord

__all__ = [
    "Provider",
    "InMemoryProvider",
]


class Provider(ABC):
    """The operations the executor needs from a cloud API."""

    @abstractmethod
    def create(
        self, address: str, resource_type: str, attributes: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        """Create an object and return its provider-computed attributes."""

    @abstractmethod
    def update(
        self,
        address: str,
        resource_type: str,
        prior: StateRecord,
        attributes: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        """Update an object in place and return its computed attributes."""

    @abstractmethod
    def delete(self, address: str, resource_type: str, prior: StateRecord) -> None:
        """Delete an object."""


class InMemoryProvider(Provider):
    """A thread-safe provider that stores objects in memory.

    Created objects get an ``id`` of the form ``"<type>-<n>"``; that id is
    the only computed attribute returned. Updates of an id this provider
    never saw recreate the object under that id, so state written by an
    earlier process can still be applied.

    Args:
        latency: Seconds every call sleeps before doing its work.

    Attributes:
        objects: Live objects keyed by id.
        calls: ``(method, address)`` for every call, in call order.
        events: ``("start" | "end", method, address)`` in the order they
            happened; used to check that dependents never start early.
        max_in_flight: Highest number of calls observed running at once.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str, str]] = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._ids = itertools.count(1)
        self._failures: dict[str, list[list[Any]]] = {}
        self._lock = threading.Lock()

    def fail(
        self,
        address: str,
        error: BaseException,
        times: int = 1,
        method: str | None = None,
    ) -> None:
        """Make the next ``times`` calls for ``address`` raise ``error``.

        Args:
            address: Resource address to fail.
            error: Exception to raise.
            times: Number of calls to fail.
            method: Only fail this method (``"create"``, ``"update"`` or
                ``"delete"``); any method when None.
        """
        with self._lock:
            self._failures.setdefault(address, []).append([method, error, times])

    def create(
        self, address: str, resource_type: str, attributes: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        with self._call("create", address):
            object_id = f"{resource_type}-{next(self._ids)}"
            with self._lock:
                self.objects[object_id] = dict(attributes)
            return {"id": object_id}

    def update(
        self,
        address: str,
        resource_type: str,
        prior: StateRecord,
        attributes: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        with self._call("update", address):
            object_id = prior.outputs.get("id")
            with self._lock:
                self.objects[object_id] = dict(attributes)
            return {"id": object_id}

    def delete(self, address: str, resource_type: str, prior: StateRecord) -> None:
        with self._call("delete", address):
            with self._lock:
                self.objects.pop(prior.outputs.get("id"), None)

    def _call(self, method: str, address: str) -> "_Call":
        return _Call(self, method, address)

    def _take_failure(self, method: str, address: str) -> BaseException | None:
        pending = self._failures.get(address, [])
        for entry in pending:
            wanted, error, times = entry
            if wanted is None or wanted == method:
                if times <= 1:
                    pending.remove(entry)
                else:
                    entry[2] = times - 1
                return error
        return None


class _Call:
    """Bookkeeping around one provider call."""

    def __init__(self, provider: InMemoryProvider, method: str, address: str) -> None:
        self.provider = provider
        self.method = method
        self.address = address

    def __enter__(self) -> None:
        p = self.provider
        with p._lock:
            p.calls.append((self.method, self.address))
            p.events.append(("start", self.method, self.address))
            p._in_flight += 1
            p.max_in_flight = max(p.max_in_flight, p._in_flight)
            error = p._take_failure(self.method, self.address)
        try:
            if p.latency:
                time.sleep(p.latency)
            if error is not None:
                raise error
        except BaseException:
            self._finish()
            raise

    def __exit__(self, *exc_info: Any) -> None:
        self._finish()

    def _finish(self) -> None:
        p = self.provider
        with p._lock:
            p._in_flight -= 1
            p.events.append(("end", self.method, self.address))
