"""
Interface every downstream sink implements.

A sink receives each batch after the in-memory store has been updated.
It returns how many records it wrote and raises SinkError on failure,
which sends the whole batch back for redelivery.
"""

from typing import Any, Protocol, Sequence, runtime_checkable

from batchcache.categories import Category


@runtime_checkable
class RecordSink(Protocol):
    def write_batch(self, category: Category, records: Sequence[Any]) -> int:
        ...

    def close(self) -> None:
        ...
