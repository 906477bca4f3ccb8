from __future__ import annotations

import logging
import queue
from collections import defaultdict
from typing import DefaultDict, Dict, Generic, Hashable, Iterator, List, Tuple, TypeVar

from .models import DeletionEvent, InsertionEvent
from .stages import END_OF_STREAM, PipelineContext, Stage

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Hashable)
E = TypeVar("E")


class IndelFrequencyTable(Generic[S]):
    """Supporting read ids per (reference coordinate, indel signature).

    The signature is the inserted-base string for insertions and the deletion
    length for deletions. Supporters are kept in arrival order and are not
    de-duplicated. A table is only ever mutated by the thread that owns it.
    """

    def __init__(self) -> None:
        self._buckets: DefaultDict[int, Dict[S, List[str]]] = defaultdict(dict)
        self.events = 0

    def add(self, coordinate: int, signature: S, read_id: str) -> None:
        self._buckets[coordinate].setdefault(signature, []).append(read_id)
        self.events += 1

    def coordinates(self) -> List[int]:
        return sorted(self._buckets)

    def signatures(self, coordinate: int) -> List[S]:
        return sorted(self._buckets.get(coordinate, {}))

    def items(self) -> Iterator[Tuple[int, S, List[str]]]:
        """Iterate every bucket ordered by coordinate, then signature."""
        for coordinate in self.coordinates():
            buckets = self._buckets[coordinate]
            for signature in self.signatures(coordinate):
                yield coordinate, signature, buckets[signature]

    def __len__(self) -> int:
        return sum(len(b) for b in self._buckets.values())


class Aggregator(Stage, Generic[S, E]):
    """Sole consumer of one event stream; builds the stream's frequency table.

    On ``END_OF_STREAM`` the finished table is posted to the orchestrator as a
    ``(kind, table)`` signal and the aggregator never touches it again.
    """

    kind = "events"

    def __init__(self, ctx: PipelineContext, events: queue.Queue, *, name: str | None = None) -> None:
        super().__init__(ctx, name=name or f"{self.kind}-aggregator")
        self.events = events
        self.table: IndelFrequencyTable[S] = IndelFrequencyTable()

    def bucket_of(self, event: E) -> Tuple[int, S, str]:
        raise NotImplementedError

    def work(self) -> None:
        while True:
            event = self.ctx.get(self.events)
            if event is END_OF_STREAM:
                break
            self.table.add(*self.bucket_of(event))

        logger.debug("%s: %d events in %d buckets", self.name, self.table.events, len(self.table))
        table, self.table = self.table, IndelFrequencyTable()
        self.ctx.signal(self.kind, table)


def insertion_bucket(event: InsertionEvent) -> Tuple[int, str, str]:
    return event.reference_anchor, event.inserted_bases, event.read_id


def deletion_bucket(event: DeletionEvent) -> Tuple[int, int, str]:
    return event.reference_start, event.length, event.read_id


class InsertionAggregator(Aggregator[str, InsertionEvent]):
    kind = "insertions"
    bucket_of = staticmethod(insertion_bucket)


class DeletionAggregator(Aggregator[int, DeletionEvent]):
    kind = "deletions"
    bucket_of = staticmethod(deletion_bucket)
