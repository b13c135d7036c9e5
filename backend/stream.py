"""
Stream — lifecycle of one retrieval session and the flat element iterator.

State machine (only moves forward, except ONGOING → STARTED between records):

    NEW ──► INTERVAL_SET ──► STARTED ◄──► ONGOING ──► COMPLETE
     └──────────────────────►   │
                                └── (start refused) ──► FAILED

Filters and intervals may only be registered before start(). start() runs
once; it hands out the single StreamIterator for the stream. The iterator
hides the record/element nesting: each step yields one decoded Element, or
an error value. Element decode errors leave the stream usable; a record
retrieval error is yielded once and then the iterator is exhausted.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import TYPE_CHECKING, Iterator, Optional, Union

from element_decoder import decode_element
from engines import RawRecord, RetrievalEngine
from errors import (
    BGPStreamError,
    ConstructionError,
    ElementError,
    InvalidFilterError,
    OperationOutOfOrderError,
    RecordRetrievalError,
    StartFailedError,
)
from models import Element

if TYPE_CHECKING:
    from config import StreamConfig

logger = logging.getLogger(__name__)

# Interval end meaning "no upper bound"
FOREVER = 0


class StreamState(IntEnum):
    NEW = 0
    INTERVAL_SET = 1
    STARTED = 2
    ONGOING = 3
    COMPLETE = 4
    FAILED = 5       # start() was refused by the engine


StreamItem = Union[Element, BGPStreamError]


class Stream:
    """
    Owns one engine stream handle and one reusable record buffer.

    Use as a context manager, or call close(). Both resources are released
    on close regardless of how far construction got.
    """

    def __init__(self, engine: RetrievalEngine):
        self.engine = engine
        self.state = StreamState.NEW
        self._handle = None
        self._record: Optional[RawRecord] = None
        self._started = False
        self._closed = False
        self._iterator: Optional[StreamIterator] = None

        try:
            self._handle = engine.create_stream()
            if self._handle is None:
                raise ConstructionError("stream handle")
            self._record = engine.create_record()
            if self._record is None:
                raise ConstructionError("record buffer")
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "Stream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self):
        if hasattr(self, "_closed"):
            self.close()

    def __iter__(self) -> "StreamIterator":
        return self.start()

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Configuration ---

    def _require_configurable(self, rule: str) -> None:
        if self._closed:
            raise OperationOutOfOrderError("Stream is closed")
        if self.state >= StreamState.STARTED:
            raise OperationOutOfOrderError(rule)

    def add_filter(self, filter_text: str) -> None:
        """Hand a filter expression to the engine's filter parser, verbatim."""
        self._require_configurable("Cannot add filter after running")
        if "\x00" in filter_text:
            raise InvalidFilterError(filter_text, "null character in filter string")
        if not self.engine.parse_filter_string(self._handle, filter_text):
            raise InvalidFilterError(filter_text)
        logger.debug("Filter added: %s", filter_text)

    def add_interval_filter(self, begin_time: int, end_time: int = FOREVER) -> None:
        """Restrict the stream to [begin_time, end_time); FOREVER leaves it open."""
        self._require_configurable("Cannot change interval after running")
        self.engine.add_interval_filter(self._handle, begin_time, end_time)
        self.state = StreamState.INTERVAL_SET
        logger.debug("Interval added: [%d, %d)", begin_time, end_time)

    def configure(self, config: "StreamConfig") -> None:
        """Apply every interval and filter of a StreamConfig."""
        for interval in config.intervals:
            self.add_interval_filter(interval.begin, interval.end)
        for filter_text in config.filters:
            self.add_filter(filter_text)

    # --- Iteration ---

    def start(self) -> "StreamIterator":
        self._require_configurable("Must start after interval is set and can only be done once")
        status = self.engine.start(self._handle)
        if status != 0:
            self.state = StreamState.FAILED
            logger.error("Stream start failed with status %d", status)
            raise StartFailedError(status)
        self.state = StreamState.STARTED
        self._started = True
        self._iterator = StreamIterator(self)
        logger.info("Stream started")
        return self._iterator

    iter = start

    # --- Teardown ---

    def close(self) -> None:
        """Stop and destroy the engine handle, then destroy the record buffer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self.state in (StreamState.STARTED, StreamState.ONGOING):
            self.state = StreamState.COMPLETE

        handle, record = self._handle, self._record
        self._handle = None
        self._record = None

        if handle is not None:
            if self._started:
                self._best_effort("stop stream", self.engine.stop, handle)
            self._best_effort("destroy stream", self.engine.destroy_stream, handle)
        if record is not None:
            self._best_effort("destroy record", self.engine.destroy_record, record)

    @staticmethod
    def _best_effort(action: str, fn, *args) -> None:
        try:
            fn(*args)
        except Exception as exc:
            logger.warning("Failed to %s: %s", action, exc)


class StreamIterator:
    """Single-use, forward-only iterator over a started Stream."""

    def __init__(self, stream: Stream):
        self._stream = stream
        self.records = 0
        self.elements_seen = 0

    def __iter__(self) -> "StreamIterator":
        return self

    def __next__(self) -> StreamItem:
        stream = self._stream
        engine = stream.engine

        # Records without elements are skipped until one yields or the stream ends
        while True:
            if stream.state >= StreamState.COMPLETE or stream.closed:
                raise StopIteration

            if stream.state == StreamState.STARTED:
                status = engine.get_next_record(stream._handle, stream._record)
                if status < 0:
                    stream.state = StreamState.COMPLETE
                    logger.error("Record retrieval failed with status %d after %d records",
                                 status, self.records)
                    return RecordRetrievalError(status)
                if status == 0:
                    stream.state = StreamState.COMPLETE
                    logger.info("Stream complete: %d records, %d elements",
                                self.records, self.elements_seen)
                    raise StopIteration
                stream.state = StreamState.ONGOING
                self.records += 1
                logger.debug("Record %d ready", self.records)

            raw = engine.get_next_elem(stream._record)
            if raw is None:
                stream.state = StreamState.STARTED
                continue

            self.elements_seen += 1
            try:
                return decode_element(raw, stream._record)
            except ElementError as exc:
                logger.debug("Element %d failed to decode: %s", self.elements_seen, exc)
                return exc

    def elements(self) -> Iterator[Element]:
        """Yield decoded elements only, raising the first error encountered."""
        for item in self:
            if isinstance(item, BGPStreamError):
                raise item
            yield item
