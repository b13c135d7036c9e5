"""
Dump Engine — Replay bgpreader ASCII output as a retrieval engine.

bgpreader prints one element per line, pipe separated:

    <rec-type>|<elem-type>|<rec-ts>|<project>|<collector>|<router>|<router-ip>|
    <peer-asn>|<peer-ip>|<prefix>|<next-hop>|<as-path>|<origin-as>|
    <communities>|<old-state>|<new-state>

Record boundaries are not printed, so consecutive lines sharing record type,
timestamp, project and collector are grouped into one record. The engine
stays lenient: fields are handed to the decoder as found, and only lines
that cannot be split into a record at all are skipped.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from engines import (
    ELEM_TYPE_CHARS,
    ELEM_TYPE_UNKNOWN,
    CommunityList,
    RawElement,
    RawRecord,
    RetrievalEngine,
    TextAsPath,
    address_from_text,
    fixed_width,
    is_decimal,
    peer_state_code,
    prefix_from_text,
)

logger = logging.getLogger(__name__)

FIELD_COUNT = 16

# Filter keyword → accepted record-type letters
RECORD_TYPES = {"ribs": "R", "updates": "U"}

FILTER_KEYS = ("project", "collector", "type", "peer")


@dataclass(frozen=True)
class RecordKey:
    rec_type: str
    timestamp: int
    project: str
    collector: str


@dataclass
class ParsedLine:
    key: RecordKey
    peer_asn: int
    element: RawElement


class BGPReaderParser:
    """Parse bgpreader element lines into raw elements."""

    @staticmethod
    def parse_line(line: str) -> Optional[ParsedLine]:
        fields = line.rstrip("\r\n").split("|")
        if len(fields) < FIELD_COUNT:
            return None

        (rec_type, elem_type, rec_ts, project, collector, _router, _router_ip,
         peer_asn, peer_ip, prefix, next_hop, as_path, _origin_as,
         communities, old_state, new_state) = fields[:FIELD_COUNT]

        try:
            timestamp = int(float(rec_ts))
        except (ValueError, OverflowError):
            return None
        if not is_decimal(peer_asn.strip()):
            return None

        key = RecordKey(rec_type=rec_type, timestamp=timestamp, project=project, collector=collector)
        element = RawElement(
            type=ELEM_TYPE_CHARS.get(elem_type, ELEM_TYPE_UNKNOWN),
            timestamp=timestamp,
            peer_address=address_from_text(peer_ip),
            peer_asn=int(peer_asn),
            prefix=prefix_from_text(prefix),
            nexthop=address_from_text(next_hop),
            aspath=TextAsPath(as_path.strip()),
            communities=CommunityList.from_strings(communities.split()),
            old_state=peer_state_code(old_state),
            new_state=peer_state_code(new_state),
        )
        return ParsedLine(key=key, peer_asn=int(peer_asn), element=element)


def parse_filter_string(text: str) -> Optional[dict[str, set[str]]]:
    """
    Parse the supported subset of the bgpstream filter language:
    `project X`, `collector X`, `type ribs|updates`, `peer N`, joined by `and`.
    Returns None if anything else is found.
    """
    filters: dict[str, set[str]] = {}
    terms = [t.strip() for t in text.split(" and ")]
    for term in terms:
        parts = term.split()
        if len(parts) != 2 or parts[0] not in FILTER_KEYS:
            return None
        key, value = parts
        if key == "type" and value not in RECORD_TYPES:
            return None
        if key == "peer" and not is_decimal(value):
            return None
        filters.setdefault(key, set()).add(value)
    return filters


@dataclass
class DumpStreamHandle:
    filters: dict[str, set[str]] = field(default_factory=dict)
    intervals: list[tuple[int, int]] = field(default_factory=list)
    started: bool = False
    records: Optional[Iterator[tuple[RecordKey, list[RawElement]]]] = None


class DumpFileEngine(RetrievalEngine):
    """Retrieval engine reading a bgpreader dump file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def create_stream(self) -> DumpStreamHandle:
        return DumpStreamHandle()

    def destroy_stream(self, handle: DumpStreamHandle) -> None:
        self.stop(handle)

    def create_record(self) -> RawRecord:
        return RawRecord()

    def destroy_record(self, record: RawRecord) -> None:
        record.internal = None

    def parse_filter_string(self, handle: DumpStreamHandle, text: str) -> bool:
        parsed = parse_filter_string(text)
        if parsed is None:
            return False
        for key, values in parsed.items():
            handle.filters.setdefault(key, set()).update(values)
        return True

    def add_interval_filter(self, handle: DumpStreamHandle, begin: int, end: int) -> None:
        handle.intervals.append((begin, end))

    def start(self, handle: DumpStreamHandle) -> int:
        if not self.path.is_file():
            logger.error("Dump file not found: %s", self.path)
            return -1
        handle.records = self._records(handle)
        handle.started = True
        return 0

    def stop(self, handle: DumpStreamHandle) -> None:
        if handle.records is not None:
            handle.records.close()
            handle.records = None
        handle.started = False

    def get_next_record(self, handle: DumpStreamHandle, record: RawRecord) -> int:
        if handle.records is None:
            return -1
        try:
            item = next(handle.records, None)
        except (OSError, ValueError) as exc:
            # ValueError covers UnicodeDecodeError from undecodable bytes
            logger.error("Reading %s failed: %s", self.path, exc)
            return -1
        if item is None:
            return 0
        key, elements = item
        record.dump_collector = fixed_width(key.collector)
        record.dump_project = fixed_width(key.project)
        record.internal = iter(elements)
        return 1

    def get_next_elem(self, record: RawRecord):
        if record.internal is None:
            return None
        return next(record.internal, None)

    # --- Filtering ---

    def _in_interval(self, handle: DumpStreamHandle, ts: int) -> bool:
        if not handle.intervals:
            return True
        return any(ts >= begin and (end == 0 or ts < end) for begin, end in handle.intervals)

    def _record_matches(self, handle: DumpStreamHandle, key: RecordKey) -> bool:
        f = handle.filters
        if "project" in f and key.project not in f["project"]:
            return False
        if "collector" in f and key.collector not in f["collector"]:
            return False
        if "type" in f and key.rec_type not in {RECORD_TYPES[t] for t in f["type"]}:
            return False
        return self._in_interval(handle, key.timestamp)

    def _parsed_lines(self) -> Iterator[ParsedLine]:
        with open(self.path) as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip() or line.startswith("#"):
                    continue
                parsed = BGPReaderParser.parse_line(line)
                if parsed is None:
                    logger.warning("%s:%d: skipping unparsable line", self.path, lineno)
                    continue
                yield parsed

    def _records(self, handle: DumpStreamHandle) -> Iterator[tuple[RecordKey, list[RawElement]]]:
        peers = handle.filters.get("peer")
        for key, group in itertools.groupby(self._parsed_lines(), key=lambda p: p.key):
            if not self._record_matches(handle, key):
                continue
            elements = [p.element for p in group if peers is None or str(p.peer_asn) in peers]
            logger.debug("Record %s@%d: %d elements", key.collector, key.timestamp, len(elements))
            yield key, elements
