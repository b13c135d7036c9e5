"""
PyBGPStream Engine — Live retrieval through the libbgpstream Python binding.

The binding (`_pybgpstream`, shipped by the pybgpstream distribution) needs
libbgpstream installed, so it is imported only when a stream is created.
Binding elements are already partly decoded (strings, dicts); they are
translated back into raw shapes here so every source goes through the
same element decoder.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from engines import (
    ELEM_TYPE_CHARS,
    ELEM_TYPE_UNKNOWN,
    CommunityList,
    RawCommunity,
    RawElement,
    RawRecord,
    RetrievalEngine,
    TextAsPath,
    address_from_text,
    fixed_width,
    peer_state_code,
    prefix_from_text,
)

logger = logging.getLogger(__name__)


def _communities(raw: Any) -> CommunityList:
    items: list[Optional[RawCommunity]] = []
    for comm in raw or []:
        if isinstance(comm, dict):
            try:
                items.append(RawCommunity(asn=int(comm["asn"]), value=int(comm["value"])))
            except (KeyError, TypeError, ValueError):
                items.append(None)
        else:
            items.extend(CommunityList.from_strings([str(comm)]).items)
    return CommunityList(items)


def to_raw_element(elem: Any) -> RawElement:
    """Translate a binding element into a RawElement."""
    fields = getattr(elem, "fields", None) or {}
    return RawElement(
        type=ELEM_TYPE_CHARS.get(getattr(elem, "type", ""), ELEM_TYPE_UNKNOWN),
        timestamp=int(getattr(elem, "time", 0)),
        peer_address=address_from_text(str(getattr(elem, "peer_address", ""))),
        peer_asn=int(getattr(elem, "peer_asn", 0)),
        prefix=prefix_from_text(fields.get("prefix", "")),
        nexthop=address_from_text(fields.get("next-hop", "")),
        aspath=TextAsPath(fields.get("as-path", "")),
        communities=_communities(fields.get("communities")),
        old_state=peer_state_code(fields.get("old-state")),
        new_state=peer_state_code(fields.get("new-state")),
    )


class PyBGPStreamEngine(RetrievalEngine):
    """Retrieval engine backed by libbgpstream."""

    def create_stream(self) -> Any:
        try:
            import _pybgpstream
        except ImportError as exc:
            logger.error("libbgpstream binding unavailable: %s", exc)
            return None
        return _pybgpstream.BGPStream()

    def destroy_stream(self, handle: Any) -> None:
        # The binding frees the native stream when the object is collected
        pass

    def create_record(self) -> RawRecord:
        return RawRecord()

    def destroy_record(self, record: RawRecord) -> None:
        record.internal = None

    def parse_filter_string(self, handle: Any, text: str) -> bool:
        try:
            result = handle.parse_filter_string(text)
        except Exception as exc:
            logger.warning("Filter %r rejected: %s", text, exc)
            return False
        return result is None or bool(result)

    def add_interval_filter(self, handle: Any, begin: int, end: int) -> None:
        handle.add_interval_filter(begin, end)

    def start(self, handle: Any) -> int:
        try:
            handle.start()
        except Exception as exc:
            logger.error("libbgpstream start failed: %s", exc)
            return -1
        return 0

    def stop(self, handle: Any) -> None:
        stop = getattr(handle, "stop", None)
        if stop is not None:
            stop()

    def get_next_record(self, handle: Any, record: RawRecord) -> int:
        try:
            rec = handle.get_next_record()
        except Exception as exc:
            logger.error("libbgpstream get_next_record failed: %s", exc)
            return -1
        if rec is None:
            return 0
        record.dump_collector = fixed_width(str(getattr(rec, "collector", "")))
        record.dump_project = fixed_width(str(getattr(rec, "project", "")))
        record.internal = rec
        return 1

    def get_next_elem(self, record: RawRecord) -> Optional[RawElement]:
        if record.internal is None:
            return None
        elem = record.internal.get_next_elem()
        if elem is None:
            return None
        return to_raw_element(elem)
