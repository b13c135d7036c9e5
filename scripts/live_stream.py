#!/usr/bin/env python3
"""
Live test — stream from libbgpstream and decode the first elements.

Usage: python3 scripts/live_stream.py [begin end [count [filter ...]]]
Default: [1567756800, 1567756801), 10 elements, "collector rrc00 and type ribs"
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))
from engines.pybgpstream_engine import PyBGPStreamEngine
from errors import BGPStreamError
from models import AnnouncementData, PeerData, WithdrawalData
from stream import Stream

DEFAULT_BEGIN = 1567756800
DEFAULT_END = 1567756801
DEFAULT_COUNT = 10
DEFAULT_FILTER = "collector rrc00 and type ribs"


def describe(elem) -> str:
    data = elem.data
    if isinstance(data, AnnouncementData):
        path = " ".join(str(e) for e in data.as_path)
        comms = " ".join(str(c) for c in data.communities)
        return f"{data.prefix} via {data.next_hop} path [{path}] communities [{comms}]"
    if isinstance(data, WithdrawalData):
        return f"{data.prefix} withdrawn"
    if isinstance(data, PeerData):
        return f"{data.old_state.value} -> {data.new_state.value}"
    return ""


def main():
    if len(sys.argv) == 2:
        print(__doc__)
        print("Error: begin and end must be given together")
        return 2

    logging.basicConfig(level=logging.INFO)
    begin = int(sys.argv[1]) if len(sys.argv) > 2 else DEFAULT_BEGIN
    end = int(sys.argv[2]) if len(sys.argv) > 2 else DEFAULT_END
    count = int(sys.argv[3]) if len(sys.argv) > 3 else DEFAULT_COUNT
    filters = sys.argv[4:] or [DEFAULT_FILTER]

    print(f"Streaming [{begin}, {end}) with filters {filters}...")
    decoded = 0
    errors = []
    with Stream(PyBGPStreamEngine()) as stream:
        stream.add_interval_filter(begin, end)
        for f in filters:
            stream.add_filter(f)
        for item in stream.start():
            if isinstance(item, BGPStreamError):
                errors.append(item)
                print(f"  ✗ {type(item).__name__}: {item}")
                break
            decoded += 1
            print(f"  [{decoded}] {item.timestamp.isoformat()} {item.collector} "
                  f"AS{item.peer_asn} {item.peer_address} {item.type.value}: {describe(item)}")
            if decoded >= count:
                break

    print(f"\nSummary: {decoded} elements, {len(errors)} errors")
    if decoded != count or errors:
        print("\n⚠ Expected", count, "elements without errors")
        return 1
    print("\n✓ All validations passed!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
