"""
Retrieval engines — the data source behind a Stream.

The stream core never talks to libbgpstream (or a dump file) directly. It
depends only on RetrievalEngine, a narrow interface exposing the handful of
operations it needs, and on the raw record/element shapes defined here.
Engines translate whatever their backend produces into these shapes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Any, Optional, Protocol, Union


# Fixed width of the record's collector/project text fields
NAME_LEN = 256

# Address version markers
ADDR_VERSION_UNKNOWN = 0
ADDR_VERSION_IPV4 = 4
ADDR_VERSION_IPV6 = 6

# Element type tags (libbgpstream numbering)
ELEM_TYPE_UNKNOWN = 0
ELEM_TYPE_RIB = 1
ELEM_TYPE_ANNOUNCEMENT = 2
ELEM_TYPE_WITHDRAWAL = 3
ELEM_TYPE_PEERSTATE = 4

# Peer state codes (libbgpstream numbering)
PEERSTATE_CODES: dict[str, int] = {
    "UNKNOWN": 0,
    "IDLE": 1,
    "CONNECT": 2,
    "ACTIVE": 3,
    "OPENSENT": 4,
    "OPENCONFIRM": 5,
    "ESTABLISHED": 6,
    "CLEARING": 7,
    "DELETED": 8,
}


@dataclass
class AddressStorage:
    """Version-tagged address in fixed 16-byte storage (IPv4 uses the first 4)."""
    version: int = ADDR_VERSION_UNKNOWN
    address: bytes = bytes(16)

    @classmethod
    def from_ip(cls, ip: Union[str, IPv4Address, IPv6Address]) -> "AddressStorage":
        addr = ip_address(ip) if isinstance(ip, str) else ip
        return cls(version=addr.version, address=addr.packed.ljust(16, b"\x00"))


@dataclass
class RawPrefix:
    address: AddressStorage = field(default_factory=AddressStorage)
    mask_len: int = 0


@dataclass
class RawCommunity:
    asn: int
    value: int


class AsPathHandle(Protocol):
    def render(self, capacity: int) -> tuple[int, str]:
        """
        Render the path as text into a buffer of `capacity` bytes.

        Returns (written, text) with snprintf semantics: `written` is the
        length the full rendering needs, `text` is what fit in the buffer.
        """
        ...


class CommunitySetHandle(Protocol):
    def size(self) -> int:
        ...

    def get(self, index: int) -> Optional[RawCommunity]:
        ...


class TextAsPath:
    """AS path handle backed by already-rendered text."""

    def __init__(self, text: str = ""):
        self.text = text

    def render(self, capacity: int) -> tuple[int, str]:
        # Sizes are in bytes; leave room for the terminator, as snprintf does
        raw = self.text.encode("utf-8")
        fitted = raw[:max(capacity - 1, 0)].decode("utf-8", errors="ignore")
        return len(raw), fitted


class CommunityList:
    """Community set handle backed by a list. None entries model a broken set."""

    def __init__(self, items: Optional[list[Optional[RawCommunity]]] = None):
        self.items = list(items or [])

    @classmethod
    def from_strings(cls, communities: list[str]) -> "CommunityList":
        items: list[Optional[RawCommunity]] = []
        for comm in communities:
            left, sep, right = comm.partition(":")
            if sep and is_decimal(left) and is_decimal(right):
                items.append(RawCommunity(asn=int(left), value=int(right)))
            else:
                items.append(None)
        return cls(items)

    def size(self) -> int:
        return len(self.items)

    def get(self, index: int) -> Optional[RawCommunity]:
        if 0 <= index < len(self.items):
            return self.items[index]
        return None


@dataclass
class RawElement:
    """One element as produced by the engine, before any validation."""
    type: int = ELEM_TYPE_UNKNOWN
    timestamp: int = 0
    peer_address: AddressStorage = field(default_factory=AddressStorage)
    peer_asn: int = 0
    prefix: RawPrefix = field(default_factory=RawPrefix)
    nexthop: AddressStorage = field(default_factory=AddressStorage)
    aspath: AsPathHandle = field(default_factory=TextAsPath)
    communities: CommunitySetHandle = field(default_factory=CommunityList)
    old_state: int = 0
    new_state: int = 0


def is_decimal(text: str) -> bool:
    """True for a non-empty run of ASCII digits."""
    return text.isascii() and text.isdigit()


def fixed_width(text: str, width: int = NAME_LEN) -> bytes:
    """Encode text into a NUL-terminated, NUL-padded field of `width` bytes."""
    raw = text.encode("utf-8")[:width - 1]
    return raw + b"\x00" * (width - len(raw))


@dataclass
class RawRecord:
    """
    Reusable record buffer. The engine refills it on every get_next_record();
    `internal` holds engine-private cursor state.
    """
    dump_collector: bytes = field(default_factory=lambda: fixed_width(""))
    dump_project: bytes = field(default_factory=lambda: fixed_width(""))
    internal: Any = None


class RetrievalEngine(ABC):
    """
    Capability interface of the record retrieval backend.

    Handles are opaque to the caller. Allocation methods return None when
    the backend cannot allocate.
    """

    @abstractmethod
    def create_stream(self) -> Any:
        ...

    @abstractmethod
    def destroy_stream(self, handle: Any) -> None:
        ...

    @abstractmethod
    def create_record(self) -> Optional[RawRecord]:
        ...

    @abstractmethod
    def destroy_record(self, record: RawRecord) -> None:
        ...

    @abstractmethod
    def parse_filter_string(self, handle: Any, text: str) -> bool:
        """Parse a filter expression into the stream's filter state. False if rejected."""
        ...

    @abstractmethod
    def add_interval_filter(self, handle: Any, begin: int, end: int) -> None:
        """Register the time window [begin, end); end == 0 means unbounded."""
        ...

    @abstractmethod
    def start(self, handle: Any) -> int:
        """Start the stream. 0 on success."""
        ...

    @abstractmethod
    def stop(self, handle: Any) -> None:
        ...

    @abstractmethod
    def get_next_record(self, handle: Any, record: RawRecord) -> int:
        """Fill `record` with the next record: <0 error, 0 exhausted, >0 record ready."""
        ...

    @abstractmethod
    def get_next_elem(self, record: RawRecord) -> Optional[RawElement]:
        """Next element of the current record, or None when it has no more."""
        ...


# --- Text → raw helpers shared by engines reading rendered data ---

# Code for a peer state name the table does not know; the decoder rejects it
UNMAPPED_PEERSTATE = -1

ELEM_TYPE_CHARS = {
    "R": ELEM_TYPE_RIB,
    "A": ELEM_TYPE_ANNOUNCEMENT,
    "W": ELEM_TYPE_WITHDRAWAL,
    "S": ELEM_TYPE_PEERSTATE,
}


def address_from_text(text: str) -> AddressStorage:
    try:
        return AddressStorage.from_ip(text.strip())
    except ValueError:
        # Left unknown so the decoder reports it
        return AddressStorage()


def prefix_from_text(text: str) -> RawPrefix:
    addr, sep, length = text.strip().partition("/")
    if not sep or not is_decimal(length):
        return RawPrefix(address=address_from_text(addr))
    return RawPrefix(address=address_from_text(addr), mask_len=int(length))


def peer_state_code(name: Optional[str]) -> int:
    """Numeric code for a peer state name; empty means unknown."""
    if not name:
        return PEERSTATE_CODES["UNKNOWN"]
    return PEERSTATE_CODES.get(name.strip().upper(), UNMAPPED_PEERSTATE)
