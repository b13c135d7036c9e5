"""
Element Decoder — Turn raw engine elements into owned Element models.

Sub-decoders, leaves first:
- parse_address      version-tagged storage → IPv4Address / IPv6Address
- parse_as_path      rendered path text → (AsHop | AsSet, ...)
- parse_communities  community set handle → (Community, ...)
- parse_peer_state   numeric code → PeerState
- str_from_buf       fixed-width NUL-terminated field → str

decode_element() is all-or-nothing: the first failing field raises its
ElementError and no Element is built. The returned Element holds no
reference to the raw element or record; both may be reused by the engine.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from ipaddress import AddressValueError, IPv4Address, IPv6Address
from typing import Union

from pydantic import ValidationError

from engines import (
    ADDR_VERSION_IPV4,
    ADDR_VERSION_IPV6,
    ELEM_TYPE_ANNOUNCEMENT,
    ELEM_TYPE_PEERSTATE,
    ELEM_TYPE_RIB,
    ELEM_TYPE_WITHDRAWAL,
    PEERSTATE_CODES,
    AddressStorage,
    AsPathHandle,
    CommunitySetHandle,
    RawElement,
    RawPrefix,
    RawRecord,
)
from errors import (
    AddressParseError,
    ASNParseError,
    ElementError,
    EncodingError,
    PeerStateError,
    StringParseError,
    UnexpectedTypeError,
)
from models import (
    AnnouncementData,
    AsHop,
    AsSet,
    Community,
    Element,
    ElementType,
    PeerData,
    PeerState,
    Prefix,
    WithdrawalData,
)


# Capacity of the buffer the AS path is rendered into
AS_PATH_BUFFER_LEN = 4096

ASN_MAX = 0xFFFFFFFF
COMMUNITY_VALUE_MAX = 0xFFFF

# Opening → closing delimiter of an AS_SET / confederation group
GROUP_DELIMITERS = {"{": "}", "[": "]", "(": ")"}

_DIGITS_RE = re.compile(r'[0-9]+')

# No entry for ELEM_TYPE_UNKNOWN: it decodes as an unexpected type
_ELEMENT_TYPES: dict[int, ElementType] = {
    ELEM_TYPE_ANNOUNCEMENT: ElementType.ANNOUNCEMENT,
    ELEM_TYPE_RIB: ElementType.RIB,
    ELEM_TYPE_WITHDRAWAL: ElementType.WITHDRAWAL,
    ELEM_TYPE_PEERSTATE: ElementType.PEER_STATE,
}

_PEER_STATES: dict[int, PeerState] = {
    code: PeerState(name.lower()) for name, code in PEERSTATE_CODES.items()
}

_MAX_MASK_LEN = {4: 32, 6: 128}


def parse_address(storage: AddressStorage) -> Union[IPv4Address, IPv6Address]:
    """Decode a version-tagged address. Any version other than 4 or 6 fails."""
    try:
        if storage.version == ADDR_VERSION_IPV4:
            return IPv4Address(bytes(storage.address[:4]))
        if storage.version == ADDR_VERSION_IPV6:
            return IPv6Address(bytes(storage.address[:16]))
    except AddressValueError as exc:
        raise AddressParseError(f"Bad IPv{storage.version} storage: {exc}") from exc
    raise AddressParseError(f"Incorrect address version {storage.version}")


def parse_prefix(prefix: RawPrefix) -> Prefix:
    address = parse_address(prefix.address)
    if not 0 <= prefix.mask_len <= _MAX_MASK_LEN[address.version]:
        raise AddressParseError(f"Mask length {prefix.mask_len} invalid for {address}")
    return Prefix(address=address, length=prefix.mask_len)


def parse_asn(token: str) -> int:
    """Parse a plain decimal 32-bit AS number."""
    if not _DIGITS_RE.fullmatch(token):
        raise ASNParseError(f"Not an AS number: {token!r}")
    asn = int(token)
    if asn > ASN_MAX:
        raise ASNParseError(f"AS number out of range: {token}")
    return asn


def as_path_from_str(path_str: str) -> tuple[Union[AsHop, AsSet], ...]:
    """
    Parse rendered AS path text.

    "100 200 {300,400} 500" → (AsHop(100), AsHop(200), AsSet((300, 400)), AsHop(500))

    Tokens wrapped in {}, [] or () are groups; their members keep the order
    they were rendered in. Any bad token fails the whole path.
    """
    entries: list[Union[AsHop, AsSet]] = []
    for token in path_str.split():
        closing = GROUP_DELIMITERS.get(token[0])
        if closing is None:
            entries.append(AsHop(asn=parse_asn(token)))
            continue
        if len(token) < 2 or token[-1] != closing:
            raise ASNParseError(f"Unbalanced AS group: {token!r}")
        members = token[1:-1].split(",")
        entries.append(AsSet(asns=tuple(parse_asn(m) for m in members)))
    return tuple(entries)


def parse_as_path(path: AsPathHandle) -> tuple[Union[AsHop, AsSet], ...]:
    written, text = path.render(AS_PATH_BUFFER_LEN)
    if written >= AS_PATH_BUFFER_LEN:
        raise ASNParseError(f"AS path truncated ({written} bytes, buffer {AS_PATH_BUFFER_LEN})")
    return as_path_from_str(text)


def parse_communities(communities: CommunitySetHandle) -> tuple[Community, ...]:
    result: list[Community] = []
    count = communities.size()
    for i in range(count):
        comm = communities.get(i)
        if comm is None:
            raise ASNParseError(f"Community {i} of {count} missing")
        if not (0 <= comm.asn <= ASN_MAX and 0 <= comm.value <= COMMUNITY_VALUE_MAX):
            raise ASNParseError(f"Community out of range: {comm.asn}:{comm.value}")
        result.append(Community(asn=comm.asn, value=comm.value))
    return tuple(result)


def parse_peer_state(code: int) -> PeerState:
    try:
        return _PEER_STATES[code]
    except KeyError:
        raise PeerStateError(code) from None


def str_from_buf(buf: bytes) -> str:
    """
    Decode a fixed-width text field. The text ends at the first NUL; a
    field without one is rejected rather than read to its full width.
    """
    end = buf.find(b"\x00")
    if end < 0:
        raise StringParseError(f"No terminator within {len(buf)} bytes")
    try:
        return buf[:end].decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(str(exc)) from exc


def _decode_payload(elem: RawElement, element_type: ElementType):
    if element_type in (ElementType.ANNOUNCEMENT, ElementType.RIB):
        return AnnouncementData(
            prefix=parse_prefix(elem.prefix),
            next_hop=parse_address(elem.nexthop),
            as_path=parse_as_path(elem.aspath),
            communities=parse_communities(elem.communities),
        )
    if element_type == ElementType.WITHDRAWAL:
        return WithdrawalData(prefix=parse_prefix(elem.prefix))
    return PeerData(
        old_state=parse_peer_state(elem.old_state),
        new_state=parse_peer_state(elem.new_state),
    )


def decode_element(elem: RawElement, record: RawRecord) -> Element:
    """Decode one raw element; collector and project come from its record."""
    element_type = _ELEMENT_TYPES.get(elem.type)
    if element_type is None:
        raise UnexpectedTypeError(elem.type)

    data = _decode_payload(elem, element_type)

    try:
        timestamp = datetime.fromtimestamp(elem.timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ElementError(f"Bad timestamp {elem.timestamp}: {exc}") from exc

    peer_address = parse_address(elem.peer_address)
    collector = str_from_buf(record.dump_collector)
    project = str_from_buf(record.dump_project)

    try:
        return Element(
            timestamp=timestamp,
            peer_address=peer_address,
            peer_asn=elem.peer_asn,
            collector=collector,
            project=project,
            type=element_type,
            data=data,
        )
    except ValidationError as exc:
        raise ElementError(str(exc)) from exc
