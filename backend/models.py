"""
Data models for decoded BGP elements.

An Element is one unit of routing information observed by a collector:
- announcement: an UPDATE carrying a reachable prefix
- rib: one entry of a RIB dump (same payload as announcement)
- withdrawal: an UPDATE withdrawing a prefix
- peerstate: a BGP session state change of the peer

Every model is frozen: once the decoder hands an Element out it is owned
by the caller and never changes.
"""

from datetime import datetime
from enum import Enum
from ipaddress import IPv4Address, IPv6Address
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


ASN = Annotated[int, Field(ge=0, le=0xFFFFFFFF)]
IPAddress = Union[IPv4Address, IPv6Address]


class ElementType(str, Enum):
    ANNOUNCEMENT = "announcement"
    RIB = "rib"
    WITHDRAWAL = "withdrawal"
    PEER_STATE = "peerstate"


class PeerState(str, Enum):
    """BGP finite state machine states (RFC 4271) plus collector bookkeeping."""
    UNKNOWN = "unknown"
    IDLE = "idle"
    CONNECT = "connect"
    ACTIVE = "active"
    OPENSENT = "opensent"
    OPENCONFIRM = "openconfirm"
    ESTABLISHED = "established"
    CLEARING = "clearing"        # Quagga-specific, session being torn down
    DELETED = "deleted"          # Quagga-specific, peer removed


class Prefix(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: IPAddress
    length: int = Field(ge=0, le=128)

    def __str__(self) -> str:
        return f"{self.address}/{self.length}"


# --- AS path ---

class AsHop(BaseModel):
    """A single AS occupying one path position."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["hop"] = "hop"
    asn: ASN

    def __str__(self) -> str:
        return str(self.asn)


class AsSet(BaseModel):
    """AS_SET / confederation group. Order is as rendered, not canonical."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["set"] = "set"
    asns: tuple[ASN, ...]

    def __str__(self) -> str:
        return "{" + ",".join(str(a) for a in self.asns) + "}"


PathEntry = Annotated[Union[AsHop, AsSet], Field(discriminator="kind")]


class Community(BaseModel):
    model_config = ConfigDict(frozen=True)

    asn: ASN
    value: int = Field(ge=0, le=0xFFFF)

    def __str__(self) -> str:
        return f"{self.asn}:{self.value}"


# --- Payloads ---

class AnnouncementData(BaseModel):
    """Payload shared by announcement and rib elements."""
    model_config = ConfigDict(frozen=True)

    prefix: Prefix
    next_hop: IPAddress
    as_path: tuple[PathEntry, ...] = ()
    communities: tuple[Community, ...] = ()   # duplicates kept, source order


class WithdrawalData(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: Prefix


class PeerData(BaseModel):
    model_config = ConfigDict(frozen=True)

    old_state: PeerState
    new_state: PeerState


_PAYLOAD_FOR_TYPE = {
    ElementType.ANNOUNCEMENT: AnnouncementData,
    ElementType.RIB: AnnouncementData,
    ElementType.WITHDRAWAL: WithdrawalData,
    ElementType.PEER_STATE: PeerData,
}


class Element(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    peer_address: IPAddress
    peer_asn: ASN
    collector: str
    project: str
    type: ElementType
    data: Union[AnnouncementData, WithdrawalData, PeerData]

    @model_validator(mode="after")
    def _payload_matches_type(self) -> "Element":
        expected = _PAYLOAD_FOR_TYPE[self.type]
        if not isinstance(self.data, expected):
            raise ValueError(
                f"{self.type.value} element needs {expected.__name__}, got {type(self.data).__name__}"
            )
        return self

    @property
    def prefix(self) -> Optional[Prefix]:
        return getattr(self.data, "prefix", None)

    @property
    def as_path(self) -> tuple:
        return getattr(self.data, "as_path", ())

    @property
    def origin_asn(self) -> Optional[int]:
        """Last AS on the path, if it is a single hop."""
        path = self.as_path
        if path and isinstance(path[-1], AsHop):
            return path[-1].asn
        return None
