"""Tests for the element decoder and its sub-decoders."""

import sys
from datetime import datetime, timezone
from ipaddress import IPv4Address, IPv6Address
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from element_decoder import (
    AS_PATH_BUFFER_LEN,
    as_path_from_str,
    decode_element,
    parse_address,
    parse_as_path,
    parse_communities,
    parse_peer_state,
    str_from_buf,
)
from engines import (
    ELEM_TYPE_UNKNOWN,
    AddressStorage,
    CommunityList,
    RawCommunity,
    RawRecord,
    TextAsPath,
    fixed_width,
    prefix_from_text,
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
    ElementType,
    PeerData,
    PeerState,
    WithdrawalData,
)
from fake_engine import announcement, broken_communities, peer_state, rib, withdrawal


def make_record(collector: str = "rrc00", project: str = "ris") -> RawRecord:
    return RawRecord(dump_collector=fixed_width(collector), dump_project=fixed_width(project))


class TestAddressDecode:
    def test_ipv4_zero(self):
        assert parse_address(AddressStorage(version=4, address=bytes(16))) == IPv4Address("0.0.0.0")

    def test_ipv4(self):
        assert parse_address(AddressStorage.from_ip("193.0.0.56")) == IPv4Address("193.0.0.56")

    def test_ipv6(self):
        addr = parse_address(AddressStorage.from_ip("2001:7f8:30::205"))
        assert addr == IPv6Address("2001:7f8:30::205")

    def test_unknown_version(self):
        with pytest.raises(AddressParseError):
            parse_address(AddressStorage(version=0))

    def test_bad_version(self):
        with pytest.raises(AddressParseError, match="version 5"):
            parse_address(AddressStorage(version=5, address=bytes(16)))

    def test_short_storage(self):
        with pytest.raises(AddressParseError):
            parse_address(AddressStorage(version=6, address=bytes(4)))


class TestASPathDecode:
    def test_mixed_path(self):
        assert as_path_from_str("100 200 {300,400} 500") == (
            AsHop(asn=100),
            AsHop(asn=200),
            AsSet(asns=(300, 400)),
            AsHop(asn=500),
        )

    def test_group_order_kept(self):
        assert as_path_from_str("{400,300,300}") == (AsSet(asns=(400, 300, 300)),)

    def test_confederation_delimiters(self):
        path = as_path_from_str("(65001,65002) [65003] 174")
        assert path == (AsSet(asns=(65001, 65002)), AsSet(asns=(65003,)), AsHop(asn=174))

    def test_empty_path(self):
        assert as_path_from_str("") == ()

    def test_repeated_whitespace(self):
        assert as_path_from_str(" 3333  13335 ") == (AsHop(asn=3333), AsHop(asn=13335))

    def test_32bit_asn(self):
        assert as_path_from_str("4294967295") == (AsHop(asn=4294967295),)

    def test_non_numeric_token(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("100 abc 500")

    def test_non_numeric_group_member(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("100 {300,x}")

    def test_empty_group(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("{}")

    def test_unbalanced_group(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("{300,400]")

    def test_out_of_range(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("4294967296")

    def test_signed_token(self):
        with pytest.raises(ASNParseError):
            as_path_from_str("+100")

    def test_truncated_render(self):
        text = " ".join(["65000"] * 1000)
        assert len(text) >= AS_PATH_BUFFER_LEN
        with pytest.raises(ASNParseError, match="truncated"):
            parse_as_path(TextAsPath(text))

    def test_render_just_fits(self):
        text = "1" * (AS_PATH_BUFFER_LEN - 1)
        with pytest.raises(ASNParseError):
            # Fits the buffer, but is far beyond 32 bits
            parse_as_path(TextAsPath(text))
        assert parse_as_path(TextAsPath("7018 15169")) == (AsHop(asn=7018), AsHop(asn=15169))

    def test_render_counts_bytes(self):
        text = "\u00e9" * (AS_PATH_BUFFER_LEN // 2)
        written, fitted = TextAsPath(text).render(AS_PATH_BUFFER_LEN)
        assert written == AS_PATH_BUFFER_LEN
        assert len(fitted.encode("utf-8")) < AS_PATH_BUFFER_LEN
        with pytest.raises(ASNParseError, match="truncated"):
            parse_as_path(TextAsPath(text))


class TestCommunityDecode:
    def test_order_and_duplicates(self):
        comms = parse_communities(CommunityList.from_strings(["2914:410", "174:21000", "2914:410"]))
        assert comms == (
            Community(asn=2914, value=410),
            Community(asn=174, value=21000),
            Community(asn=2914, value=410),
        )

    def test_empty(self):
        assert parse_communities(CommunityList()) == ()

    def test_missing_entry(self):
        handle = CommunityList([RawCommunity(1, 2), None, RawCommunity(3, 4)])
        with pytest.raises(ASNParseError, match="Community 1 of 3"):
            parse_communities(handle)

    def test_value_out_of_range(self):
        with pytest.raises(ASNParseError):
            parse_communities(CommunityList([RawCommunity(3333, 70000)]))

    def test_non_ascii_digits(self):
        handle = CommunityList.from_strings(["2914:410", "\u00b2:410"])
        assert handle.get(0) == RawCommunity(2914, 410)
        assert handle.get(1) is None
        with pytest.raises(ASNParseError):
            parse_communities(handle)

    def test_non_ascii_mask_length(self):
        assert prefix_from_text("1.0.0.0/\u00b2").mask_len == 0


class TestPeerState:
    def test_known_codes(self):
        assert parse_peer_state(0) == PeerState.UNKNOWN
        assert parse_peer_state(1) == PeerState.IDLE
        assert parse_peer_state(6) == PeerState.ESTABLISHED
        assert parse_peer_state(8) == PeerState.DELETED

    def test_unmapped_code(self):
        with pytest.raises(PeerStateError) as exc_info:
            parse_peer_state(42)
        assert exc_info.value.code == 42
        assert isinstance(exc_info.value, ElementError)


class TestStrFromBuf:
    def test_terminated(self):
        assert str_from_buf(fixed_width("rrc00")) == "rrc00"

    def test_empty(self):
        assert str_from_buf(b"\x00" * 8) == ""

    def test_terminator_in_last_byte(self):
        assert str_from_buf(b"abc\x00") == "abc"

    def test_no_terminator(self):
        with pytest.raises(StringParseError):
            str_from_buf(b"routeviews")

    def test_invalid_utf8(self):
        with pytest.raises(EncodingError):
            str_from_buf(b"rrc\xff\x00")


class TestDecodeElement:
    def test_rib(self):
        elem = decode_element(rib(communities=["3333:100", "3333:200"]), make_record())
        assert elem.type == ElementType.RIB
        assert isinstance(elem.data, AnnouncementData)
        assert str(elem.data.prefix) == "1.0.0.0/24"
        assert elem.data.next_hop == IPv4Address("193.0.0.56")
        assert elem.data.as_path == (AsHop(asn=3333), AsHop(asn=13335))
        assert [str(c) for c in elem.data.communities] == ["3333:100", "3333:200"]
        assert elem.collector == "rrc00"
        assert elem.project == "ris"
        assert elem.peer_asn == 3333
        assert elem.timestamp == datetime(2019, 9, 6, 8, 0, tzinfo=timezone.utc)

    def test_announcement(self):
        elem = decode_element(announcement(), make_record())
        assert elem.type == ElementType.ANNOUNCEMENT
        assert isinstance(elem.data, AnnouncementData)

    def test_withdrawal(self):
        elem = decode_element(withdrawal(), make_record())
        assert elem.type == ElementType.WITHDRAWAL
        assert isinstance(elem.data, WithdrawalData)
        assert str(elem.data.prefix) == "103.77.122.0/24"

    def test_peer_state(self):
        elem = decode_element(peer_state(old=6, new=1), make_record())
        assert elem.type == ElementType.PEER_STATE
        assert elem.data == PeerData(old_state=PeerState.ESTABLISHED, new_state=PeerState.IDLE)
        assert elem.peer_address == IPv6Address("2001:7f8:30:0:2:1:2:205")

    def test_unknown_type(self):
        raw = rib()
        raw.type = ELEM_TYPE_UNKNOWN
        with pytest.raises(UnexpectedTypeError):
            decode_element(raw, make_record())

    def test_unrecognized_type(self):
        raw = rib()
        raw.type = 99
        with pytest.raises(UnexpectedTypeError) as exc_info:
            decode_element(raw, make_record())
        assert exc_info.value.tag == 99

    def test_bad_next_hop_fails_whole_element(self):
        raw = rib()
        raw.nexthop = AddressStorage(version=0)
        with pytest.raises(AddressParseError):
            decode_element(raw, make_record())

    def test_bad_as_path(self):
        with pytest.raises(ASNParseError):
            decode_element(rib(as_path="3333 bogus"), make_record())

    def test_broken_community_set(self):
        with pytest.raises(ASNParseError):
            decode_element(broken_communities(), make_record())

    def test_unmapped_peer_state(self):
        with pytest.raises(PeerStateError):
            decode_element(peer_state(old=6, new=77), make_record())

    def test_bad_mask_length(self):
        with pytest.raises(AddressParseError):
            decode_element(rib(length=33), make_record())

    def test_bad_peer_address(self):
        raw = withdrawal()
        raw.peer_address = AddressStorage(version=7)
        with pytest.raises(AddressParseError):
            decode_element(raw, make_record())

    def test_unterminated_collector(self):
        record = RawRecord(dump_collector=b"x" * 256, dump_project=fixed_width("ris"))
        with pytest.raises(StringParseError):
            decode_element(rib(), record)

    def test_withdrawal_ignores_announcement_fields(self):
        raw = withdrawal()
        raw.aspath = TextAsPath("not a path")
        elem = decode_element(raw, make_record())
        assert elem.type == ElementType.WITHDRAWAL

    def test_element_is_owned_copy(self):
        raw = rib()
        record = make_record("rrc00")
        elem = decode_element(raw, record)
        record.dump_collector = fixed_width("rrc21")
        raw.aspath = TextAsPath("1 2 3")
        assert elem.collector == "rrc00"
        assert elem.data.as_path == (AsHop(asn=3333), AsHop(asn=13335))

    def test_element_is_frozen(self):
        elem = decode_element(rib(), make_record())
        with pytest.raises(ValidationError):
            elem.peer_asn = 1
