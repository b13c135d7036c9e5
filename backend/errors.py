"""
Error hierarchy for the BGP element stream.

Two families:
- Stream-level errors: construction, filter, ordering, start and record
  retrieval failures. Configuration and start calls raise these.
- Element-level errors (ElementError): a single raw element could not be
  decoded. The stream iterator yields these as values and keeps going.
"""

from __future__ import annotations


class BGPStreamError(Exception):
    """Base class for every error raised or yielded by the stream."""

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        super().__init__(self.message)


class ConstructionError(BGPStreamError):
    """Retrieval engine failed to allocate a stream resource."""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Could not allocate {resource}")


class InvalidFilterError(BGPStreamError):
    """Filter text was rejected by the retrieval engine."""

    def __init__(self, filter_text: str, reason: str = ""):
        self.filter_text = filter_text
        msg = f"Invalid filter: {filter_text!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class OperationOutOfOrderError(BGPStreamError):
    """Stream API called in a state that does not allow it."""

    def __init__(self, rule: str):
        self.rule = rule
        super().__init__(rule)


class StartFailedError(BGPStreamError):
    """Retrieval engine refused to start the stream."""

    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Stream start failed with status {status}")


class RecordRetrievalError(BGPStreamError):
    """Retrieval engine reported an error while fetching the next record."""

    def __init__(self, status: int):
        self.status = status
        super().__init__(f"Record retrieval failed with status {status}")


# --- Element decode errors ---

class ElementError(BGPStreamError):
    """A raw element could not be decoded."""


class AddressParseError(ElementError):
    pass


class ASNParseError(ElementError):
    """Integer field (AS number, community) could not be parsed."""


class EncodingError(ElementError):
    pass


class UnexpectedTypeError(ElementError):
    """Element type tag is unknown."""

    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Unexpected element type {tag}")


class StringParseError(ElementError):
    pass


class PeerStateError(ElementError):
    """Peer-state code has no named state."""

    def __init__(self, code: int):
        self.code = code
        super().__init__(f"Unmapped peer state code {code}")
