"""Domain events emitted by the security aggregate, with JSON serialisation."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import MISSING, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

AGGREGATE_TYPE = "Security"

_FRACTION = re.compile(r"\.(\d+)")


def _json_field(name: str, kind: Optional[str] = None, omitempty: bool = False, **kwargs: Any) -> Any:
    return field(metadata={"json": name, "kind": kind, "omitempty": omitempty}, **kwargs)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _format_time(value: datetime) -> str:
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_time(text: Any) -> datetime:
    if not isinstance(text, str):
        raise ValueError(f"expected a timestamp string, got {text!r}")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # Timestamps may carry up to nanosecond precision; keep microseconds.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {text!r}") from exc


def _encode(value: Any, kind: Optional[str]) -> Any:
    if value is None:
        return None
    if kind == "datetime":
        return _format_time(value)
    if kind == "document":
        return value.to_dict()
    if isinstance(value, dict):
        return dict(value)
    return value


def _decode(value: Any, kind: Optional[str]) -> Any:
    if kind == "map":
        return dict(value) if value is not None else {}
    if value is None:
        return None
    if kind == "datetime":
        return _parse_time(value)
    if kind == "document":
        if not isinstance(value, dict):
            raise ValueError(f"expected a document object, got {value!r}")
        return SecurityDocument.from_dict(value)
    return value


def _to_dict(obj: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for f in fields(obj):
        key = f.metadata.get("json")
        if key is None:
            continue
        value = getattr(obj, f.name)
        if value is None and f.metadata.get("omitempty"):
            continue
        result[key] = _encode(value, f.metadata.get("kind"))
    return result


def _from_dict(cls: type, data: dict[str, Any]) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        key = f.metadata.get("json")
        if key is None:
            continue
        if key in data:
            kwargs[f.name] = _decode(data[key], f.metadata.get("kind"))
        elif f.default is MISSING and f.default_factory is MISSING:
            raise ValueError(f"missing field {key!r} for {cls.__name__}")
    return cls(**kwargs)


@dataclass(frozen=True)
class Metadata:
    """Envelope information describing a stored event."""

    event_id: str
    event_type: str
    aggregate_id: str
    aggregate_type: str
    event_version: int
    timestamp: datetime


@dataclass
class SecurityDocument:
    """A document attached to a security, such as a prospectus."""

    document_id: str = _json_field("documentId")
    document_type: str = _json_field("documentType")
    title: str = _json_field("title")
    file_name: str = _json_field("fileName")
    file_size: int = _json_field("fileSize")
    content_hash: str = _json_field("contentHash")
    uploaded_at: Optional[datetime] = _json_field("uploadedAt", kind="datetime", default=None)
    version: str = _json_field("version", default="")
    is_prospectus: bool = _json_field("isProspectus", default=False)

    def to_dict(self) -> dict[str, Any]:
        """Return the document as a JSON-ready dictionary."""
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityDocument":
        """Build a document from a dictionary produced by :meth:`to_dict`."""
        return _from_dict(cls, data)


@dataclass(kw_only=True)
class DomainEvent:
    """Common fields and behaviour of every security event."""

    EVENT_TYPE: ClassVar[str] = "DomainEvent"

    aggregate_id: str = _json_field("aggregateId")
    aggregate_type: str = _json_field("aggregateType", default=AGGREGATE_TYPE)
    event_id: str = _json_field("eventId", default_factory=_new_id)
    version: int = _json_field("version", default=0)
    timestamp: datetime = _json_field("timestamp", kind="datetime", default_factory=_now)

    @property
    def event_type(self) -> str:
        return self.EVENT_TYPE

    def metadata(self) -> Metadata:
        """Return the event's envelope metadata."""
        return Metadata(
            event_id=self.event_id,
            event_type=self.event_type,
            aggregate_id=self.aggregate_id,
            aggregate_type=self.aggregate_type,
            event_version=self.version,
            timestamp=self.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the event as a JSON-ready dictionary."""
        return _to_dict(self)

    def to_json(self) -> str:
        """Serialise the event to a JSON string."""
        return json.dumps(self.to_dict())


@dataclass(kw_only=True)
class SecurityListed(DomainEvent):
    """A new security was listed."""

    EVENT_TYPE: ClassVar[str] = "SecurityListed"

    issuer_id: str = _json_field("issuerId")
    security_type: str = _json_field("securityType")
    name: str = _json_field("name")
    symbol: str = _json_field("symbol")
    total_shares: int = _json_field("totalShares")
    par_value: Optional[float] = _json_field("parValue", omitempty=True, default=None)
    details: dict[str, str] = _json_field("details", kind="map", default_factory=dict)


@dataclass(kw_only=True)
class SecurityDocumentAdded(DomainEvent):
    """A document was attached to a security."""

    EVENT_TYPE: ClassVar[str] = "SecurityDocumentAdded"

    document: SecurityDocument = _json_field("documentInfo", kind="document")
    added_by: str = _json_field("addedBy")


@dataclass(kw_only=True)
class SecurityUpdated(DomainEvent):
    """Security information was changed."""

    EVENT_TYPE: ClassVar[str] = "SecurityUpdated"

    updated_fields: dict[str, Any] = _json_field("updatedFields", kind="map", default_factory=dict)
    updated_by: str = _json_field("updatedBy")
    reason: str = _json_field("reason")


@dataclass(kw_only=True)
class SecuritySuspended(DomainEvent):
    """Trading was suspended; ``until`` is None for an indefinite suspension."""

    EVENT_TYPE: ClassVar[str] = "SecuritySuspended"

    reason: str = _json_field("reason")
    suspended_by: str = _json_field("suspendedBy")
    until: Optional[datetime] = _json_field("duration", kind="datetime", omitempty=True, default=None)


@dataclass(kw_only=True)
class SecurityReinstated(DomainEvent):
    """Trading of a suspended security was reinstated."""

    EVENT_TYPE: ClassVar[str] = "SecurityReinstated"

    reinstated_by: str = _json_field("reinstatedBy")
    reason: str = _json_field("reason")


@dataclass(kw_only=True)
class SecurityDelisted(DomainEvent):
    """The security was delisted."""

    EVENT_TYPE: ClassVar[str] = "SecurityDelisted"

    reason: str = _json_field("reason")
    delisted_by: str = _json_field("delistedBy")
    effective_at: datetime = _json_field("effectiveAt", kind="datetime")


@dataclass(kw_only=True)
class SecurityOwnershipChanged(DomainEvent):
    """Shares moved from one owner to another."""

    EVENT_TYPE: ClassVar[str] = "SecurityOwnershipChanged"

    from_owner: str = _json_field("fromOwner")
    to_owner: str = _json_field("toOwner")
    shares_count: int = _json_field("sharesCount")
    trade_id: str = _json_field("tradeId")


@dataclass(kw_only=True)
class SecurityDividendDeclared(DomainEvent):
    """A dividend was declared."""

    EVENT_TYPE: ClassVar[str] = "SecurityDividendDeclared"

    dividend_per_share: float = _json_field("dividendPerShare")
    ex_dividend_date: datetime = _json_field("exDividendDate", kind="datetime")
    payment_date: datetime = _json_field("paymentDate", kind="datetime")
    record_date: datetime = _json_field("recordDate", kind="datetime")
    declared_by: str = _json_field("declaredBy")


@dataclass(kw_only=True)
class SecuritySplitAnnounced(DomainEvent):
    """A stock split was announced; the ratio looks like ``"2:1"``."""

    EVENT_TYPE: ClassVar[str] = "SecuritySplitAnnounced"

    split_ratio: str = _json_field("splitRatio")
    effective_at: datetime = _json_field("effectiveAt", kind="datetime")
    announced_by: str = _json_field("announcedBy")
    description: str = _json_field("description")


_EVENT_CLASSES: dict[str, type[DomainEvent]] = {
    cls.EVENT_TYPE: cls
    for cls in (
        SecurityListed,
        SecurityDocumentAdded,
        SecurityUpdated,
        SecuritySuspended,
        SecurityReinstated,
        SecurityDelisted,
        SecurityOwnershipChanged,
        SecurityDividendDeclared,
        SecuritySplitAnnounced,
    )
}


def event_from_json(event_type: str, data: str | bytes) -> DomainEvent:
    """Rebuild a security event of the named type from its JSON form."""
    cls = _EVENT_CLASSES.get(event_type)
    if cls is None:
        raise ValueError(f"unknown event type: {event_type}")
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON for {event_type}: {exc}") from exc
    return _from_dict(cls, payload)