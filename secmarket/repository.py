"""Event-sourced persistence for security aggregates."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import islice
from typing import Any, Iterable, Iterator, Optional, Protocol

from secmarket.aggregate import (
    DividendInfo,
    OwnershipRecord,
    SecurityAggregate,
    SecurityError,
    SecurityStatus,
    SecurityType,
    SplitInfo,
)
from secmarket.events import DomainEvent, SecurityDocument, SecurityListed, event_from_json

LISTING_SCAN_LIMIT = 1000
SNAPSHOT_THRESHOLD = 10


class NotFoundError(LookupError):
    """A requested resource does not exist."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(f"{resource} with id {identifier} not found")
        self.resource = resource
        self.id = identifier

    def __str__(self) -> str:
        return f"{self.resource} with id {self.id} not found"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EventRecord:
    """A domain event as kept by an event store."""

    event_id: str
    event_type: str
    aggregate_id: str
    aggregate_type: str
    aggregate_version: int
    event_data: str
    user_id: str
    correlation_id: str
    causation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class Snapshot:
    """Serialised aggregate state at a given version."""

    aggregate_id: str
    aggregate_type: str
    aggregate_version: int
    snapshot_data: bytes
    created_at: datetime = field(default_factory=_now)


class EventStore(Protocol):
    """Storage for event records and aggregate snapshots."""

    def save_events(self, records: Iterable[EventRecord]) -> None: ...

    def get_events(self, aggregate_id: str, from_version: int) -> list[EventRecord]: ...

    def get_events_by_type(self, event_type: str, limit: int) -> list[EventRecord]: ...

    def get_snapshot(self, aggregate_id: str) -> Optional[Snapshot]: ...

    def save_snapshot(self, snapshot: Snapshot) -> None: ...


def record_from_domain(
    event: DomainEvent, user_id: str, correlation_id: str, causation_id: Optional[str]
) -> EventRecord:
    """Wrap a domain event in a storable record."""
    meta = event.metadata()
    return EventRecord(
        event_id=meta.event_id,
        event_type=meta.event_type,
        aggregate_id=meta.aggregate_id,
        aggregate_type=meta.aggregate_type,
        aggregate_version=meta.event_version,
        event_data=event.to_json(),
        user_id=user_id,
        correlation_id=correlation_id,
        causation_id=causation_id,
        timestamp=meta.timestamp,
    )


class InMemoryEventStore:
    """An event store held in process memory."""

    def __init__(self) -> None:
        self._events: list[EventRecord] = []
        self._snapshots: dict[str, Snapshot] = {}
        self._lock = threading.Lock()

    def save_events(self, records: Iterable[EventRecord]) -> None:
        """Append records; a version already stored for an aggregate is refused."""
        batch = list(records)
        with self._lock:
            taken = {(r.aggregate_id, r.aggregate_version) for r in self._events}
            for record in batch:
                key = (record.aggregate_id, record.aggregate_version)
                if key in taken:
                    raise ValueError(
                        f"version {record.aggregate_version} of aggregate "
                        f"{record.aggregate_id} is already stored"
                    )
                taken.add(key)
            self._events.extend(batch)

    def get_events(self, aggregate_id: str, from_version: int) -> list[EventRecord]:
        """Records of one aggregate from the given version on, in version order."""
        with self._lock:
            matching = [
                r
                for r in self._events
                if r.aggregate_id == aggregate_id and r.aggregate_version >= from_version
            ]
        return sorted(matching, key=lambda r: r.aggregate_version)

    def get_events_by_type(self, event_type: str, limit: int) -> list[EventRecord]:
        """At most ``limit`` records of a type, in the order they were stored."""
        if limit < 0:
            raise ValueError("limit cannot be negative")
        with self._lock:
            return list(islice((r for r in self._events if r.event_type == event_type), limit))

    def get_snapshot(self, aggregate_id: str) -> Optional[Snapshot]:
        with self._lock:
            return self._snapshots.get(aggregate_id)

    def save_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.aggregate_id] = snapshot


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def _serialize_aggregate(security: SecurityAggregate) -> bytes:
    state: dict[str, Any] = {
        "id": security.id,
        "aggregateType": security.aggregate_type,
        "version": security.version,
        "issuerId": security.issuer_id,
        "securityType": security.security_type.value if security.security_type else None,
        "name": security.name,
        "symbol": security.symbol,
        "totalShares": security.total_shares,
        "parValue": security.par_value,
        "details": dict(security.details),
        "status": security.status.value,
        "listedAt": _iso(security.listed_at),
        "delistedAt": _iso(security.delisted_at),
        "suspendedAt": _iso(security.suspended_at),
        "suspensionUntil": _iso(security.suspension_until),
        "suspensionReason": security.suspension_reason,
        "documents": [doc.to_dict() for doc in security.documents],
        "prospectusHash": security.prospectus_hash,
        "dividends": [
            {
                "dividendPerShare": d.dividend_per_share,
                "exDividendDate": _iso(d.ex_dividend_date),
                "paymentDate": _iso(d.payment_date),
                "recordDate": _iso(d.record_date),
                "declaredBy": d.declared_by,
                "declaredAt": _iso(d.declared_at),
            }
            for d in security.dividends
        ],
        "splits": [
            {
                "splitRatio": s.split_ratio,
                "effectiveAt": _iso(s.effective_at),
                "announcedBy": s.announced_by,
                "announcedAt": _iso(s.announced_at),
                "description": s.description,
                "applied": s.applied,
            }
            for s in security.splits
        ],
        "ownership": [
            {"ownerId": r.owner_id, "sharesOwned": r.shares_owned}
            for r in security.ownership.values()
        ],
        "lastTradePrice": security.last_trade_price,
        "marketCap": security.market_cap,
        "lastUpdated": _iso(security.last_updated),
    }
    return json.dumps(state).encode("utf-8")


def _restore_aggregate(security: SecurityAggregate, data: bytes) -> None:
    try:
        state = json.loads(data)
        security.aggregate_type = state["aggregateType"]
        security.version = state["version"]
        security.issuer_id = state["issuerId"]
        raw_type = state["securityType"]
        security.security_type = SecurityType(raw_type) if raw_type is not None else None
        security.name = state["name"]
        security.symbol = state["symbol"]
        security.total_shares = state["totalShares"]
        security.par_value = state["parValue"]
        security.details = dict(state["details"])
        security.status = SecurityStatus(state["status"])
        security.listed_at = _from_iso(state["listedAt"])
        security.delisted_at = _from_iso(state["delistedAt"])
        security.suspended_at = _from_iso(state["suspendedAt"])
        security.suspension_until = _from_iso(state["suspensionUntil"])
        security.suspension_reason = state["suspensionReason"]
        security.documents = [SecurityDocument.from_dict(d) for d in state["documents"]]
        security.prospectus_hash = state["prospectusHash"]
        security.dividends = [
            DividendInfo(
                dividend_per_share=d["dividendPerShare"],
                ex_dividend_date=_from_iso(d["exDividendDate"]),
                payment_date=_from_iso(d["paymentDate"]),
                record_date=_from_iso(d["recordDate"]),
                declared_by=d["declaredBy"],
                declared_at=_from_iso(d["declaredAt"]),
            )
            for d in state["dividends"]
        ]
        security.splits = [
            SplitInfo(
                split_ratio=s["splitRatio"],
                effective_at=_from_iso(s["effectiveAt"]),
                announced_by=s["announcedBy"],
                announced_at=_from_iso(s["announcedAt"]),
                description=s["description"],
                applied=s["applied"],
            )
            for s in state["splits"]
        ]
        security.ownership = {
            r["ownerId"]: OwnershipRecord(r["ownerId"], r["sharesOwned"]) for r in state["ownership"]
        }
        security.last_trade_price = state["lastTradePrice"]
        security.market_cap = state["marketCap"]
        security.last_updated = _from_iso(state["lastUpdated"])
    except (KeyError, TypeError, json.JSONDecodeError) as exc:
        raise ValueError(f"invalid snapshot data: {exc}") from exc


def _to_domain_event(record: EventRecord) -> DomainEvent:
    try:
        return event_from_json(record.event_type, record.event_data)
    except ValueError as exc:
        raise ValueError(f"failed to convert event {record.event_type}: {exc}") from exc


class EventSourcedSecurityRepository:
    """Loads securities by replaying their events, starting from a snapshot when one exists."""

    def __init__(self, event_store: EventStore) -> None:
        self._store = event_store

    def find_by_id(self, security_id: str) -> SecurityAggregate:
        """Rebuild a security; raises NotFoundError when it has no history."""
        snapshot = self._store.get_snapshot(security_id)
        security = SecurityAggregate(security_id)
        from_version = 0
        if snapshot is not None:
            _restore_aggregate(security, snapshot.snapshot_data)
            from_version = snapshot.aggregate_version + 1

        records = self._store.get_events(security_id, from_version)
        if not records and snapshot is None:
            raise NotFoundError("security", security_id)

        security.load_from_history([_to_domain_event(r) for r in records])
        return security

    def _listing_records(self) -> list[EventRecord]:
        return self._store.get_events_by_type(SecurityListed.EVENT_TYPE, LISTING_SCAN_LIMIT)

    def _listings(self) -> Iterator[tuple[EventRecord, SecurityListed]]:
        for record in self._listing_records():
            try:
                event = event_from_json(record.event_type, record.event_data)
            except ValueError:
                continue
            if isinstance(event, SecurityListed):
                yield record, event

    def _load_all(self, records: Iterable[EventRecord]) -> Iterator[SecurityAggregate]:
        for record in records:
            try:
                yield self.find_by_id(record.aggregate_id)
            except (NotFoundError, ValueError, SecurityError):
                continue

    def find_by_symbol(self, symbol: str) -> SecurityAggregate:
        """The security listed under the symbol; raises NotFoundError otherwise."""
        for record, listed in self._listings():
            if listed.symbol == symbol:
                return self.find_by_id(record.aggregate_id)
        raise NotFoundError("security", symbol)

    def find_by_issuer(self, issuer_id: str) -> list[SecurityAggregate]:
        records = [r for r, listed in self._listings() if listed.issuer_id == issuer_id]
        return list(self._load_all(records))

    def find_by_type(self, security_type: SecurityType | str) -> list[SecurityAggregate]:
        wanted = SecurityType(security_type).value
        records = [r for r, listed in self._listings() if listed.security_type == wanted]
        return list(self._load_all(records))

    def find_by_status(self, status: SecurityStatus | str) -> list[SecurityAggregate]:
        wanted = SecurityStatus(status)
        return [s for s in self._load_all(self._listing_records()) if s.status is wanted]

    def find_by_owner(self, owner_id: str) -> list[SecurityAggregate]:
        return [s for s in self._load_all(self._listing_records()) if s.shares_owned(owner_id) > 0]

    def save(self, security: SecurityAggregate) -> None:
        """Snapshot the security once its history is long enough to be worth it."""
        if security.version < SNAPSHOT_THRESHOLD:
            return
        self._store.save_snapshot(
            Snapshot(
                aggregate_id=security.id,
                aggregate_type=security.aggregate_type,
                aggregate_version=security.version,
                snapshot_data=_serialize_aggregate(security),
            )
        )