"""The security aggregate: state rebuilt from, and changed through, domain events."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from secmarket.events import (
    AGGREGATE_TYPE,
    DomainEvent,
    SecurityDelisted,
    SecurityDividendDeclared,
    SecurityDocument,
    SecurityDocumentAdded,
    SecurityListed,
    SecurityOwnershipChanged,
    SecurityReinstated,
    SecuritySplitAnnounced,
    SecuritySuspended,
    SecurityUpdated,
)


class SecurityType(str, enum.Enum):
    """Kinds of security that can be listed."""

    STOCK = "stock"
    BOND = "bond"
    PREFERRED = "preferred"
    WARRANT = "warrant"
    OPTION = "option"


class SecurityStatus(str, enum.Enum):
    """Trading status of a security."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELISTED = "delisted"
    PENDING = "pending"


class SecurityError(Exception):
    """A command or event cannot be applied to the security in its current state."""


@dataclass
class DividendInfo:
    """A declared dividend."""

    dividend_per_share: float
    ex_dividend_date: datetime
    payment_date: datetime
    record_date: datetime
    declared_by: str
    declared_at: datetime


@dataclass
class SplitInfo:
    """An announced stock split."""

    split_ratio: str
    effective_at: datetime
    announced_by: str
    announced_at: datetime
    description: str
    applied: bool = False


@dataclass
class OwnershipRecord:
    """How many shares one owner holds."""

    owner_id: str
    shares_owned: int


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class SecurityAggregate:
    """A security in the marketplace, event-sourced."""

    id: str
    aggregate_type: str = AGGREGATE_TYPE
    version: int = 0

    issuer_id: str = ""
    security_type: Optional[SecurityType] = None
    name: str = ""
    symbol: str = ""
    total_shares: int = 0
    par_value: Optional[float] = None
    details: dict[str, str] = field(default_factory=dict)

    status: SecurityStatus = SecurityStatus.PENDING
    listed_at: Optional[datetime] = None
    delisted_at: Optional[datetime] = None

    suspended_at: Optional[datetime] = None
    suspension_until: Optional[datetime] = None
    suspension_reason: str = ""

    documents: list[SecurityDocument] = field(default_factory=list)
    prospectus_hash: str = ""

    dividends: list[DividendInfo] = field(default_factory=list)
    splits: list[SplitInfo] = field(default_factory=list)

    ownership: dict[str, OwnershipRecord] = field(default_factory=dict)

    last_trade_price: Optional[float] = None
    market_cap: Optional[float] = None
    last_updated: Optional[datetime] = None

    _uncommitted: list[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @property
    def uncommitted_events(self) -> list[DomainEvent]:
        """Events raised by commands and not yet committed to a store."""
        return list(self._uncommitted)

    def mark_events_as_committed(self) -> None:
        """Forget the pending events once they have been stored."""
        self._uncommitted.clear()

    def _raise(self, event: DomainEvent) -> None:
        self._uncommitted.append(event)
        self.apply_event(event)

    # Commands

    def list_security(
        self,
        issuer_id: str,
        security_type: SecurityType | str,
        name: str,
        symbol: str,
        total_shares: int,
        par_value: Optional[float],
        details: Optional[Mapping[str, str]],
    ) -> None:
        """List a new security; the issuer initially owns every share."""
        if self.version > 0:
            raise SecurityError("security already exists")
        self._raise(
            SecurityListed(
                aggregate_id=self.id,
                issuer_id=issuer_id,
                security_type=SecurityType(security_type).value,
                name=name,
                symbol=symbol,
                total_shares=total_shares,
                par_value=par_value,
                details=dict(details or {}),
            )
        )

    def add_document(self, document: SecurityDocument, added_by: str) -> None:
        """Attach a document; its id must be new to this security."""
        if self.status is SecurityStatus.DELISTED:
            raise SecurityError("cannot add documents to delisted security")
        if any(doc.document_id == document.document_id for doc in self.documents):
            raise SecurityError(f"document with ID {document.document_id} already exists")
        self._raise(SecurityDocumentAdded(aggregate_id=self.id, document=document, added_by=added_by))

    def update_security(self, updated_fields: Mapping[str, Any], updated_by: str, reason: str) -> None:
        """Change name, total shares or par value."""
        if self.status is SecurityStatus.DELISTED:
            raise SecurityError("cannot update delisted security")
        self._raise(
            SecurityUpdated(
                aggregate_id=self.id,
                updated_fields=dict(updated_fields),
                updated_by=updated_by,
                reason=reason,
            )
        )

    def suspend_trading(self, reason: str, suspended_by: str, until: Optional[datetime]) -> None:
        """Suspend trading, until the given time or indefinitely when it is None."""
        if self.status is SecurityStatus.SUSPENDED:
            raise SecurityError("security is already suspended")
        if self.status is SecurityStatus.DELISTED:
            raise SecurityError("cannot suspend delisted security")
        self._raise(
            SecuritySuspended(aggregate_id=self.id, reason=reason, suspended_by=suspended_by, until=until)
        )

    def reinstate_trading(self, reinstated_by: str, reason: str) -> None:
        """Resume trading of a suspended security."""
        if self.status is not SecurityStatus.SUSPENDED:
            raise SecurityError("security is not suspended")
        self._raise(SecurityReinstated(aggregate_id=self.id, reinstated_by=reinstated_by, reason=reason))

    def delist_security(self, reason: str, delisted_by: str, effective_at: datetime) -> None:
        """Delist the security."""
        if self.status is SecurityStatus.DELISTED:
            raise SecurityError("security is already delisted")
        self._raise(
            SecurityDelisted(
                aggregate_id=self.id, reason=reason, delisted_by=delisted_by, effective_at=effective_at
            )
        )

    def transfer_ownership(self, from_owner: str, to_owner: str, shares_count: int, trade_id: str) -> None:
        """Move shares from one owner to another."""
        if self.status is SecurityStatus.DELISTED:
            raise SecurityError("cannot transfer ownership of delisted security")
        if self.status is SecurityStatus.SUSPENDED:
            raise SecurityError("cannot transfer ownership of suspended security")
        record = self.ownership.get(from_owner)
        if record is None or record.shares_owned < shares_count:
            raise SecurityError("insufficient shares for transfer")
        self._raise(
            SecurityOwnershipChanged(
                aggregate_id=self.id,
                from_owner=from_owner,
                to_owner=to_owner,
                shares_count=shares_count,
                trade_id=trade_id,
            )
        )

    def declare_dividend(
        self,
        dividend_per_share: float,
        ex_dividend_date: datetime,
        payment_date: datetime,
        record_date: datetime,
        declared_by: str,
    ) -> None:
        """Declare a dividend on an active security."""
        if self.status is not SecurityStatus.ACTIVE:
            raise SecurityError("can only declare dividends for active securities")
        self._raise(
            SecurityDividendDeclared(
                aggregate_id=self.id,
                dividend_per_share=dividend_per_share,
                ex_dividend_date=ex_dividend_date,
                payment_date=payment_date,
                record_date=record_date,
                declared_by=declared_by,
            )
        )

    def announce_split(self, split_ratio: str, effective_at: datetime, announced_by: str, description: str) -> None:
        """Announce a stock split on an active security."""
        if self.status is not SecurityStatus.ACTIVE:
            raise SecurityError("can only announce splits for active securities")
        self._raise(
            SecuritySplitAnnounced(
                aggregate_id=self.id,
                split_ratio=split_ratio,
                effective_at=effective_at,
                announced_by=announced_by,
                description=description,
            )
        )

    # Event application

    def apply_event(self, event: DomainEvent) -> None:
        """Apply one event to the state; each event advances the version."""
        handler: Optional[Callable[[SecurityAggregate, Any], None]] = _HANDLERS.get(type(event))
        if handler is None:
            raise SecurityError(f"unknown event type: {type(event).__name__}")
        handler(self, event)

    def load_from_history(self, history: list[DomainEvent]) -> None:
        """Replay stored events, advancing the version once more per event."""
        for event in history:
            try:
                self.apply_event(event)
            except SecurityError as exc:
                raise SecurityError(f"failed to apply event {event.event_type}: {exc}") from exc
            self.version += 1

    def _on_listed(self, event: SecurityListed) -> None:
        self.issuer_id = event.issuer_id
        self.security_type = SecurityType(event.security_type)
        self.name = event.name
        self.symbol = event.symbol
        self.total_shares = event.total_shares
        self.par_value = event.par_value
        self.details = event.details
        self.status = SecurityStatus.ACTIVE
        self.listed_at = event.timestamp
        self.ownership[event.issuer_id] = OwnershipRecord(event.issuer_id, event.total_shares)
        self.version += 1

    def _on_document_added(self, event: SecurityDocumentAdded) -> None:
        self.documents.append(event.document)
        if event.document.is_prospectus:
            self.prospectus_hash = event.document.content_hash
        self.version += 1

    def _on_updated(self, event: SecurityUpdated) -> None:
        for name, value in event.updated_fields.items():
            if name == "name" and isinstance(value, str):
                self.name = value
            elif name == "totalShares" and _is_number(value):
                self.total_shares = int(value)
            elif name == "parValue" and _is_number(value):
                self.par_value = float(value)
        self.version += 1

    def _on_suspended(self, event: SecuritySuspended) -> None:
        self.status = SecurityStatus.SUSPENDED
        self.suspended_at = event.timestamp
        self.suspension_until = event.until
        self.suspension_reason = event.reason
        self.version += 1

    def _on_reinstated(self, event: SecurityReinstated) -> None:
        self.status = SecurityStatus.ACTIVE
        self.suspended_at = None
        self.suspension_until = None
        self.suspension_reason = ""
        self.version += 1

    def _on_delisted(self, event: SecurityDelisted) -> None:
        self.status = SecurityStatus.DELISTED
        self.delisted_at = event.effective_at
        self.version += 1

    def _on_ownership_changed(self, event: SecurityOwnershipChanged) -> None:
        source = self.ownership.get(event.from_owner)
        if source is None:
            raise SecurityError(f"owner {event.from_owner} holds no shares")
        source.shares_owned -= event.shares_count
        if source.shares_owned == 0:
            del self.ownership[event.from_owner]
        target = self.ownership.setdefault(event.to_owner, OwnershipRecord(event.to_owner, 0))
        target.shares_owned += event.shares_count
        self.version += 1

    def _on_dividend_declared(self, event: SecurityDividendDeclared) -> None:
        self.dividends.append(
            DividendInfo(
                dividend_per_share=event.dividend_per_share,
                ex_dividend_date=event.ex_dividend_date,
                payment_date=event.payment_date,
                record_date=event.record_date,
                declared_by=event.declared_by,
                declared_at=event.timestamp,
            )
        )
        self.version += 1

    def _on_split_announced(self, event: SecuritySplitAnnounced) -> None:
        self.splits.append(
            SplitInfo(
                split_ratio=event.split_ratio,
                effective_at=event.effective_at,
                announced_by=event.announced_by,
                announced_at=event.timestamp,
                description=event.description,
            )
        )
        self.version += 1

    # Queries

    def is_active(self) -> bool:
        return self.status is SecurityStatus.ACTIVE

    def is_tradable(self) -> bool:
        return self.status is SecurityStatus.ACTIVE

    def ownership_percentage(self, owner_id: str) -> float:
        """Percentage of all shares held by the owner, 0 when none."""
        record = self.ownership.get(owner_id)
        if record is None:
            return 0.0
        return record.shares_owned / self.total_shares * 100

    def shares_owned(self, owner_id: str) -> int:
        record = self.ownership.get(owner_id)
        return record.shares_owned if record is not None else 0

    def all_owners(self) -> list[OwnershipRecord]:
        """Copies of every current ownership record."""
        return [replace(record) for record in self.ownership.values()]

    def has_prospectus(self) -> bool:
        return self.prospectus_hash != ""

    def latest_dividend(self) -> Optional[DividendInfo]:
        return self.dividends[-1] if self.dividends else None

    def latest_split(self) -> Optional[SplitInfo]:
        return self.splits[-1] if self.splits else None


_HANDLERS: dict[type, Callable[[SecurityAggregate, Any], None]] = {
    SecurityListed: SecurityAggregate._on_listed,
    SecurityDocumentAdded: SecurityAggregate._on_document_added,
    SecurityUpdated: SecurityAggregate._on_updated,
    SecuritySuspended: SecurityAggregate._on_suspended,
    SecurityReinstated: SecurityAggregate._on_reinstated,
    SecurityDelisted: SecurityAggregate._on_delisted,
    SecurityOwnershipChanged: SecurityAggregate._on_ownership_changed,
    SecurityDividendDeclared: SecurityAggregate._on_dividend_declared,
    SecuritySplitAnnounced: SecurityAggregate._on_split_announced,
}