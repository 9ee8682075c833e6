"""Application services for the security domain."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from secmarket.aggregate import (
    OwnershipRecord,
    SecurityAggregate,
    SecurityError,
    SecurityStatus,
    SecurityType,
)
from secmarket.commands import (
    AddSecurityDocumentCommand,
    AnnounceSplitCommand,
    DeclareDividendCommand,
    DelistSecurityCommand,
    ListSecurityCommand,
    ReinstateSecurityCommand,
    SuspendSecurityCommand,
    TransferOwnershipCommand,
    UpdateSecurityCommand,
)
from secmarket.events import DomainEvent
from secmarket.repository import EventRecord, EventStore, NotFoundError, record_from_domain

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"


class EventBus(Protocol):
    """Destination that published domain events are handed to."""

    def publish(self, event: DomainEvent) -> None: ...


class _SecurityRepository(Protocol):
    def find_by_id(self, security_id: str) -> SecurityAggregate: ...

    def find_by_symbol(self, symbol: str) -> SecurityAggregate: ...

    def find_by_issuer(self, issuer_id: str) -> list[SecurityAggregate]: ...

    def find_by_type(self, security_type: SecurityType | str) -> list[SecurityAggregate]: ...

    def find_by_status(self, status: SecurityStatus | str) -> list[SecurityAggregate]: ...

    def find_by_owner(self, owner_id: str) -> list[SecurityAggregate]: ...


class SecurityService:
    """Runs security commands: validates, applies to the aggregate, stores and publishes events."""

    def __init__(self, repository: _SecurityRepository, event_store: EventStore, event_bus: EventBus) -> None:
        self._repository = repository
        self._store = event_store
        self._bus = event_bus

    # Commands

    def list_security(self, cmd: ListSecurityCommand) -> SecurityAggregate:
        """List a new security; its symbol must not be taken."""
        cmd.validate()
        try:
            self._repository.find_by_symbol(cmd.symbol)
        except NotFoundError:
            pass
        else:
            raise SecurityError(f"security with symbol {cmd.symbol} already exists")

        security = SecurityAggregate(cmd.security_id or str(uuid.uuid4()))
        security.list_security(
            cmd.issuer_id,
            SecurityType(cmd.security_type),
            cmd.name,
            cmd.symbol,
            cmd.total_shares,
            cmd.par_value,
            cmd.details,
        )
        self._save_events(security, cmd.issuer_id)
        return security

    def add_security_document(self, cmd: AddSecurityDocumentCommand) -> None:
        """Attach a document, stamping its upload time."""
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        cmd.document.uploaded_at = datetime.now(timezone.utc)
        security.add_document(cmd.document, cmd.added_by)
        self._save_events(security, cmd.added_by)

    def update_security(self, cmd: UpdateSecurityCommand) -> None:
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        security.update_security(cmd.updated_fields, cmd.updated_by, cmd.reason)
        self._save_events(security, cmd.updated_by)

    def suspend_security(self, cmd: SuspendSecurityCommand) -> None:
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        security.suspend_trading(cmd.reason, cmd.suspended_by, cmd.until)
        self._save_events(security, cmd.suspended_by)

    def reinstate_security(self, cmd: ReinstateSecurityCommand) -> None:
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        security.reinstate_trading(cmd.reinstated_by, cmd.reason)
        self._save_events(security, cmd.reinstated_by)

    def delist_security(self, cmd: DelistSecurityCommand) -> None:
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        assert cmd.effective_at is not None
        security.delist_security(cmd.reason, cmd.delisted_by, cmd.effective_at)
        self._save_events(security, cmd.delisted_by)

    def transfer_ownership(self, cmd: TransferOwnershipCommand) -> None:
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        security.transfer_ownership(cmd.from_owner, cmd.to_owner, cmd.shares_count, cmd.trade_id)
        self._save_events(security, SYSTEM_USER)

    def declare_dividend(self, cmd: DeclareDividendCommand) -> None:
        """Declare a dividend; only the issuer may do so."""
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        if security.issuer_id != cmd.declared_by:
            raise SecurityError("only the issuer can declare dividends")
        assert cmd.ex_dividend_date and cmd.payment_date and cmd.record_date
        security.declare_dividend(
            cmd.dividend_per_share,
            cmd.ex_dividend_date,
            cmd.payment_date,
            cmd.record_date,
            cmd.declared_by,
        )
        self._save_events(security, cmd.declared_by)

    def announce_split(self, cmd: AnnounceSplitCommand) -> None:
        """Announce a stock split; only the issuer may do so."""
        cmd.validate()
        security = self._repository.find_by_id(cmd.security_id)
        if security.issuer_id != cmd.announced_by:
            raise SecurityError("only the issuer can announce stock splits")
        assert cmd.effective_at is not None
        security.announce_split(cmd.split_ratio, cmd.effective_at, cmd.announced_by, cmd.description)
        self._save_events(security, cmd.announced_by)

    # Queries

    def get_security(self, security_id: str) -> SecurityAggregate:
        return self._repository.find_by_id(security_id)

    def get_security_by_symbol(self, symbol: str) -> SecurityAggregate:
        return self._repository.find_by_symbol(symbol)

    def get_securities_by_issuer(self, issuer_id: str) -> list[SecurityAggregate]:
        return self._repository.find_by_issuer(issuer_id)

    def get_securities_by_type(self, security_type: SecurityType | str) -> list[SecurityAggregate]:
        return self._repository.find_by_type(security_type)

    def get_active_securities(self) -> list[SecurityAggregate]:
        return self._repository.find_by_status(SecurityStatus.ACTIVE)

    def validate_security_exists(self, security_id: str) -> SecurityAggregate:
        """Return the security if it exists and can be traded."""
        security = self._repository.find_by_id(security_id)
        if not security.is_tradable():
            raise SecurityError(
                f"security {security_id} is not tradable (status: {security.status.value})"
            )
        return security

    def get_ownership(self, security_id: str) -> list[OwnershipRecord]:
        return self._repository.find_by_id(security_id).all_owners()

    def get_user_securities(self, user_id: str) -> list[SecurityAggregate]:
        return self._repository.find_by_owner(user_id)

    def calculate_market_value(self, user_id: str) -> float:
        """Sum of shares held times last trade price, over securities with a known price."""
        total = 0.0
        for security in self.get_user_securities(user_id):
            shares = security.shares_owned(user_id)
            if shares > 0 and security.last_trade_price is not None:
                total += shares * security.last_trade_price
        return total

    # Persistence

    def _save_events(self, security: SecurityAggregate, user_id: str) -> None:
        pending = security.uncommitted_events
        if not pending:
            return

        correlation_id = str(uuid.uuid4())
        records: list[EventRecord] = []
        causation_id: Optional[str] = None
        for offset, event in enumerate(pending):
            record = record_from_domain(event, user_id, correlation_id, causation_id)
            record.aggregate_version = security.version + offset + 1
            records.append(record)
            causation_id = record.event_id

        self._store.save_events(records)

        for event in pending:
            try:
                self._bus.publish(event)
            except Exception as exc:  # publishing must not undo stored events
                logger.warning("Failed to publish event %s: %s", event.event_type, exc)

        security.mark_events_as_committed()