from datetime import datetime, timedelta, timezone

import pytest

from secmarket.aggregate import SecurityError, SecurityStatus, SecurityType
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
    ValidationError,
)
from secmarket.events import SecurityDocument
from secmarket.repository import (
    EventSourcedSecurityRepository,
    InMemoryEventStore,
    NotFoundError,
)
from secmarket.service import SecurityService


class RecordingBus:
    def __init__(self):
        self.published = []

    def publish(self, event):
        self.published.append(event)


class FailingBus:
    def publish(self, event):
        raise RuntimeError("bus down")


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def service(store, bus):
    return SecurityService(EventSourcedSecurityRepository(store), store, bus)


def _list(service, security_id="sec-1", symbol="ACME", issuer="issuer-1", kind="stock"):
    return service.list_security(
        ListSecurityCommand(
            security_id=security_id,
            issuer_id=issuer,
            security_type=kind,
            name="Acme Corp",
            symbol=symbol,
            total_shares=1000,
        )
    )


def _future(days):
    return datetime.now(timezone.utc) + timedelta(days=days)


def test_list_security_stores_and_publishes(service, store, bus):
    security = _list(service)
    assert security.status is SecurityStatus.ACTIVE
    assert security.shares_owned("issuer-1") == 1000
    assert security.uncommitted_events == []
    records = store.get_events("sec-1", 0)
    assert [r.event_type for r in records] == ["SecurityListed"]
    assert records[0].user_id == "issuer-1"
    assert records[0].causation_id is None
    assert [e.event_type for e in bus.published] == ["SecurityListed"]


def test_list_security_duplicate_symbol(service):
    _list(service)
    with pytest.raises(SecurityError):
        _list(service, security_id="sec-2")


def test_list_security_validation(service, store):
    with pytest.raises(ValidationError) as info:
        service.list_security(ListSecurityCommand(security_id="sec-1", issuer_id="i"))
    assert info.value.field == "securityType"
    assert store.get_events_by_type("SecurityListed", 10) == []


def test_get_security_round_trip(service):
    _list(service)
    loaded = service.get_security("sec-1")
    assert loaded.name == "Acme Corp"
    assert loaded.symbol == "ACME"
    assert loaded.total_shares == 1000
    assert service.get_security_by_symbol("ACME").id == "sec-1"


def test_get_missing_security(service):
    with pytest.raises(NotFoundError):
        service.get_security("nope")


def test_transfer_ownership(service, store):
    _list(service)
    service.transfer_ownership(
        TransferOwnershipCommand(
            security_id="sec-1", from_owner="issuer-1", to_owner="buyer", shares_count=300, trade_id="t1"
        )
    )
    loaded = service.get_security("sec-1")
    assert loaded.shares_owned("buyer") == 300
    assert loaded.shares_owned("issuer-1") == 700
    owners = {r.owner_id: r.shares_owned for r in service.get_ownership("sec-1")}
    assert owners == {"issuer-1": 700, "buyer": 300}
    transfer = store.get_events_by_type("SecurityOwnershipChanged", 10)
    assert transfer[0].user_id == "system"
    assert [s.id for s in service.get_user_securities("buyer")] == ["sec-1"]


def test_transfer_insufficient_shares(service):
    _list(service)
    with pytest.raises(SecurityError):
        service.transfer_ownership(
            TransferOwnershipCommand(
                security_id="sec-1", from_owner="nobody", to_owner="buyer", shares_count=1, trade_id="t1"
            )
        )


def test_declare_dividend_only_issuer(service):
    _list(service)
    cmd = DeclareDividendCommand(
        security_id="sec-1",
        dividend_per_share=0.5,
        ex_dividend_date=_future(1),
        record_date=_future(2),
        payment_date=_future(3),
        declared_by="someone-else",
    )
    with pytest.raises(SecurityError):
        service.declare_dividend(cmd)
    cmd.declared_by = "issuer-1"
    service.declare_dividend(cmd)
    latest = service.get_security("sec-1").latest_dividend()
    assert latest.dividend_per_share == 0.5
    assert latest.declared_by == "issuer-1"


def test_announce_split_only_issuer(service):
    _list(service)
    cmd = AnnounceSplitCommand(
        security_id="sec-1",
        split_ratio="2:1",
        effective_at=_future(5),
        announced_by="other",
        description="split",
    )
    with pytest.raises(SecurityError):
        service.announce_split(cmd)
    cmd.announced_by = "issuer-1"
    service.announce_split(cmd)
    assert service.get_security("sec-1").latest_split().split_ratio == "2:1"


def test_suspend_and_reinstate(service):
    _list(service)
    service.suspend_security(
        SuspendSecurityCommand(security_id="sec-1", reason="review", suspended_by="regulator")
    )
    assert service.get_security("sec-1").status is SecurityStatus.SUSPENDED
    with pytest.raises(SecurityError):
        service.validate_security_exists("sec-1")
    service.reinstate_security(
        ReinstateSecurityCommand(security_id="sec-1", reinstated_by="regulator", reason="done")
    )
    assert service.validate_security_exists("sec-1").status is SecurityStatus.ACTIVE


def test_delist_removes_from_active(service):
    _list(service)
    _list(service, security_id="sec-2", symbol="BETA")
    service.delist_security(
        DelistSecurityCommand(
            security_id="sec-1", reason="gone", delisted_by="regulator", effective_at=_future(0)
        )
    )
    assert [s.id for s in service.get_active_securities()] == ["sec-2"]


def test_queries_by_issuer_and_type(service):
    _list(service)
    _list(service, security_id="sec-2", symbol="BOND1", issuer="issuer-2", kind="bond")
    assert [s.id for s in service.get_securities_by_issuer("issuer-2")] == ["sec-2"]
    assert [s.id for s in service.get_securities_by_type(SecurityType.STOCK)] == ["sec-1"]


def test_update_security(service):
    _list(service)
    service.update_security(
        UpdateSecurityCommand(
            security_id="sec-1", updated_fields={"name": "Acme Holdings"}, updated_by="issuer-1", reason="rename"
        )
    )
    assert service.get_security("sec-1").name == "Acme Holdings"


def test_add_document_sets_upload_time(service):
    _list(service)
    document = SecurityDocument(
        document_id="doc-1",
        document_type="prospectus",
        title="Prospectus",
        file_name="p.pdf",
        file_size=10,
        content_hash="abc",
        is_prospectus=True,
    )
    service.add_security_document(
        AddSecurityDocumentCommand(security_id="sec-1", document=document, added_by="issuer-1")
    )
    loaded = service.get_security("sec-1")
    assert loaded.has_prospectus()
    assert loaded.documents[0].uploaded_at is not None
    assert loaded.prospectus_hash == "abc"


def test_market_value_without_prices(service):
    _list(service)
    assert service.calculate_market_value("issuer-1") == 0.0
    assert service.calculate_market_value("stranger") == 0.0


def test_publish_failure_does_not_fail(store):
    service = SecurityService(EventSourcedSecurityRepository(store), store, FailingBus())
    security = _list(service)
    assert security.uncommitted_events == []
    assert len(store.get_events("sec-1", 0)) == 1