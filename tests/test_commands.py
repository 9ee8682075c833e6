from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from secmarket.aggregate import SecurityType
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
    is_valid_security_type,
    is_valid_split_ratio,
)
from secmarket.events import SecurityDocument

NOW = datetime.now(timezone.utc)
FUTURE = NOW + timedelta(days=30)
PAST = NOW - timedelta(days=30)


def _field_of(cmd):
    with pytest.raises(ValidationError) as info:
        cmd.validate()
    return info.value.field


def _list_cmd(**changes):
    base = ListSecurityCommand(
        security_id="sec-1",
        issuer_id="issuer-1",
        security_type="stock",
        name="Acme Corp",
        symbol="ACME",
        total_shares=1000,
        par_value=1.0,
    )
    return replace(base, **changes)


def _doc(**changes):
    base = SecurityDocument(
        document_id="doc-1",
        document_type="prospectus",
        title="Prospectus",
        file_name="prospectus.pdf",
        file_size=1024,
        content_hash="abc123",
    )
    return replace(base, **changes)


def test_validation_error_carries_field_and_message():
    err = ValidationError("symbol", "Security symbol is required")
    assert err.field == "symbol"
    assert str(err) == "Security symbol is required"
    assert err.message == "Security symbol is required"


def test_list_security_valid_passes():
    cmd = _list_cmd()
    assert cmd.validate() is None
    assert cmd.symbol == "ACME"


@pytest.mark.parametrize(
    "changes, field_name",
    [
        ({"security_id": ""}, "securityId"),
        ({"issuer_id": ""}, "issuerId"),
        ({"security_type": ""}, "securityType"),
        ({"security_type": "crypto"}, "securityType"),
        ({"name": ""}, "name"),
        ({"symbol": ""}, "symbol"),
        ({"symbol": "ABCDEFGHIJK"}, "symbol"),
        ({"total_shares": 0}, "totalShares"),
        ({"total_shares": -5}, "totalShares"),
        ({"par_value": -0.01}, "parValue"),
    ],
)
def test_list_security_errors(changes, field_name):
    assert _field_of(_list_cmd(**changes)) == field_name


def test_list_security_symbol_of_ten_and_no_par_value_pass():
    cmd = _list_cmd(symbol="ABCDEFGHIJ", par_value=None)
    assert cmd.validate() is None
    assert len(cmd.symbol) == 10


def test_list_security_message_for_invalid_type():
    with pytest.raises(ValidationError, match="Invalid security type"):
        _list_cmd(security_type="crypto").validate()


def test_list_security_first_error_wins():
    cmd = ListSecurityCommand()
    assert _field_of(cmd) == "securityId"


def test_add_document_valid():
    cmd = AddSecurityDocumentCommand(security_id="sec-1", document=_doc(), added_by="user-1")
    assert cmd.validate() is None
    assert cmd.document.document_id == "doc-1"


@pytest.mark.parametrize(
    "doc_changes, field_name",
    [
        ({"document_id": ""}, "documentInfo.documentId"),
        ({"document_type": ""}, "documentInfo.documentType"),
        ({"title": ""}, "documentInfo.title"),
        ({"file_name": ""}, "documentInfo.fileName"),
        ({"file_size": 0}, "documentInfo.fileSize"),
        ({"content_hash": ""}, "documentInfo.contentHash"),
    ],
)
def test_add_document_errors(doc_changes, field_name):
    cmd = AddSecurityDocumentCommand(security_id="sec-1", document=_doc(**doc_changes), added_by="u")
    assert _field_of(cmd) == field_name


def test_add_document_missing_ids():
    assert _field_of(AddSecurityDocumentCommand(document=_doc(), added_by="u")) == "securityId"
    assert _field_of(AddSecurityDocumentCommand(security_id="s", document=_doc())) == "addedBy"
    assert _field_of(AddSecurityDocumentCommand(security_id="s")) == "documentInfo.documentId"


def _update_cmd(fields):
    return UpdateSecurityCommand(security_id="sec-1", updated_fields=fields, updated_by="u", reason="r")


def test_update_valid_fields():
    cmd = _update_cmd({"name": "New", "totalShares": 2000, "parValue": 0.0, "other": None})
    assert cmd.validate() is None
    assert cmd.updated_fields["name"] == "New"


@pytest.mark.parametrize(
    "fields, field_name",
    [
        ({"name": ""}, "updatedFields.name"),
        ({"name": 5}, "updatedFields.name"),
        ({"totalShares": 0}, "updatedFields.totalShares"),
        ({"totalShares": "100"}, "updatedFields.totalShares"),
        ({"totalShares": True}, "updatedFields.totalShares"),
        ({"parValue": -1.5}, "updatedFields.parValue"),
        ({"parValue": None}, "updatedFields.parValue"),
    ],
)
def test_update_field_errors(fields, field_name):
    assert _field_of(_update_cmd(fields)) == field_name


def test_update_required_fields():
    assert _field_of(UpdateSecurityCommand(updated_fields={"name": "x"}, updated_by="u", reason="r")) == "securityId"
    assert _field_of(UpdateSecurityCommand(security_id="s", updated_by="u", reason="r")) == "updatedFields"
    assert _field_of(UpdateSecurityCommand(security_id="s", updated_fields={"name": "x"}, reason="r")) == "updatedBy"
    assert _field_of(UpdateSecurityCommand(security_id="s", updated_fields={"name": "x"}, updated_by="u")) == "reason"


def test_suspend_valid_with_and_without_until():
    indefinite = SuspendSecurityCommand(security_id="s", reason="r", suspended_by="u")
    timed = replace(indefinite, until=FUTURE)
    assert indefinite.validate() is None
    assert timed.validate() is None
    assert timed.until == FUTURE


def test_suspend_errors():
    base = SuspendSecurityCommand(security_id="s", reason="r", suspended_by="u")
    assert _field_of(replace(base, security_id="")) == "securityId"
    assert _field_of(replace(base, reason="")) == "reason"
    assert _field_of(replace(base, suspended_by="")) == "suspendedBy"
    assert _field_of(replace(base, until=PAST)) == "duration"


def test_suspend_naive_past_time_rejected():
    cmd = SuspendSecurityCommand(security_id="s", reason="r", suspended_by="u", until=datetime(2000, 1, 1))
    assert _field_of(cmd) == "duration"


def test_reinstate():
    base = ReinstateSecurityCommand(security_id="s", reinstated_by="u", reason="r")
    assert base.validate() is None
    assert _field_of(replace(base, security_id="")) == "securityId"
    assert _field_of(replace(base, reinstated_by="")) == "reinstatedBy"
    assert _field_of(replace(base, reason="")) == "reason"


def test_delist():
    base = DelistSecurityCommand(security_id="s", reason="r", delisted_by="u", effective_at=PAST)
    assert base.validate() is None
    assert _field_of(replace(base, security_id="")) == "securityId"
    assert _field_of(replace(base, reason="")) == "reason"
    assert _field_of(replace(base, delisted_by="")) == "delistedBy"
    assert _field_of(replace(base, effective_at=None)) == "effectiveAt"


def test_transfer():
    base = TransferOwnershipCommand(security_id="s", from_owner="a", to_owner="b", shares_count=10, trade_id="t")
    assert base.validate() is None
    assert _field_of(replace(base, security_id="")) == "securityId"
    assert _field_of(replace(base, from_owner="")) == "fromOwner"
    assert _field_of(replace(base, to_owner="")) == "toOwner"
    assert _field_of(replace(base, shares_count=0)) == "sharesCount"
    assert _field_of(replace(base, trade_id="")) == "tradeId"


def test_transfer_to_same_owner_rejected():
    cmd = TransferOwnershipCommand(security_id="s", from_owner="a", to_owner="a", shares_count=1, trade_id="t")
    with pytest.raises(ValidationError, match="Cannot transfer to the same owner"):
        cmd.validate()


def _dividend(**changes):
    base = DeclareDividendCommand(
        security_id="s",
        dividend_per_share=0.5,
        ex_dividend_date=FUTURE,
        record_date=FUTURE + timedelta(days=1),
        payment_date=FUTURE + timedelta(days=2),
        declared_by="issuer-1",
    )
    return replace(base, **changes)


def test_dividend_valid_and_equal_dates_allowed():
    assert _dividend().validate() is None
    same = _dividend(record_date=FUTURE, payment_date=FUTURE)
    assert same.validate() is None
    assert same.record_date == same.ex_dividend_date


@pytest.mark.parametrize(
    "changes, field_name",
    [
        ({"security_id": ""}, "securityId"),
        ({"dividend_per_share": 0}, "dividendPerShare"),
        ({"ex_dividend_date": None}, "exDividendDate"),
        ({"payment_date": None}, "paymentDate"),
        ({"record_date": None}, "recordDate"),
        ({"declared_by": ""}, "declaredBy"),
        ({"ex_dividend_date": PAST}, "exDividendDate"),
        ({"record_date": FUTURE - timedelta(days=1)}, "recordDate"),
        ({"payment_date": FUTURE}, "paymentDate"),
    ],
)
def test_dividend_errors(changes, field_name):
    assert _field_of(_dividend(**changes)) == field_name


def _split(**changes):
    base = AnnounceSplitCommand(
        security_id="s", split_ratio="2:1", effective_at=FUTURE, announced_by="issuer-1", description="d"
    )
    return replace(base, **changes)


def test_split_valid():
    cmd = _split(split_ratio="3:2")
    assert cmd.validate() is None
    assert cmd.split_ratio == "3:2"


@pytest.mark.parametrize(
    "changes, field_name",
    [
        ({"security_id": ""}, "securityId"),
        ({"split_ratio": ""}, "splitRatio"),
        ({"split_ratio": "2-1"}, "splitRatio"),
        ({"effective_at": None}, "effectiveAt"),
        ({"effective_at": PAST}, "effectiveAt"),
        ({"announced_by": ""}, "announcedBy"),
        ({"description": ""}, "description"),
    ],
)
def test_split_errors(changes, field_name):
    assert _field_of(_split(**changes)) == field_name


@pytest.mark.parametrize("ratio", ["2:1", "3:2", "1:10", "5:100"])
def test_valid_split_ratios(ratio):
    assert is_valid_split_ratio(ratio) is True


@pytest.mark.parametrize("ratio", ["", "2:", "21", "10:1", "2:a", "a:1", "2::1", "2:1 "])
def test_invalid_split_ratios(ratio):
    assert is_valid_split_ratio(ratio) is False


def test_security_type_check():
    assert all(is_valid_security_type(t.value) for t in SecurityType)
    assert is_valid_security_type(SecurityType.BOND) is True
    assert is_valid_security_type("Stock") is False
    assert is_valid_security_type("") is False