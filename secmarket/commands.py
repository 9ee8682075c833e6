"""Commands accepted by the security domain, each able to validate itself."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from secmarket.aggregate import SecurityType
from secmarket.events import SecurityDocument

_VALID_SECURITY_TYPES = frozenset(t.value for t in SecurityType)
_MAX_SYMBOL_LENGTH = 10


class ValidationError(ValueError):
    """A command field holds a value the domain does not accept."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(message)
        self.field = field_name
        self.message = message

    def __str__(self) -> str:
        return self.message


def _now_for(value: datetime) -> datetime:
    """Current time, naive or aware to match ``value`` so they can be compared."""
    if value.tzinfo is None:
        return datetime.now()
    return datetime.now(timezone.utc)


def _in_past(value: datetime) -> bool:
    return value < _now_for(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _empty_document() -> SecurityDocument:
    return SecurityDocument(
        document_id="",
        document_type="",
        title="",
        file_name="",
        file_size=0,
        content_hash="",
    )


def is_valid_security_type(value: str) -> bool:
    """True when the value names one of the known security types."""
    return value in _VALID_SECURITY_TYPES


def is_valid_split_ratio(ratio: str) -> bool:
    """True for ratios shaped like ``"2:1"``: one digit, a colon, then digits."""
    if len(ratio.encode("utf-8")) < 3:
        return False
    for position, char in enumerate(ratio):
        if position == 1:
            if char != ":":
                return False
        elif not "0" <= char <= "9":
            return False
    return True


@dataclass
class ListSecurityCommand:
    """Request to list a new security."""

    security_id: str = ""
    issuer_id: str = ""
    security_type: str = ""
    name: str = ""
    symbol: str = ""
    total_shares: int = 0
    par_value: Optional[float] = None
    details: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.issuer_id:
            raise ValidationError("issuerId", "Issuer ID is required")
        if not self.security_type:
            raise ValidationError("securityType", "Security type is required")
        if not is_valid_security_type(self.security_type):
            raise ValidationError("securityType", "Invalid security type")
        if not self.name:
            raise ValidationError("name", "Security name is required")
        if not self.symbol:
            raise ValidationError("symbol", "Security symbol is required")
        if len(self.symbol.encode("utf-8")) > _MAX_SYMBOL_LENGTH:
            raise ValidationError("symbol", "Security symbol must be 10 characters or less")
        if self.total_shares <= 0:
            raise ValidationError("totalShares", "Total shares must be greater than zero")
        if self.par_value is not None and self.par_value < 0:
            raise ValidationError("parValue", "Par value cannot be negative")


@dataclass
class AddSecurityDocumentCommand:
    """Request to attach a document to a security."""

    security_id: str = ""
    document: SecurityDocument = field(default_factory=_empty_document)
    added_by: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        doc = self.document
        if not doc.document_id:
            raise ValidationError("documentInfo.documentId", "Document ID is required")
        if not doc.document_type:
            raise ValidationError("documentInfo.documentType", "Document type is required")
        if not doc.title:
            raise ValidationError("documentInfo.title", "Document title is required")
        if not doc.file_name:
            raise ValidationError("documentInfo.fileName", "File name is required")
        if doc.file_size <= 0:
            raise ValidationError("documentInfo.fileSize", "File size must be greater than zero")
        if not doc.content_hash:
            raise ValidationError("documentInfo.contentHash", "Content hash is required")
        if not self.added_by:
            raise ValidationError("addedBy", "Added by is required")


@dataclass
class UpdateSecurityCommand:
    """Request to change a security's name, total shares or par value."""

    security_id: str = ""
    updated_fields: dict[str, Any] = field(default_factory=dict)
    updated_by: str = ""
    reason: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.updated_fields:
            raise ValidationError("updatedFields", "At least one field must be updated")
        if not self.updated_by:
            raise ValidationError("updatedBy", "Updated by is required")
        if not self.reason:
            raise ValidationError("reason", "Reason is required")

        for name, value in self.updated_fields.items():
            if name == "name":
                if not isinstance(value, str) or value == "":
                    raise ValidationError("updatedFields.name", "Name must be a non-empty string")
            elif name == "totalShares":
                if not _is_number(value) or value <= 0:
                    raise ValidationError(
                        "updatedFields.totalShares", "Total shares must be greater than zero"
                    )
            elif name == "parValue":
                if not _is_number(value) or value < 0:
                    raise ValidationError("updatedFields.parValue", "Par value cannot be negative")


@dataclass
class SuspendSecurityCommand:
    """Request to suspend trading, until a time or indefinitely."""

    security_id: str = ""
    reason: str = ""
    suspended_by: str = ""
    until: Optional[datetime] = None

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.reason:
            raise ValidationError("reason", "Reason is required")
        if not self.suspended_by:
            raise ValidationError("suspendedBy", "Suspended by is required")
        if self.until is not None and _in_past(self.until):
            raise ValidationError("duration", "Duration cannot be in the past")


@dataclass
class ReinstateSecurityCommand:
    """Request to resume trading of a suspended security."""

    security_id: str = ""
    reinstated_by: str = ""
    reason: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.reinstated_by:
            raise ValidationError("reinstatedBy", "Reinstated by is required")
        if not self.reason:
            raise ValidationError("reason", "Reason is required")


@dataclass
class DelistSecurityCommand:
    """Request to delist a security."""

    security_id: str = ""
    reason: str = ""
    delisted_by: str = ""
    effective_at: Optional[datetime] = None

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.reason:
            raise ValidationError("reason", "Reason is required")
        if not self.delisted_by:
            raise ValidationError("delistedBy", "Delisted by is required")
        if self.effective_at is None:
            raise ValidationError("effectiveAt", "Effective at date is required")


@dataclass
class TransferOwnershipCommand:
    """Request to move shares between owners."""

    security_id: str = ""
    from_owner: str = ""
    to_owner: str = ""
    shares_count: int = 0
    trade_id: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.from_owner:
            raise ValidationError("fromOwner", "From owner is required")
        if not self.to_owner:
            raise ValidationError("toOwner", "To owner is required")
        if self.from_owner == self.to_owner:
            raise ValidationError("toOwner", "Cannot transfer to the same owner")
        if self.shares_count <= 0:
            raise ValidationError("sharesCount", "Shares count must be greater than zero")
        if not self.trade_id:
            raise ValidationError("tradeId", "Trade ID is required")


@dataclass
class DeclareDividendCommand:
    """Request to declare a dividend."""

    security_id: str = ""
    dividend_per_share: float = 0.0
    ex_dividend_date: Optional[datetime] = None
    payment_date: Optional[datetime] = None
    record_date: Optional[datetime] = None
    declared_by: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if self.dividend_per_share <= 0:
            raise ValidationError("dividendPerShare", "Dividend per share must be greater than zero")
        if self.ex_dividend_date is None:
            raise ValidationError("exDividendDate", "Ex-dividend date is required")
        if self.payment_date is None:
            raise ValidationError("paymentDate", "Payment date is required")
        if self.record_date is None:
            raise ValidationError("recordDate", "Record date is required")
        if not self.declared_by:
            raise ValidationError("declaredBy", "Declared by is required")

        if _in_past(self.ex_dividend_date):
            raise ValidationError("exDividendDate", "Ex-dividend date cannot be in the past")
        if self.record_date < self.ex_dividend_date:
            raise ValidationError("recordDate", "Record date must be on or after ex-dividend date")
        if self.payment_date < self.record_date:
            raise ValidationError("paymentDate", "Payment date must be on or after record date")


@dataclass
class AnnounceSplitCommand:
    """Request to announce a stock split."""

    security_id: str = ""
    split_ratio: str = ""
    effective_at: Optional[datetime] = None
    announced_by: str = ""
    description: str = ""

    def validate(self) -> None:
        """Raise ValidationError on the first field that is not acceptable."""
        if not self.security_id:
            raise ValidationError("securityId", "Security ID is required")
        if not self.split_ratio:
            raise ValidationError("splitRatio", "Split ratio is required")
        if not is_valid_split_ratio(self.split_ratio):
            raise ValidationError("splitRatio", "Invalid split ratio format (e.g., '2:1', '3:2')")
        if self.effective_at is None:
            raise ValidationError("effectiveAt", "Effective at date is required")
        if _in_past(self.effective_at):
            raise ValidationError("effectiveAt", "Effective at date cannot be in the past")
        if not self.announced_by:
            raise ValidationError("announcedBy", "Announced by is required")
        if not self.description:
            raise ValidationError("description", "Description is required")