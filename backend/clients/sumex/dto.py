from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

YES = 1


def _ensure_mapping(payload: Any, context: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError(f"{context} expected mapping payload, got {type(payload).__name__}")
    return payload


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _str(value: Any) -> str:
    return "" if value is None else str(value)


def is_yes(value: Any) -> bool:
    """Engine flags are ``enYes``/``enNo`` integers; some servers send booleans."""
    if isinstance(value, bool):
        return value
    return _int(value, -1) == YES


def status_of(payload: Mapping[str, Any]) -> bool:
    return bool(payload.get("pbStatus", False))


@dataclass
class AddResult:
    status: bool
    record_id: int | None = None

    @classmethod
    def from_json(cls, payload: Any) -> AddResult:
        data = _ensure_mapping(payload, "AddResult")
        # Add* calls without a status field are treated as accepted
        return cls(
            status=bool(data.get("pbStatus", True)),
            record_id=data.get("plID"),
        )


@dataclass
class FinalizeResult:
    status: bool
    round_difference: float = 0.0

    @classmethod
    def from_json(cls, payload: Any) -> FinalizeResult:
        data = _ensure_mapping(payload, "FinalizeResult")
        return cls(
            status=status_of(data),
            round_difference=_float(data.get("pdRoundDifference")),
        )


@dataclass
class GetXmlResult:
    status: bool
    output_file: str = ""
    validation_error: int = 0
    timestamp: int = 0
    used_schema: str = ""
    result_handle: int | None = None

    @classmethod
    def from_json(cls, payload: Any) -> GetXmlResult:
        data = _ensure_mapping(payload, "GetXmlResult")
        return cls(
            status=status_of(data),
            output_file=_str(data.get("pbstrOutputFile")),
            validation_error=_int(data.get("plValidationError")),
            timestamp=_int(data.get("plTimestamp")),
            used_schema=_str(data.get("pbstrUsedSchema")),
            result_handle=data.get("pIGeneralInvoiceResult"),
        )

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PrintFileResult:
    status: bool
    pdf_file: str = ""
    timestamp: int = 0

    @classmethod
    def from_json(cls, payload: Any) -> PrintFileResult:
        data = _ensure_mapping(payload, "PrintFileResult")
        return cls(
            status=status_of(data),
            pdf_file=_str(data.get("pbstrPDFFile")),
            timestamp=_int(data.get("plTimestamp")),
        )


@dataclass
class NotificationRecord:
    code: str
    text: str
    is_error: bool
    record_id: int
    error_value: str
    valid_value: str

    @classmethod
    def from_json(cls, payload: Any) -> NotificationRecord:
        data = _ensure_mapping(payload, "NotificationRecord")
        return cls(
            code=_str(data.get("pbstrCode")),
            text=_str(data.get("pbstrText")),
            is_error=is_yes(data.get("peIsAnError")),
            record_id=_int(data.get("plRecordID")),
            error_value=_str(data.get("pbstrErrorValue")),
            valid_value=_str(data.get("pbstrValidValue")),
        )

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BalanceRecord:
    amount: float
    amount_reminder: float
    amount_due: float
    amount_paid: float
    amount_unpaid: float
    amount_vat: float
    currency: str
    vat_number: str
    payment_period: int

    @classmethod
    def from_json(cls, payload: Any) -> BalanceRecord:
        data = _ensure_mapping(payload, "BalanceRecord")
        return cls(
            amount=_float(data.get("pdAmount")),
            amount_reminder=_float(data.get("pdAmountReminder")),
            amount_due=_float(data.get("pdAmountDue")),
            amount_paid=_float(data.get("pdAmountPaid")),
            amount_unpaid=_float(data.get("pdAmountUnpaid")),
            amount_vat=_float(data.get("pdAmountVat")),
            currency=_str(data.get("pbstrCurrency")),
            vat_number=_str(data.get("pbstrVatNumber")),
            payment_period=_int(data.get("plPaymentPeriod")),
        )

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ModuleInfo:
    module_version: int = 0
    module_version_text: str = "unknown"

    def to_json(self) -> dict[str, Any]:
        return asdict(self)
