"""Interpret generalInvoiceResponse_500 documents on the Sumex1 response engine.

Only the binary LoadXML (and the GetResponse summary that carries the
outcome discriminant) is mandatory. Every other accessor is best effort: a
document may legitimately omit the section for its outcome type.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, Optional, Union

from backend.clients.sumex.dto import (
    BalanceRecord,
    ModuleInfo,
    NotificationRecord,
    PrintFileResult,
    _int,
    _str,
    is_yes,
    status_of,
)
from backend.clients.sumex.gateway import SumexError, SumexGateway, SumexSessionError
from backend.core.logging import get_logger

from .enums import ModusType, RequestSubtype, RequestType, ResponseType, StatusType
from .session import RESPONSE_MANAGER, EngineSession, SessionLifecycle

logger = get_logger(__name__)

IRESPONSE = "IGeneralInvoiceResponse"
DEFAULT_FILENAME = "response.xml"

Notification = NotificationRecord


def _enum_or_raw(enum_cls, value: Any):
    """Known codes become enum members, unknown codes stay raw integers."""
    if value is None:
        return None
    try:
        return enum_cls(_int(value))
    except ValueError:
        return _int(value)


@dataclass(frozen=True)
class InvoiceRef:
    invoice_id: str
    invoice_date: str
    invoice_timestamp: int


@dataclass(frozen=True)
class AcceptDetails:
    explanation: Optional[str] = None
    status_in: Optional[Union[StatusType, int]] = None
    status_out: Optional[Union[StatusType, int]] = None
    has_services: Optional[bool] = None
    has_balance: Optional[bool] = None
    has_reimbursement: Optional[bool] = None
    balance: Optional[BalanceRecord] = None


@dataclass(frozen=True)
class RejectDetails:
    explanation: Optional[str] = None
    status_in: Optional[Union[StatusType, int]] = None
    status_out: Optional[Union[StatusType, int]] = None
    has_error: Optional[bool] = None


@dataclass(frozen=True)
class PendingDetails:
    explanation: Optional[str] = None
    status_in: Optional[Union[StatusType, int]] = None
    status_out: Optional[Union[StatusType, int]] = None
    has_message: Optional[bool] = None


Outcome = Union[AcceptDetails, RejectDetails, PendingDetails]


@dataclass
class ResponseInterpretation:
    """Parsed response; ``outcome`` holds exactly one variant for a known type."""

    success: bool
    error: Optional[str] = None
    data_language: Optional[int] = None
    request_type: Optional[Union[RequestType, int]] = None
    request_subtype: Optional[Union[RequestSubtype, int]] = None
    response_type: Optional[Union[ResponseType, int]] = None
    response_timestamp: Optional[int] = None
    guid: Optional[str] = None
    modus: Optional[Union[ModusType, int]] = None
    invoice_ref: Optional[InvoiceRef] = None
    biller_gln: Optional[str] = None
    biller_zsr: Optional[str] = None
    provider_gln: Optional[str] = None
    insurance_gln: Optional[str] = None
    outcome: Optional[Outcome] = None
    notifications: tuple[Notification, ...] = ()

    @classmethod
    def failure(cls, error: str) -> ResponseInterpretation:
        return cls(success=False, error=error)

    @property
    def accept_details(self) -> Optional[AcceptDetails]:
        return self.outcome if isinstance(self.outcome, AcceptDetails) else None

    @property
    def reject_details(self) -> Optional[RejectDetails]:
        return self.outcome if isinstance(self.outcome, RejectDetails) else None

    @property
    def pending_details(self) -> Optional[PendingDetails]:
        return self.outcome if isinstance(self.outcome, PendingDetails) else None

    @property
    def accept_explanation(self) -> Optional[str]:
        details = self.accept_details
        return details.explanation if details else None

    @property
    def reject_explanation(self) -> Optional[str]:
        details = self.reject_details
        return details.explanation if details else None

    @property
    def pending_explanation(self) -> Optional[str]:
        details = self.pending_details
        return details.explanation if details else None

    @property
    def reject_has_error(self) -> Optional[bool]:
        details = self.reject_details
        return details.has_error if details else None

    @property
    def balance(self) -> Optional[BalanceRecord]:
        details = self.accept_details
        return details.balance if details else None

    @property
    def has_errors(self) -> bool:
        return any(n.is_error for n in self.notifications)

    def to_json(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["outcome_type"] = type(self.outcome).__name__ if self.outcome is not None else None
        return payload


@dataclass
class PrintResult:
    success: bool
    pdf_content: Optional[bytes] = None
    pdf_file_path: Optional[str] = None
    error: Optional[str] = None


def iter_notifications(gateway: SumexGateway, response_handle: int) -> Iterator[Notification]:
    """Walk the engine's forward-only notification cursor.

    Yields one record per successful read and stops at the first read that
    reports a false status or fails on the wire. The cursor cannot be
    restarted, so the generator is single pass.
    """
    method = "GetFirstNotification"
    while True:
        try:
            data = gateway.call(IRESPONSE, method, {"pIGeneralInvoiceResponse": response_handle})
        except SumexError as exc:
            logger.debug(f"{method} stopped traversal: {exc}")
            return
        if not status_of(data):
            return
        yield NotificationRecord.from_json(data)
        method = "GetNextNotification"


class ResponseInterpreter:
    """Client for the Sumex1 generalInvoiceResponseManager."""

    def __init__(
        self,
        gateway: Optional[SumexGateway] = None,
        *,
        lifecycle: Optional[SessionLifecycle] = None,
    ):
        self.gateway = gateway or SumexGateway.for_responses()
        self.lifecycle = lifecycle or SessionLifecycle(self.gateway)

    def close(self) -> None:
        self.gateway.close()

    def __enter__(self) -> ResponseInterpreter:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def parse(self, content: bytes | str, filename: str = DEFAULT_FILENAME) -> ResponseInterpretation:
        """Load and interpret one response document; never raises for engine failures."""
        try:
            session = self.lifecycle.open_response_manager()
        except SumexError as exc:
            logger.error(f"Response manager creation failed: {exc}")
            return ResponseInterpretation.failure(str(exc))

        try:
            response = self._load(session, content, filename)
            result = self._interpret(session, response)
        except SumexError as exc:
            session.fail()
            logger.error(f"parse_invoice_response failed: {exc}")
            return ResponseInterpretation.failure(str(exc))
        finally:
            self.lifecycle.close(session)

        logger.info(
            f"Response parsed: type={result.response_type}, notifications={len(result.notifications)}"
        )
        return result

    def print(self, content: bytes | str, filename: str = DEFAULT_FILENAME) -> PrintResult:
        """Render a response document to PDF and download it."""
        try:
            session = self.lifecycle.open_response_manager()
        except SumexError as exc:
            return PrintResult(success=False, error=str(exc))

        try:
            self._load(session, content, filename)
            data = self.gateway.call(
                RESPONSE_MANAGER,
                "Print",
                {
                    "pIGeneralInvoiceResponseManager": session.manager_handle,
                    "bstrPrintTemplate": "",
                    "lGenerationAttributes": 0,
                    "ePrintPreview": 0,
                },
            )
            printed = PrintFileResult.from_json(data)
            if not printed.status or not printed.pdf_file:
                raise SumexSessionError("Print", self._abort_info(session))
            pdf_content = self.gateway.download(printed.pdf_file)
        except SumexError as exc:
            session.fail()
            logger.error(f"print_invoice_response failed: {exc}")
            return PrintResult(success=False, error=str(exc))
        finally:
            self.lifecycle.close(session)

        logger.info(f"Response PDF: {printed.pdf_file} ({len(pdf_content)} bytes)")
        return PrintResult(success=True, pdf_content=pdf_content, pdf_file_path=printed.pdf_file)

    def module_info(self) -> ModuleInfo:
        session = self.lifecycle.open_response_manager()
        try:
            return self.gateway.module_info(RESPONSE_MANAGER, session.manager_handle)
        finally:
            self.lifecycle.close(session)

    def _load(self, session: EngineSession, content: bytes | str, filename: str) -> int:
        payload = content.encode("utf-8") if isinstance(content, str) else content
        data = self.gateway.upload(
            RESPONSE_MANAGER,
            "LoadXML",
            payload,
            pIGeneralInvoiceResponseManager=session.manager_handle,
            bstrInputFile=filename or DEFAULT_FILENAME,
            bstrToPFXFile="",
            bstrToPFXPassword="",
        )
        if not status_of(data) or data.get("pIGeneralInvoiceResponse") is None:
            raise SumexSessionError("LoadXML", self._abort_info(session))
        handle = _int(data["pIGeneralInvoiceResponse"])
        logger.info(f"Response loaded, handle={handle}")
        return handle

    def _interpret(self, session: EngineSession, response: int) -> ResponseInterpretation:
        summary = self.gateway.call(IRESPONSE, "GetResponse", {"pIGeneralInvoiceResponse": response})
        if "pbStatus" in summary and not status_of(summary):
            raise SumexSessionError("GetResponse", self._abort_info(session))

        result = ResponseInterpretation(
            success=True,
            data_language=_int(summary.get("peDataLanguage")),
            request_type=_enum_or_raw(RequestType, summary.get("peRequestType")),
            request_subtype=_enum_or_raw(RequestSubtype, summary.get("peRequestSubtype")),
            response_type=_enum_or_raw(ResponseType, summary.get("peResponseType")),
            response_timestamp=_int(summary.get("plResponseTimestamp")),
            guid=_str(summary.get("pbstrGUID")) or None,
            modus=_enum_or_raw(ModusType, summary.get("peModusType")),
        )

        invoice = self._accessor("GetInvoice", response)
        if invoice is not None:
            result.invoice_ref = InvoiceRef(
                invoice_id=_str(invoice.get("pbstrRequestInvoiceID")),
                invoice_date=_str(invoice.get("pdRequestInvoiceDate")),
                invoice_timestamp=_int(invoice.get("plRequestInvoiceTimestamp")),
            )
        result.biller_gln = self._text("GetBillerGLN", response, "pbstrGLN")
        result.biller_zsr = self._text("GetBillerZSR", response, "pbstrZSR")
        result.provider_gln = self._text("GetProviderGLN", response, "pbstrGLN")
        result.insurance_gln = self._text("GetInsurance", response, "pbstrGLN")

        result.outcome = self._outcome(result.response_type, response)
        result.notifications = tuple(iter_notifications(self.gateway, response))
        return result

    def _outcome(self, response_type: Any, response: int) -> Optional[Outcome]:
        if response_type == ResponseType.ACCEPTED:
            data = self._accessor("GetAcceptType", response)
            balance = self._accessor("GetBalance", response)
            if data is None:
                return AcceptDetails(balance=BalanceRecord.from_json(balance) if balance else None)
            return AcceptDetails(
                explanation=_str(data.get("pbstrExplanation")),
                status_in=_enum_or_raw(StatusType, data.get("peStatusIn")),
                status_out=_enum_or_raw(StatusType, data.get("peStatusOut")),
                has_services=is_yes(data.get("peHasServices")),
                has_balance=is_yes(data.get("peHasBalance")),
                has_reimbursement=is_yes(data.get("peHasReimbursement")),
                balance=BalanceRecord.from_json(balance) if balance else None,
            )

        if response_type == ResponseType.REJECTED:
            data = self._accessor("GetRejectType", response)
            if data is None:
                return RejectDetails()
            return RejectDetails(
                explanation=_str(data.get("pbstrExplanation")),
                status_in=_enum_or_raw(StatusType, data.get("peStatusIn")),
                status_out=_enum_or_raw(StatusType, data.get("peStatusOut")),
                has_error=is_yes(data.get("peHasError")),
            )

        if response_type == ResponseType.PENDING:
            data = self._accessor("GetPendingType", response)
            if data is None:
                return PendingDetails()
            return PendingDetails(
                explanation=_str(data.get("pbstrExplanation")),
                status_in=_enum_or_raw(StatusType, data.get("peStatusIn")),
                status_out=_enum_or_raw(StatusType, data.get("peStatusOut")),
                has_message=is_yes(data.get("peHasMessage")),
            )

        logger.warning(f"Unknown response type {response_type}; no outcome details read")
        return None

    def _accessor(self, method: str, response: int) -> Optional[Dict[str, Any]]:
        try:
            data = self.gateway.call(IRESPONSE, method, {"pIGeneralInvoiceResponse": response})
        except SumexError as exc:
            logger.info(f"{method} unavailable: {exc}")
            return None
        return data if status_of(data) else None

    def _text(self, method: str, response: int, key: str) -> Optional[str]:
        data = self._accessor(method, response)
        if data is None:
            return None
        return _str(data.get(key)) or None

    def _abort_info(self, session: EngineSession) -> str:
        return self.gateway.abort_info(RESPONSE_MANAGER, session.manager_handle)


def parse_invoice_response(
    content: bytes | str,
    filename: str = DEFAULT_FILENAME,
    *,
    gateway: Optional[SumexGateway] = None,
) -> ResponseInterpretation:
    if gateway is not None:
        return ResponseInterpreter(gateway).parse(content, filename)
    with ResponseInterpreter() as interpreter:
        return interpreter.parse(content, filename)


def print_invoice_response(
    content: bytes | str,
    filename: str = DEFAULT_FILENAME,
    *,
    gateway: Optional[SumexGateway] = None,
) -> PrintResult:
    if gateway is not None:
        return ResponseInterpreter(gateway).print(content, filename)
    with ResponseInterpreter() as interpreter:
        return interpreter.print(content, filename)
