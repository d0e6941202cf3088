import httpx
import pytest

from agents.sumex.enums import ModusType, RequestType, ResponseType, StatusType
from agents.sumex.response import (
    AcceptDetails,
    PendingDetails,
    RejectDetails,
    ResponseInterpreter,
    iter_notifications,
    parse_invoice_response,
    print_invoice_response,
)
from agents.sumex.session import SessionLifecycle

from .conftest import RESPONSE, RESPONSE_MANAGER, RESPONSE_PDF_FILE

DOCUMENT = b'<?xml version="1.0"?><invoice:response xmlns:invoice="http://www.forum-datenaustausch.ch/invoice"/>'


def _summary(response_type: int) -> dict:
    return {
        "pbStatus": True,
        "peDataLanguage": 2,
        "peRequestType": 0,
        "peRequestSubtype": 0,
        "peResponseType": response_type,
        "plResponseTimestamp": 1714636800,
        "pbstrGUID": "a3f1c2d4-0000-4b6e-9e0f-7d1c2b3a4f5e",
        "peModusType": 0,
    }


def _notification(code: str, *, error: bool) -> dict:
    return {
        "pbStatus": True,
        "pbstrCode": code,
        "pbstrText": f"text {code}",
        "peIsAnError": 1 if error else 0,
        "plRecordID": 7,
        "pbstrErrorValue": "",
        "pbstrValidValue": "",
    }


@pytest.fixture
def interpreter(response_gateway):
    return ResponseInterpreter(
        response_gateway,
        lifecycle=SessionLifecycle(response_gateway, close_strategy="passive"),
    )


def test_rejected_response_reads_only_reject_details(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(2))
    engine.on(
        "IGeneralInvoiceResponse/GetRejectType",
        {
            "pbStatus": True,
            "pbstrExplanation": "Versicherte Person unbekannt",
            "peStatusIn": 4,
            "peStatusOut": 6,
            "peHasError": 1,
        },
    )

    result = interpreter.parse(DOCUMENT)

    assert result.success
    assert result.response_type is ResponseType.REJECTED
    assert isinstance(result.outcome, RejectDetails)
    assert result.reject_explanation == "Versicherte Person unbekannt"
    assert result.reject_has_error is True
    assert result.outcome.status_in is StatusType.RECEIVED
    assert result.outcome.status_out is StatusType.PROCESSED
    assert result.accept_explanation is None
    assert result.pending_explanation is None
    assert engine.find("IGeneralInvoiceResponse/GetAcceptType") == []
    assert engine.find("IGeneralInvoiceResponse/GetPendingType") == []


def test_summary_metadata(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(3))
    engine.on(
        "IGeneralInvoiceResponse/GetInvoice",
        {
            "pbStatus": True,
            "pbstrRequestInvoiceID": "INV-2024-0042",
            "pdRequestInvoiceDate": "2024-05-02",
            "plRequestInvoiceTimestamp": 1714600000,
        },
    )
    engine.on("IGeneralInvoiceResponse/GetBillerGLN", {"pbStatus": True, "pbstrGLN": "7601000000001"})
    engine.on("IGeneralInvoiceResponse/GetBillerZSR", {"pbStatus": False})

    result = interpreter.parse(DOCUMENT)

    assert result.data_language == 2
    assert result.request_type is RequestType.INVOICE
    assert result.modus is ModusType.PRODUCTION
    assert result.response_timestamp == 1714636800
    assert result.guid == "a3f1c2d4-0000-4b6e-9e0f-7d1c2b3a4f5e"
    assert result.invoice_ref.invoice_id == "INV-2024-0042"
    assert result.invoice_ref.invoice_timestamp == 1714600000
    assert result.biller_gln == "7601000000001"
    assert result.biller_zsr is None
    assert result.provider_gln is None


def test_accepted_response_with_balance(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(3))
    engine.on(
        "IGeneralInvoiceResponse/GetAcceptType",
        {
            "pbStatus": True,
            "pbstrExplanation": "",
            "peStatusIn": 4,
            "peStatusOut": 10,
            "peHasServices": 0,
            "peHasBalance": 1,
            "peHasReimbursement": 1,
        },
    )
    engine.on(
        "IGeneralInvoiceResponse/GetBalance",
        {
            "pbStatus": True,
            "pdAmount": 120.5,
            "pdAmountReminder": 0,
            "pdAmountDue": 20.5,
            "pdAmountPaid": 100,
            "pdAmountUnpaid": 20.5,
            "pdAmountVat": 0,
            "pbstrCurrency": "CHF",
            "pbstrVatNumber": "",
            "plPaymentPeriod": 30,
        },
    )

    result = interpreter.parse(DOCUMENT)

    details = result.accept_details
    assert isinstance(details, AcceptDetails)
    assert details.status_out is StatusType.REIMBURSED
    assert details.has_balance is True
    assert details.has_services is False
    assert result.balance.amount_due == 20.5
    assert result.balance.currency == "CHF"
    assert result.reject_details is None
    assert engine.find("IGeneralInvoiceResponse/GetRejectType") == []


def test_pending_response(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(1))
    engine.on(
        "IGeneralInvoiceResponse/GetPendingType",
        {"pbStatus": True, "pbstrExplanation": "Unterlagen fehlen", "peHasMessage": 1},
    )

    result = interpreter.parse(DOCUMENT)

    assert isinstance(result.outcome, PendingDetails)
    assert result.pending_explanation == "Unterlagen fehlen"
    assert result.outcome.has_message is True
    assert result.balance is None


def test_failing_accessor_leaves_fields_unset(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(2))
    engine.on("IGeneralInvoiceResponse/GetRejectType", httpx.Response(500))

    result = interpreter.parse(DOCUMENT)

    assert result.success
    assert result.outcome == RejectDetails()
    assert result.reject_explanation is None
    assert result.reject_has_error is None


def test_unknown_response_type_has_no_outcome(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(9))

    result = interpreter.parse(DOCUMENT)

    assert result.success
    assert result.response_type == 9
    assert result.outcome is None


def test_load_uploads_raw_document(interpreter, engine) -> None:
    interpreter.parse(DOCUMENT, "answer_INV-2024-0042.xml")

    call = engine.one("IGeneralInvoiceResponseManager/LoadXML")
    assert call.method == "POST"
    assert call.content_type == "application/octet-stream"
    assert call.content == DOCUMENT
    assert call.params == {
        "pIGeneralInvoiceResponseManager": str(RESPONSE_MANAGER),
        "bstrInputFile": "answer_INV-2024-0042.xml",
        "bstrToPFXFile": "",
        "bstrToPFXPassword": "",
    }
    assert engine.one("IGeneralInvoiceResponse/GetResponse").body == {"pIGeneralInvoiceResponse": RESPONSE}


def test_load_failure(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponseManager/LoadXML", {"pbStatus": False})
    engine.on("IGeneralInvoiceResponseManager/GetAbortInfo", {"pbstrAbortInfo": "not a response document"})

    result = interpreter.parse(b"<invoice:request/>")

    assert not result.success
    assert "LoadXML" in result.error
    assert "not a response document" in result.error
    assert engine.find("IGeneralInvoiceResponse/GetResponse") == []
    assert interpreter.lifecycle.active_sessions == []


def test_get_response_failure_fails_parse(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", httpx.Response(500, json={"pbstrAbort": "corrupt"}))

    result = interpreter.parse(DOCUMENT)

    assert not result.success
    assert "corrupt" in result.error


def test_notifications_are_read_until_false_status(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(2))
    engine.queue("IGeneralInvoiceResponse/GetFirstNotification", _notification("E001", error=True))
    engine.queue("IGeneralInvoiceResponse/GetNextNotification", _notification("W002", error=False))

    result = interpreter.parse(DOCUMENT)

    assert [n.code for n in result.notifications] == ["E001", "W002"]
    assert result.has_errors
    assert len(engine.find("IGeneralInvoiceResponse/GetFirstNotification")) == 1
    assert len(engine.find("IGeneralInvoiceResponse/GetNextNotification")) == 2


def test_no_notifications_means_one_read(interpreter, engine) -> None:
    result = interpreter.parse(DOCUMENT)

    assert result.notifications == ()
    assert not result.has_errors
    assert len(engine.find("IGeneralInvoiceResponse/GetFirstNotification")) == 1
    assert engine.find("IGeneralInvoiceResponse/GetNextNotification") == []


def test_notification_cursor_is_lazy(response_gateway, engine) -> None:
    engine.queue("IGeneralInvoiceResponse/GetFirstNotification", _notification("E001", error=True))
    engine.queue("IGeneralInvoiceResponse/GetNextNotification", _notification("E002", error=True))

    cursor = iter_notifications(response_gateway, RESPONSE)
    assert engine.calls == []

    first = next(cursor)
    assert first.code == "E001"
    assert first.is_error
    assert first.record_id == 7
    assert len(engine.calls) == 1


def test_transport_error_ends_traversal(response_gateway, engine) -> None:
    engine.queue("IGeneralInvoiceResponse/GetFirstNotification", _notification("E001", error=True))
    engine.on("IGeneralInvoiceResponse/GetNextNotification", httpx.Response(500))

    notifications = list(iter_notifications(response_gateway, RESPONSE))

    assert [n.code for n in notifications] == ["E001"]


def test_print_response(interpreter, engine) -> None:
    result = interpreter.print(DOCUMENT)

    assert result.success
    assert result.pdf_file_path == RESPONSE_PDF_FILE
    assert result.pdf_content == b"%PDF-1.7 response"
    assert engine.one("IGeneralInvoiceResponseManager/Print").body == {
        "pIGeneralInvoiceResponseManager": RESPONSE_MANAGER,
        "bstrPrintTemplate": "",
        "lGenerationAttributes": 0,
        "ePrintPreview": 0,
    }


def test_print_false_status(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponseManager/Print", {"pbStatus": False})
    engine.on("IGeneralInvoiceResponseManager/GetAbortInfo", {"pbstrAbortInfo": "no print template"})

    result = interpreter.print(DOCUMENT)

    assert not result.success
    assert "no print template" in result.error
    assert result.pdf_content is None


def test_print_download_failure(interpreter, engine) -> None:
    engine.on("files/response.pdf", httpx.Response(404))

    result = interpreter.print(DOCUMENT)

    assert not result.success
    assert result.pdf_content is None


def test_response_module_info(interpreter, engine) -> None:
    engine.on("IGeneralInvoiceResponseManager/GetModuleVersion", {"plModuleVersion": 500007})

    info = interpreter.module_info()

    assert info.module_version == 500007
    assert engine.one("IGeneralInvoiceResponseManager/GetModuleVersion").params == {
        "pIGeneralInvoiceResponseManager": str(RESPONSE_MANAGER)
    }


def test_module_functions_accept_text(response_gateway, engine) -> None:
    engine.on("IGeneralInvoiceResponse/GetResponse", _summary(1))

    parsed = parse_invoice_response(DOCUMENT.decode("utf-8"), gateway=response_gateway)
    printed = print_invoice_response(DOCUMENT, gateway=response_gateway)

    assert parsed.success
    assert parsed.response_type is ResponseType.PENDING
    assert engine.find("IGeneralInvoiceResponseManager/LoadXML")[0].content == DOCUMENT
    assert printed.success
