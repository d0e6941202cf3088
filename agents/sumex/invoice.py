"""Build generalInvoiceRequest_500 documents on the Sumex1 request engine.

Every build runs on its own request session:

1. create manager / request / address handles
2. populate the request in engine order (package ... transport)
3. Finalize (status checked, abort info on failure)
4. GetXML (empty-body retry), best-effort download of the XML
5. optional Print to PDF (never fails the build)
6. close the session
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

from backend.clients.sumex.dto import (
    AddResult,
    FinalizeResult,
    GetXmlResult,
    ModuleInfo,
    PrintFileResult,
    status_of,
)
from backend.clients.sumex.gateway import (
    UNKNOWN_ABORT_INFO,
    SumexError,
    SumexGateway,
    SumexSessionError,
    SumexTimeoutError,
)
from backend.core.config import settings
from backend.core.logging import get_logger

from .dto import (
    BuildOptions,
    BuildResult,
    InvoiceAddress,
    InvoiceInput,
    LoadXmlResult,
    wire_date,
    wire_number,
)
from .enums import TiersMode, YesNo, canton_code
from .reference import generate_reference
from .session import REQUEST_MANAGER, EngineSession, SessionLifecycle, SessionState
from .tariff import TariffRouter

logger = get_logger(__name__)

IREQUEST = "IGeneralInvoiceRequest"

_ZSR = re.compile(r"^[A-Za-z]\d{6}$")


class GenerationError(SumexSessionError):
    """GetXML reported a false status."""

    def __init__(self, abort_info: str = "", validation_error: int = 0):
        super().__init__("GetXML", abort_info)
        self.validation_error = validation_error


def is_valid_zsr(zsr: Optional[str]) -> bool:
    """ZSR numbers are one letter followed by six digits (e.g. ``K460025``)."""
    return bool(zsr) and _ZSR.match(zsr) is not None


def resolve_debtor(invoice: InvoiceInput) -> Tuple[InvoiceAddress, str]:
    """Return ``(address, gln)`` of the party that pays the invoice.

    An explicit ``debtor_address`` always wins. Otherwise a Payant invoice
    with a complete insurer is billed to the insurer; everything else is
    billed to the patient.
    """
    if invoice.debtor_address is not None:
        return invoice.debtor_address, invoice.debtor_gln or ""
    if invoice.tiers_mode == TiersMode.PAYANT and invoice.has_insurer:
        return invoice.insurance_address, invoice.insurance_gln
    return invoice.patient_address, ""


class InvoiceRequestBuilder:
    """Issues the population calls for one request session in engine order."""

    def __init__(self, gateway: SumexGateway, session: EngineSession, invoice: InvoiceInput):
        if session.request_handle is None or session.address is None:
            raise ValueError("InvoiceRequestBuilder needs a full request session")
        self.gateway = gateway
        self.session = session
        self.invoice = invoice
        self.request = session.request_handle
        self.address = session.address

    def populate(self) -> None:
        self.set_package()
        self.set_request()
        self.set_tiers()
        self.set_invoice()
        self.set_credit()
        self.set_reminder()
        self.set_law()
        self.set_esr_qr()
        self.set_biller()
        self.set_provider()
        self.set_insurance()
        self.set_patient()
        self.set_insured()
        # No SetGuarantor: Finalize clones the patient address as guarantor
        self.set_debtor()
        self.set_treatment()
        self.add_diagnoses()
        self.add_partners()
        TariffRouter(self.gateway, self.request, self.abort_info).register_all(self.invoice)
        self.set_processing()
        self.set_transport()

    def abort_info(self) -> str:
        return self.gateway.abort_info(REQUEST_MANAGER, self.session.manager_handle)

    def set_package(self) -> None:
        inv = self.invoice
        self._call(
            "SetPackage",
            {
                "bstrSoftwarePackage": inv.software_package or settings.SUMEX_SOFTWARE_PACKAGE,
                "lSoftwareVersion": inv.software_version or settings.SUMEX_SOFTWARE_VERSION,
                "lSoftwareID": inv.software_id or settings.SUMEX_SOFTWARE_ID,
                "bstrSoftwareCopyright": inv.software_copyright or settings.SUMEX_SOFTWARE_COPYRIGHT,
            },
        )

    def set_request(self) -> None:
        inv = self.invoice
        self._call(
            "SetRequest",
            {
                "eRoleType": int(inv.role_type),
                "ePlaceType": int(inv.place_type),
                "bstrRoleTitle": "",
                "eRequestType": int(inv.request_type),
                "eRequestSubtype": int(inv.request_subtype),
                "bstrRefundList": "",
                "bstrRemark": inv.remark,
            },
        )

    def set_tiers(self) -> None:
        inv = self.invoice
        self._call(
            "SetTiers",
            {
                "eTiersMode": int(inv.tiers_mode),
                "ePatientAllowTS": int(YesNo.NO),
                "eAllowTPModification": int(YesNo.NO),
                "bstrVatNumber": inv.vat_number,
                "dAmountPrepaid": wire_number(inv.amount_prepaid),
            },
        )

    def set_invoice(self) -> None:
        inv = self.invoice
        self._call(
            "SetInvoice",
            {
                "bstrRequestInvoiceID": inv.invoice_id,
                "dRequestInvoiceDate": wire_date(inv.invoice_date),
                "lRequestInvoiceTimestamp": inv.invoice_timestamp,
            },
        )

    def set_credit(self) -> None:
        inv = self.invoice
        if not inv.credit_id:
            return
        self._optional(
            "SetCredit",
            {
                "bstrRequestCreditID": inv.credit_id,
                "dRequestCreditDate": wire_date(inv.credit_date or inv.invoice_date),
                "lRequestCreditTimestamp": inv.credit_timestamp,
            },
        )

    def set_reminder(self) -> None:
        inv = self.invoice
        if inv.reminder_level <= 0:
            return
        self._optional(
            "SetReminder",
            {
                "lReminderLevel": inv.reminder_level,
                "bstrReminderText": inv.reminder_text or f"Rappel niveau {inv.reminder_level}",
                "dRequestReminderDate": wire_date(inv.reminder_date or inv.invoice_date),
                "lRequestReminderTimestamp": inv.reminder_timestamp,
                "dAmountReminder": wire_number(inv.reminder_amount),
            },
        )

    def set_law(self) -> None:
        inv = self.invoice
        self._call(
            "SetLaw",
            {
                "eLawType": int(inv.law_type),
                "dCaseDate": wire_date(inv.case_date),
                "bstrCaseID": inv.case_id,
                "bstrInsuredID": inv.insured_id,
            },
        )

    def set_esr_qr(self) -> None:
        inv = self.invoice
        reference = inv.esr_reference
        if not reference:
            reference = generate_reference(inv.invoice_id)
            logger.info(f"Generated QR reference {reference} for invoice {inv.invoice_id}")
        self._with_address(
            "SetEsrQR",
            inv.biller_address,
            {
                "eEsrType": int(inv.esr_type),
                "bstrIBAN": re.sub(r"\s+", "", inv.iban or ""),
                "bstrReferenceNumber": reference,
                "bstrCustomerNote": inv.customer_note,
                "lPaymentPeriod": inv.payment_period,
            },
            address_key="pICreditorAddress",
        )

    def set_biller(self) -> None:
        inv = self.invoice
        self._with_address("SetBillerGLN", inv.biller_address, {"bstrGLN": inv.biller_gln})
        self._zsr("SetBillerZSR", inv.biller_zsr, inv.biller_address)

    def set_provider(self) -> None:
        inv = self.invoice
        self._with_address(
            "SetProviderGLN",
            inv.provider_address,
            {
                "bstrGLN": inv.provider_gln,
                "bstrGLNLocation": inv.provider_gln_location or inv.provider_gln,
            },
        )
        self._zsr("SetProviderZSR", inv.provider_zsr, inv.provider_address)

    def set_insurance(self) -> None:
        inv = self.invoice
        if not inv.has_insurer:
            if inv.tiers_mode == TiersMode.PAYANT:
                logger.warning(f"Invoice {inv.invoice_id} is Payant but has no complete insurer")
            return
        self._optional_with_address("SetInsurance", inv.insurance_address, {"bstrGLN": inv.insurance_gln})

    def set_patient(self) -> None:
        inv = self.invoice
        self._with_address(
            "SetPatient",
            inv.patient_address,
            {
                "eSexType": int(inv.patient_sex),
                "eGenderType": int(inv.effective_gender),
                "dBirthdate": wire_date(inv.patient_birthdate),
                "bstrSSN": inv.patient_ssn,
            },
        )

    def set_insured(self) -> None:
        inv = self.invoice
        if inv.insured_address is None:
            return
        self._optional_with_address("SetInsured", inv.insured_address, {"bstrSSN": inv.patient_ssn})

    def set_debtor(self) -> None:
        address, gln = resolve_debtor(self.invoice)
        self._with_address("SetDebitor", address, {"bstrGLN": gln})

    def set_treatment(self) -> None:
        inv = self.invoice
        self._call(
            "SetTreatment",
            {
                "bstrAPID": inv.apid,
                "bstrACID": inv.acid,
                "dDateBegin": wire_date(inv.treatment_date_begin),
                "dDateEnd": wire_date(inv.treatment_date_end),
                "eTreatmentCanton": canton_code(inv.treatment_canton),
                "eTreatmentType": int(inv.treatment_type),
                "eTreatmentReason": int(inv.treatment_reason),
                "dGestationWeek13": "0",
                "dEndOfBirth": "0",
            },
        )

    def add_diagnoses(self) -> None:
        for diagnosis in self.invoice.diagnoses:
            data = self.gateway.call(
                IREQUEST,
                "AddDiagnosis",
                {
                    "pIGeneralInvoiceRequest": self.request,
                    "eDiagnosisType": int(diagnosis.type),
                    "bstrCode": diagnosis.code,
                    "bstrText": diagnosis.text,
                },
            )
            if not AddResult.from_json(data).status:
                logger.warning(f"AddDiagnosis {diagnosis.code} rejected: {self.abort_info()}")

    def add_partners(self) -> None:
        for partner in self.invoice.partners:
            zsr = partner.zsr
            if zsr and not is_valid_zsr(zsr):
                logger.warning(f"Partner {int(partner.type)}: invalid ZSR format '{zsr}', sent without ZSR")
                zsr = ""
            with self.address.borrow(partner.address) as handle:
                data = self.gateway.call(
                    IREQUEST,
                    "AddPartner",
                    {
                        "pIGeneralInvoiceRequest": self.request,
                        "ePartnerType": int(partner.type),
                        "bstrZSR": zsr,
                        "bstrGLN": partner.gln,
                        "bstrReferenceID": "",
                        "pIAddress": handle,
                    },
                )
            if not AddResult.from_json(data).status:
                logger.warning(f"AddPartner type={int(partner.type)} rejected: {self.abort_info()}")

    def set_processing(self) -> None:
        inv = self.invoice
        self._optional(
            "SetProcessing",
            {
                "ePrintPatientInvoiceOnly": int(inv.print_patient_invoice_only),
                "ePrintCopyToGuarantor": int(inv.print_copy_to_guarantor),
                "bstrTrustCenterGLN": inv.trust_center_gln,
            },
        )

    def set_transport(self) -> None:
        inv = self.invoice
        self._call(
            "SetTransport",
            {
                "bstrFromGLN": inv.transport_from or inv.biller_gln,
                "bstrFromPFXFile": "",
                "bstrFromPFXPassword": "",
                "bstrViaGLN": inv.transport_via_gln,
                "bstrToGLN": inv.transport_to or inv.insurance_gln or "",
                "bstrToBinDERFile": "",
            },
        )

    def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Mandatory step: an explicit false status aborts the build."""
        data = self.gateway.call(IREQUEST, method, {"pIGeneralInvoiceRequest": self.request, **body})
        if "pbStatus" in data and not status_of(data):
            raise SumexSessionError(method, self.abort_info())
        return data

    def _optional(self, method: str, body: Dict[str, Any]) -> None:
        try:
            data = self.gateway.call(IREQUEST, method, {"pIGeneralInvoiceRequest": self.request, **body})
        except SumexTimeoutError:
            raise
        except SumexError as exc:
            logger.warning(f"{method} failed (non-fatal): {exc}")
            return
        if "pbStatus" in data and not status_of(data):
            logger.warning(f"{method} rejected (non-fatal): {self.abort_info()}")

    def _with_address(
        self,
        method: str,
        address: InvoiceAddress,
        body: Dict[str, Any],
        *,
        address_key: str = "pIAddress",
    ) -> Dict[str, Any]:
        with self.address.borrow(address) as handle:
            return self._call(method, {**body, address_key: handle})

    def _optional_with_address(self, method: str, address: InvoiceAddress, body: Dict[str, Any]) -> None:
        with self.address.borrow(address) as handle:
            self._optional(method, {**body, "pIAddress": handle})

    def _zsr(self, method: str, zsr: Optional[str], address: InvoiceAddress) -> None:
        if not zsr:
            return
        if not is_valid_zsr(zsr):
            logger.warning(f"Skipping {method}: invalid ZSR format '{zsr}'")
            return
        self._optional_with_address(method, address, {"bstrZSR": zsr})


class SumexInvoiceClient:
    """Client for the Sumex1 generalInvoiceRequestManager."""

    def __init__(
        self,
        gateway: Optional[SumexGateway] = None,
        *,
        lifecycle: Optional[SessionLifecycle] = None,
    ):
        self.gateway = gateway or SumexGateway.for_requests()
        self.lifecycle = lifecycle or SessionLifecycle(self.gateway)

    def close(self) -> None:
        self.gateway.close()

    def __enter__(self) -> SumexInvoiceClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def build_invoice(self, invoice: InvoiceInput, options: Optional[BuildOptions] = None) -> BuildResult:
        """Build one invoice request; never raises for engine or transport failures."""
        options = options or BuildOptions()
        logger.info(f"build_invoice starting: invoice_id={invoice.invoice_id}")

        try:
            session = self.lifecycle.open_request_session()
        except SumexError as exc:
            logger.error(f"Request session creation failed: {exc}")
            return BuildResult.failure(
                str(exc),
                getattr(exc, "abort_info", None),
                state=SessionState.FAILED.value,
            )

        try:
            result = self._run(session, invoice, options)
        except SumexError as exc:
            result = self._failure(session, exc)
        finally:
            self.lifecycle.close(session)

        result.state = session.state.value
        return result

    def _run(self, session: EngineSession, invoice: InvoiceInput, options: BuildOptions) -> BuildResult:
        builder = InvoiceRequestBuilder(self.gateway, session, invoice)
        session.transition(SessionState.POPULATING)
        builder.populate()

        self._finalize(session)
        session.transition(SessionState.FINALIZED)

        generated = self._generate(session, options)
        session.transition(SessionState.GENERATED)

        result = BuildResult(
            success=True,
            xml_file_path=generated.output_file or None,
            xml_content=self._download(generated.output_file, "XML"),
            validation_error=generated.validation_error,
            used_schema=generated.used_schema or None,
            timestamp=generated.timestamp,
        )
        if options.generate_pdf:
            self._print(session, options, result)
        return result

    def _finalize(self, session: EngineSession) -> None:
        data = self.gateway.call(
            IREQUEST,
            "Finalize",
            {"pIGeneralInvoiceRequest": session.request_handle},
        )
        finalized = FinalizeResult.from_json(data)
        logger.info(
            f"Finalize result: status={finalized.status}, round_difference={finalized.round_difference}"
        )
        if not finalized.status:
            raise SumexSessionError("Finalize", self._abort_info(session))

        warnings = self._abort_info(session)
        if warnings and warnings != UNKNOWN_ABORT_INFO:
            logger.warning(f"Post-Finalize warnings: {warnings}")

    def _generate(self, session: EngineSession, options: BuildOptions) -> GetXmlResult:
        data = self.gateway.call_with_empty_body_retry(
            REQUEST_MANAGER,
            "GetXML",
            {
                "pIGeneralInvoiceRequestManager": session.manager_handle,
                "lGenerationAttributes": options.generation_attributes,
                "plTimestamp": 0,
            },
        )
        generated = GetXmlResult.from_json(data)
        if not generated.status:
            abort_info = self._abort_info(session)
            logger.error(f"GetXML FAILED: validation_error={generated.validation_error}, abort={abort_info}")
            raise GenerationError(abort_info, generated.validation_error)

        logger.info(
            f"GetXML OK: file={generated.output_file}, schema={generated.used_schema}, "
            f"validation_error={generated.validation_error}"
        )
        if generated.validation_error:
            logger.warning(f"GetXML produced a document with validation error {generated.validation_error}")
        return generated

    def _print(self, session: EngineSession, options: BuildOptions, result: BuildResult) -> None:
        template = f"(PDF_NOPRINT={options.pdf_path};)" if options.pdf_path else ""
        try:
            data = self.gateway.call(
                REQUEST_MANAGER,
                "Print",
                {
                    "pIGeneralInvoiceRequestManager": session.manager_handle,
                    "bstrPrintTemplate": template,
                    "lGenerationAttributes": options.generation_attributes,
                    "ePrintPreview": int(YesNo.NO),
                    "eAddressRight": int(YesNo.YES),
                    "plTimestamp": result.timestamp or 0,
                },
            )
        except SumexError as exc:
            logger.warning(f"Print failed (non-fatal): {exc}")
            return

        printed = PrintFileResult.from_json(data)
        if not printed.status or not printed.pdf_file:
            logger.warning(f"Print FAILED (non-fatal): abort={self._abort_info(session)}")
            return

        logger.info(f"Print OK: pdf_file={printed.pdf_file}")
        result.pdf_file_path = printed.pdf_file
        result.pdf_content = self._download(printed.pdf_file, "PDF")
        session.transition(SessionState.PRINTED)

    def _download(self, file_path: str, kind: str) -> Optional[bytes]:
        if not file_path:
            return None
        try:
            content = self.gateway.download(file_path)
        except SumexError as exc:
            logger.warning(f"{kind} download failed, path only: {exc}")
            return None
        logger.info(f"{kind} downloaded: {len(content)} bytes")
        return content

    def _abort_info(self, session: EngineSession) -> str:
        return self.gateway.abort_info(REQUEST_MANAGER, session.manager_handle)

    def _failure(self, session: EngineSession, exc: SumexError) -> BuildResult:
        if isinstance(exc, SumexSessionError) and exc.abort_info:
            abort_info = exc.abort_info
        else:
            abort_info = self._abort_info(session)
        session.fail()
        logger.error(f"build_invoice failed: {exc} (abort={abort_info})")
        return BuildResult.failure(
            str(exc),
            abort_info,
            validation_error=getattr(exc, "validation_error", None),
        )

    def load_invoice_xml(self, xml_file_path: str) -> LoadXmlResult:
        """Load an existing request XML for copy / storno processing.

        On success the manager stays alive on the engine and is handed to the
        caller through the returned handles.
        """
        try:
            session = self.lifecycle.open_request_manager()
        except SumexError as exc:
            return LoadXmlResult(success=False, error=str(exc))

        try:
            data = self.gateway.get(
                f"{REQUEST_MANAGER}/LoadXML",
                pIGeneralInvoiceRequestManager=session.manager_handle,
                bstrInputFile=xml_file_path,
            )
            if not status_of(data):
                abort_info = self._abort_info(session)
                session.fail()
                self.lifecycle.close(session)
                return LoadXmlResult(success=False, error=f"LoadXML failed: {abort_info}")
        except SumexError as exc:
            session.fail()
            self.lifecycle.close(session)
            return LoadXmlResult(success=False, error=str(exc))

        self.lifecycle.detach(session)
        logger.info(f"LoadXML OK: {xml_file_path}")
        return LoadXmlResult(
            success=True,
            manager_handle=session.manager_handle,
            request_handle=data.get("pIGeneralInvoiceRequest"),
            result_handle=data.get("pIGeneralInvoiceResult"),
        )

    def request_manager_info(self) -> ModuleInfo:
        session = self.lifecycle.open_request_manager()
        try:
            return self.gateway.module_info(REQUEST_MANAGER, session.manager_handle)
        finally:
            self.lifecycle.close(session)


def build_invoice_request(
    invoice: InvoiceInput,
    options: Optional[BuildOptions] = None,
    *,
    gateway: Optional[SumexGateway] = None,
) -> BuildResult:
    """Build one invoice with a client bound to the configured request engine."""
    if gateway is not None:
        return SumexInvoiceClient(gateway).build_invoice(invoice, options)
    with SumexInvoiceClient() as client:
        return client.build_invoice(invoice, options)
