"""Tariff routing for service lines.

Lines whose tariff type requires the extended schema (TARDOC, ``001``) are
registered through ``AddServiceEx`` against an ``IServiceExInput`` context;
every other line goes through ``AddService``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Tuple

from backend.clients.sumex.dto import AddResult
from backend.clients.sumex.gateway import SumexGateway, SumexSessionError, SumexTransportError
from backend.core.logging import get_logger

from .dto import (
    DecimalLike,
    InvoiceInput,
    ServiceExLine,
    ServiceLine,
    _to_decimal,
    quantize_money,
    wire_date,
    wire_number,
)
from .enums import BillingRoleType, MedicalRoleType, canton_code

logger = get_logger(__name__)

IREQUEST = "IGeneralInvoiceRequest"
ISERVICE_EX_INPUT = "IServiceExInput"

EXTENDED_TARIFF_TYPES = frozenset({"001"})

# Internal scaling is fixed by the engine for both MT and TT
INTERNAL_SCALING_FACTOR = Decimal("1")


def is_extended_tariff(tariff_type: str) -> bool:
    return (tariff_type or "").strip() in EXTENDED_TARIFF_TYPES


def partition_services(
    services: Iterable[ServiceLine],
) -> Tuple[List[ServiceLine], List[ServiceLine]]:
    """Split lines into (simple, extended) while keeping their input order."""
    simple: List[ServiceLine] = []
    extended: List[ServiceLine] = []
    for line in services:
        (extended if is_extended_tariff(line.tariff_type) else simple).append(line)
    return simple, extended


def compute_extended_amount(
    quantity: DecimalLike,
    unit: DecimalLike,
    unit_factor: DecimalLike,
    external_factor: DecimalLike,
) -> Decimal:
    """quantity × unit × unitFactor × internalScaling × externalFactor, 2 dp."""
    return quantize_money(
        _to_decimal(quantity)
        * _to_decimal(unit)
        * _to_decimal(unit_factor)
        * INTERNAL_SCALING_FACTOR
        * _to_decimal(external_factor)
    )


def promote_to_extended(line: ServiceLine) -> ServiceExLine:
    """Express a simple-shaped extended-tariff line as a medical (MT) only line."""
    amount = compute_extended_amount(line.quantity, line.unit, line.unit_factor, line.external_factor)
    return ServiceExLine(
        tariff_type=line.tariff_type,
        code=line.code,
        quantity=line.quantity,
        date_begin=line.date_begin,
        session_number=line.session_number,
        reference_code=line.reference_code,
        group_size=line.group_size,
        date_end=line.date_end,
        side=line.side,
        service_name=line.service_name,
        unit_mt=line.unit,
        unit_factor_mt=line.unit_factor,
        external_factor_mt=line.external_factor,
        amount_mt=amount,
        amount_asymmetric=amount,
        vat_rate=line.vat_rate,
        remark=line.remark,
        ignore_validate=line.ignore_validate,
        service_attributes=line.service_attributes,
    )


class ServiceExContext:
    """One ``IServiceExInput`` handle, initialised exactly once per session."""

    def __init__(self, gateway: SumexGateway, handle: int, tariff_type: str) -> None:
        self._gateway = gateway
        self.handle = handle
        self.tariff_type = tariff_type
        self._initialized = False

    @classmethod
    def create(cls, gateway: SumexGateway, request_handle: int, tariff_type: str) -> ServiceExContext:
        data = gateway.get(
            f"{IREQUEST}/GetCreateServiceExInput",
            pIGeneralInvoiceRequest=request_handle,
            bstrTariffType=tariff_type,
        )
        handle = data.get("pIServiceExInput")
        if handle is None:
            raise SumexTransportError("GetCreateServiceExInput returned no handle")
        return cls(gateway, int(handle), tariff_type)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, invoice: InvoiceInput) -> None:
        """Load physician, patient and treatment context."""
        if self._initialized:
            raise SumexSessionError("IServiceExInput.Initialize", "context already initialized")

        handle = self.handle
        self._gateway.call(ISERVICE_EX_INPUT, "Initialize", {"pIServiceExInput": handle})
        self._gateway.call(
            ISERVICE_EX_INPUT,
            "SetPhysician",
            {
                "pIServiceExInput": handle,
                "eMedicalRole": int(MedicalRoleType.SELF_EMPLOYED),
                "eBillingRole": int(BillingRoleType.BOTH),
                "bstrProviderGLN": invoice.provider_gln,
                "bstrResponsibleGLN": invoice.provider_gln,
                "bstrMedicalSectionCode": "",
            },
        )
        self._gateway.call(
            ISERVICE_EX_INPUT,
            "SetPatient",
            {
                "pIServiceExInput": handle,
                "dBirthdate": wire_date(invoice.patient_birthdate),
                "eSex": int(invoice.patient_sex),
            },
        )
        canton = canton_code(invoice.treatment_canton)
        self._gateway.call(
            ISERVICE_EX_INPUT,
            "SetTreatment",
            {
                "pIServiceExInput": handle,
                "eCanton": canton,
                "eLaw": int(invoice.law_type),
                "eTreatmentType": int(invoice.treatment_type),
                "bstrGLNSection": "",
            },
        )
        self._initialized = True
        logger.info(
            f"IServiceExInput initialized: tariff={self.tariff_type}, "
            f"canton={invoice.treatment_canton}({canton}), law={int(invoice.law_type)}"
        )


@dataclass
class RegistrationReport:
    simple_registered: int = 0
    extended_registered: int = 0
    rejected: List[str] = field(default_factory=list)

    @property
    def total_registered(self) -> int:
        return self.simple_registered + self.extended_registered


class TariffRouter:
    """Registers every service line of an invoice through the matching path."""

    def __init__(
        self,
        gateway: SumexGateway,
        request_handle: int,
        abort_info: Callable[[], str],
    ) -> None:
        self._gateway = gateway
        self._request = request_handle
        self._abort_info = abort_info
        self._contexts: Dict[str, ServiceExContext] = {}

    @property
    def contexts(self) -> Dict[str, ServiceExContext]:
        return dict(self._contexts)

    def register_all(self, invoice: InvoiceInput) -> RegistrationReport:
        report = RegistrationReport()
        simple, extended = partition_services(invoice.services)
        logger.info(
            f"Services: {len(invoice.services)} total, {len(simple)} simple, "
            f"{len(extended)} extended, {len(invoice.services_ex)} explicit extended"
        )

        for line in simple:
            self._add_service(line, report)

        for line in extended:
            self._add_service_ex(self._context_for(line.tariff_type, invoice), promote_to_extended(line), report)

        for line in invoice.services_ex:
            self._add_service_ex(self._context_for(line.tariff_type, invoice), line, report)

        return report

    def _context_for(self, tariff_type: str, invoice: InvoiceInput) -> ServiceExContext:
        context = self._contexts.get(tariff_type)
        if context is None:
            context = ServiceExContext.create(self._gateway, self._request, tariff_type)
            context.initialize(invoice)
            self._contexts[tariff_type] = context
        return context

    def _add_service(self, line: ServiceLine, report: RegistrationReport) -> None:
        data = self._gateway.call(
            IREQUEST,
            "AddService",
            {
                "pIGeneralInvoiceRequest": self._request,
                "bstrTariffType": line.tariff_type,
                "bstrCode": line.code,
                "bstrReferenceCode": line.reference_code,
                "dQuantity": wire_number(line.quantity),
                "lSessionNumber": line.session_number,
                "lGroupSize": line.group_size,
                "dDateBegin": wire_date(line.date_begin),
                "dDateEnd": wire_date(line.date_end),
                "bstrProviderGLN": line.provider_gln,
                "bstrResponsibleGLN": line.responsible_gln,
                "eSide": int(line.side),
                "bstrServiceName": line.service_name,
                "dUnit": wire_number(line.unit),
                "dUnitFactor": wire_number(line.unit_factor),
                "dExternalFactor": wire_number(line.external_factor),
                "dAmount": wire_number(line.amount),
                "dVatRate": wire_number(line.vat_rate),
                "bstrRemark": line.remark,
                "bstrSectionCode": line.section_code,
                "eIgnoreValidate": int(line.ignore_validate),
                "lServiceAttributes": line.service_attributes,
            },
        )
        if AddResult.from_json(data).status:
            report.simple_registered += 1
            return
        self._reject("AddService", line.code, report)

    def _add_service_ex(
        self,
        context: ServiceExContext,
        line: ServiceExLine,
        report: RegistrationReport,
    ) -> None:
        amount_mt = compute_extended_amount(
            line.quantity, line.unit_mt, line.unit_factor_mt, line.external_factor_mt
        )
        amount_tt = compute_extended_amount(
            line.quantity, line.unit_tt, line.unit_factor_tt, line.external_factor_tt
        )
        logger.info(
            f"AddServiceEx {line.code}: qty={line.quantity} unitMT={line.unit_mt} "
            f"factor={line.unit_factor_mt} ext={line.external_factor_mt} => amountMT={amount_mt} "
            f"(passed amount={line.amount_mt}), amountTT={amount_tt}"
        )
        data = self._gateway.call(
            IREQUEST,
            "AddServiceEx",
            {
                "pIGeneralInvoiceRequest": self._request,
                "pIServiceExInput": context.handle,
                "bstrTariffType": line.tariff_type,
                "bstrCode": line.code,
                "bstrReferenceCode": line.reference_code,
                "dQuantity": wire_number(line.quantity),
                "lSessionNumber": line.session_number,
                "lGroupSize": line.group_size,
                "dDateBegin": wire_date(line.date_begin),
                "dDateEnd": wire_date(line.date_end),
                "eSide": int(line.side),
                "bstrServiceName": line.service_name,
                "dUnitMT": wire_number(line.unit_mt),
                "dUnitFactorMT": wire_number(line.unit_factor_mt),
                "dUnitInternalScalingFactorMT": wire_number(INTERNAL_SCALING_FACTOR),
                "dUnitExternalScalingFactorMT": wire_number(line.external_factor_mt),
                "dAmountMT": wire_number(amount_mt),
                "dUnitTT": wire_number(line.unit_tt),
                "dUnitFactorTT": wire_number(line.unit_factor_tt),
                "dUnitInternalScalingFactorTT": wire_number(INTERNAL_SCALING_FACTOR),
                "dUnitExternalScalingFactorTT": wire_number(line.external_factor_tt),
                "dAmountTT": wire_number(amount_tt),
                "dAmount": wire_number(line.amount_asymmetric),
                "dVatRate": wire_number(line.vat_rate),
                "bstrRemark": line.remark,
                "eIgnoreValidate": int(line.ignore_validate),
                "lServiceAttributes": line.service_attributes,
            },
        )
        if AddResult.from_json(data).status:
            report.extended_registered += 1
            return
        self._reject("AddServiceEx", line.code, report)

    def _reject(self, method: str, code: str, report: RegistrationReport) -> None:
        abort_info = self._abort_info()
        report.rejected.append(code)
        logger.warning(f"{method} {code} rejected: {abort_info}")
