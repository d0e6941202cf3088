"""Datentransferobjekte für generalInvoiceRequest_500 (Sumex1).

Eingaben sind unveränderlich (``frozen``) und Sammlungen werden als Tupel
abgelegt, damit ein einmal aufgebautes ``InvoiceInput`` während einer Session
nicht mehr verändert werden kann. Mengen und Faktoren werden wie im
EN16931-Modul als ``Decimal`` geführt.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .enums import (
    DiagnosisType,
    EsrType,
    GenderType,
    LawType,
    ModusType,
    PartnerType,
    PlaceType,
    RequestSubtype,
    RequestType,
    RoleType,
    SexType,
    SideType,
    TiersMode,
    TreatmentReason,
    TreatmentType,
    YesNo,
)


DecimalLike = Decimal | str | int | float
DateLike = date | datetime | str

# Engine convention for "no date"
NO_DATE = "0"


def _to_decimal(value: DecimalLike) -> Decimal:
    """Konvertiere Eingaben deterministisch in ``Decimal``."""

    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, str, float)):
        return Decimal(str(value))
    raise TypeError(f"Unsupported decimal input: {type(value)!r}")


def quantize_money(amount: DecimalLike) -> Decimal:
    """Rundet Beträge auf zwei Nachkommastellen (ROUND_HALF_UP)."""

    return _to_decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def wire_date(value: Optional[DateLike]) -> str:
    if value is None or value == "":
        return NO_DATE
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def wire_number(value: Optional[DecimalLike], default: float = 0.0) -> float:
    if value is None:
        return default
    return float(_to_decimal(value))


@dataclass(frozen=True, slots=True)
class InvoiceAddress:
    """Logical postal/contact record; company and person fields are alternatives."""

    street: str = ""
    zip: str = ""
    city: str = ""
    state_code: str = ""
    family_name: Optional[str] = None
    given_name: Optional[str] = None
    salutation: Optional[str] = None
    title: Optional[str] = None
    subaddressing: Optional[str] = None
    company_name: Optional[str] = None
    department: Optional[str] = None
    po_box: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    email: Optional[str] = None
    url: Optional[str] = None
    phone: Optional[str] = None
    phone_local_code: Optional[str] = None

    @property
    def is_company(self) -> bool:
        return bool(self.company_name)


@dataclass(frozen=True, slots=True)
class ServiceLine:
    """Simple-shaped service line; tariff ``001`` is promoted to the extended path."""

    tariff_type: str
    code: str
    quantity: Decimal
    date_begin: DateLike
    provider_gln: str
    responsible_gln: str
    reference_code: str = ""
    session_number: int = 1
    group_size: int = 1
    date_end: Optional[DateLike] = None
    side: SideType = SideType.NONE
    service_name: str = ""
    unit: Decimal = Decimal("0")
    unit_factor: Decimal = Decimal("1")
    external_factor: Decimal = Decimal("1")
    amount: Decimal = Decimal("0")
    vat_rate: Decimal = Decimal("0")
    remark: str = ""
    section_code: str = ""
    ignore_validate: YesNo = YesNo.YES
    service_attributes: int = 0

    def __post_init__(self) -> None:
        for name in ("quantity", "unit", "unit_factor", "external_factor", "amount", "vat_rate"):
            object.__setattr__(self, name, _to_decimal(getattr(self, name)))


@dataclass(frozen=True, slots=True)
class ServiceExLine:
    """Extended-shaped service line with medical (MT) and technical (TT) parts."""

    tariff_type: str
    code: str
    quantity: Decimal
    date_begin: DateLike
    session_number: int = 1
    reference_code: str = ""
    group_size: int = 1
    date_end: Optional[DateLike] = None
    side: SideType = SideType.NONE
    service_name: str = ""
    unit_mt: Decimal = Decimal("0")
    unit_factor_mt: Decimal = Decimal("1")
    external_factor_mt: Decimal = Decimal("1")
    amount_mt: Decimal = Decimal("0")
    unit_tt: Decimal = Decimal("0")
    unit_factor_tt: Decimal = Decimal("1")
    external_factor_tt: Decimal = Decimal("1")
    amount_tt: Decimal = Decimal("0")
    amount_asymmetric: Decimal = Decimal("0")
    vat_rate: Decimal = Decimal("0")
    remark: str = ""
    ignore_validate: YesNo = YesNo.YES
    service_attributes: int = 0

    def __post_init__(self) -> None:
        for name in (
            "quantity",
            "unit_mt",
            "unit_factor_mt",
            "external_factor_mt",
            "amount_mt",
            "unit_tt",
            "unit_factor_tt",
            "external_factor_tt",
            "amount_tt",
            "amount_asymmetric",
            "vat_rate",
        ):
            object.__setattr__(self, name, _to_decimal(getattr(self, name)))


@dataclass(frozen=True, slots=True)
class Diagnosis:
    type: DiagnosisType
    code: str
    text: str = ""


@dataclass(frozen=True, slots=True)
class Partner:
    type: PartnerType
    address: InvoiceAddress
    gln: str = ""
    zsr: str = ""


@dataclass(frozen=True, slots=True)
class InvoiceInput:
    invoice_id: str
    invoice_date: DateLike
    role_type: RoleType
    place_type: PlaceType
    tiers_mode: TiersMode
    law_type: LawType
    iban: str
    biller_gln: str
    biller_address: InvoiceAddress
    provider_gln: str
    provider_address: InvoiceAddress
    patient_sex: SexType
    patient_birthdate: DateLike
    patient_address: InvoiceAddress
    treatment_canton: str
    treatment_date_begin: DateLike
    treatment_date_end: DateLike

    language: int = 1
    modus: ModusType = ModusType.PRODUCTION
    request_type: RequestType = RequestType.INVOICE
    request_subtype: RequestSubtype = RequestSubtype.NORMAL
    remark: str = ""
    invoice_timestamp: int = 0

    vat_number: str = ""
    amount_prepaid: Decimal = Decimal("0")

    credit_id: Optional[str] = None
    credit_date: Optional[DateLike] = None
    credit_timestamp: int = 0

    reminder_level: int = 0
    reminder_text: Optional[str] = None
    reminder_date: Optional[DateLike] = None
    reminder_timestamp: int = 0
    reminder_amount: Decimal = Decimal("0")

    case_date: Optional[DateLike] = None
    case_id: str = ""
    insured_id: str = ""

    esr_type: EsrType = EsrType.QR
    esr_reference: Optional[str] = None
    customer_note: str = ""
    payment_period: int = 30

    biller_zsr: Optional[str] = None
    provider_gln_location: Optional[str] = None
    provider_zsr: Optional[str] = None

    insurance_gln: Optional[str] = None
    insurance_address: Optional[InvoiceAddress] = None

    patient_gender: Optional[GenderType] = None
    patient_ssn: str = ""

    insured_address: Optional[InvoiceAddress] = None
    guarantor_address: Optional[InvoiceAddress] = None
    debtor_address: Optional[InvoiceAddress] = None
    debtor_gln: Optional[str] = None

    treatment_type: TreatmentType = TreatmentType.AMBULATORY
    treatment_reason: TreatmentReason = TreatmentReason.DISEASE
    apid: str = ""
    acid: str = ""

    diagnoses: tuple[Diagnosis, ...] = ()
    partners: tuple[Partner, ...] = ()
    services: tuple[ServiceLine, ...] = ()
    services_ex: tuple[ServiceExLine, ...] = ()

    software_package: Optional[str] = None
    software_version: Optional[int] = None
    software_id: Optional[int] = None
    software_copyright: Optional[str] = None

    transport_from: Optional[str] = None
    transport_to: Optional[str] = None
    transport_via_gln: str = ""

    print_patient_invoice_only: YesNo = YesNo.NO
    print_copy_to_guarantor: YesNo = YesNo.NO
    trust_center_gln: str = ""

    def __post_init__(self) -> None:
        if not self.invoice_id:
            raise ValueError("invoice_id is required")
        for name in ("amount_prepaid", "reminder_amount"):
            object.__setattr__(self, name, _to_decimal(getattr(self, name)))
        for name in ("diagnoses", "partners", "services", "services_ex"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def has_insurer(self) -> bool:
        return bool(self.insurance_gln) and self.insurance_address is not None

    @property
    def effective_gender(self) -> GenderType:
        if self.patient_gender is not None:
            return self.patient_gender
        return GenderType.MALE if self.patient_sex == SexType.MALE else GenderType.FEMALE

    @property
    def service_count(self) -> int:
        return len(self.services) + len(self.services_ex)


@dataclass(frozen=True, slots=True)
class BuildOptions:
    generate_pdf: bool = False
    pdf_path: Optional[str] = None
    generation_attributes: int = 0


@dataclass
class BuildResult:
    success: bool
    xml_file_path: Optional[str] = None
    xml_content: Optional[bytes] = None
    pdf_file_path: Optional[str] = None
    pdf_content: Optional[bytes] = None
    validation_error: Optional[int] = None
    used_schema: Optional[str] = None
    timestamp: Optional[int] = None
    state: Optional[str] = None
    error: Optional[str] = None
    abort_info: Optional[str] = None

    @classmethod
    def failure(
        cls,
        error: str,
        abort_info: Optional[str] = None,
        *,
        state: Optional[str] = None,
        validation_error: Optional[int] = None,
    ) -> BuildResult:
        return cls(
            success=False,
            error=error,
            abort_info=abort_info or None,
            state=state,
            validation_error=validation_error,
        )


@dataclass
class LoadXmlResult:
    success: bool
    manager_handle: Optional[int] = None
    request_handle: Optional[int] = None
    result_handle: Optional[int] = None
    error: Optional[str] = None


def map_law_type(law: str) -> LawType:
    """Map a Swiss law abbreviation to ``LawType``; unknown values fall back to KVG."""
    try:
        return LawType[(law or "").strip().upper()]
    except KeyError:
        return LawType.KVG


_TIERS_BY_CODE = {
    "TG": TiersMode.GARANT,
    "TP": TiersMode.PAYANT,
    "TS": TiersMode.SOLDANT,
}


def map_tiers_mode(billing: str) -> TiersMode:
    """Map TG/TP/TS billing codes to ``TiersMode``; default is Garant."""
    return _TIERS_BY_CODE.get((billing or "").strip().upper(), TiersMode.GARANT)


def map_sex(sex: str) -> SexType:
    return SexType.FEMALE if (sex or "").strip().lower() == "female" else SexType.MALE
