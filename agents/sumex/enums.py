"""Sumex1 enumeration codes as used on the wire (``e*`` parameters)."""

from enum import IntEnum, IntFlag


class LawType(IntEnum):
    KVG = 0
    UVG = 1
    MVG = 2
    IVG = 3
    VVG = 4


class TiersMode(IntEnum):
    """Who is billed: patient (Garant), insurer (Payant) or settled (Soldant)."""
    GARANT = 0
    PAYANT = 1
    SOLDANT = 2


class SexType(IntEnum):
    MALE = 0
    FEMALE = 1


class GenderType(IntEnum):
    MALE = 0
    FEMALE = 1
    DIVERSE = 2


class SideType(IntEnum):
    NONE = 0
    LEFT = 1
    RIGHT = 2
    BOTH = 3


class TreatmentType(IntEnum):
    AMBULATORY = 0
    STATIONARY = 1


class TreatmentReason(IntEnum):
    DISEASE = 0
    ACCIDENT = 1
    MATERNITY = 2
    PREVENTION = 3
    BIRTH_DEFECT = 4
    UNKNOWN = 5


class DiagnosisType(IntEnum):
    ICD = 0
    CANTONAL = 1
    BY_CONTRACT = 2
    FREE_TEXT = 3
    BIRTH_DEFECT = 4
    ICPC = 5
    DRG = 6


class EsrType(IntEnum):
    QR = 5
    QR_PLUS = 6
    RED_PAYIN_SLIP_QR = 7
    RED_PAYIN_SLIP_QR_PLUS = 8


class RoleType(IntEnum):
    PHYSICIAN = 1
    PHYSIOTHERAPIST = 2
    CHIROPRACTOR = 4
    ERGOTHERAPIST = 8
    NUTRITIONIST = 16
    MIDWIFE = 32
    LOGOTHERAPIST = 64
    HOSPITAL = 128
    PHARMACIST = 256
    DENTIST = 512
    LAB_TECHNICIAN = 1024
    PSYCHOLOGIST = 16384
    NURSING_STAFF = 131072
    OTHER = 4194304


class PlaceType(IntEnum):
    PRACTICE = 1
    HOSPITAL = 2
    LAB = 4
    ASSOCIATION = 8
    COMPANY = 16


class RequestType(IntEnum):
    INVOICE = 0
    REMINDER = 1


class RequestSubtype(IntEnum):
    NORMAL = 0
    COPY = 1
    REFUND = 2
    STORNO = 3


class PartnerType(IntEnum):
    EMPLOYER = 1
    REFERRER = 2
    SERVICE_PROVIDER = 3
    PRIMARY_CLINICIAN = 4
    LEAD_DOCTOR = 5
    ASSISTANT_PHYSICIAN = 6
    SENIOR_PHYSICIAN = 7
    CHIEF_PHYSICIAN = 8
    SURGEON = 9
    ANAESTHETIST = 10
    CONSULTANT_DOCTOR = 11
    INTERNIST = 12
    CO_CARE = 13
    RADIOLOGIST = 14
    NUCLEAR_MEDICINE = 15
    OTHER = 16


class YesNo(IntEnum):
    NO = 0
    YES = 1


class ModusType(IntEnum):
    PRODUCTION = 0
    TEST = 1


class BillingRoleType(IntEnum):
    BOTH = 0
    MT = 1
    TT = 2
    NONE = 3


class MedicalRoleType(IntEnum):
    SELF_EMPLOYED = 0
    EMPLOYEE = 1


class ResponseType(IntEnum):
    PENDING = 1
    REJECTED = 2
    ACCEPTED = 3


class StatusType(IntEnum):
    UNKNOWN = 2
    AMBIGUOUS = 3
    RECEIVED = 4
    FROZEN = 5
    PROCESSED = 6
    GRANTED = 7
    CANCELED = 8
    CLAIMED = 9
    REIMBURSED = 10


class GenerationAttribute(IntFlag):
    """Bit flags for GetXML / Print."""
    NONE = 0
    EXCLUDE_ESR_IN_PRINT = 1
    EXCLUDE_CREDITOR_IN_PRINT = 2
    EXCLUDE_CREDITOR_NAME_IN_PRINT = 4
    EXCLUDE_DEBITOR_IN_PRINT = 32
    EXCLUDE_DEBITOR_NAME_IN_PRINT = 64
    EXCLUDE_ACCOUNTING_IN_PRINT = 128
    EXCLUDE_QR_CODE_IN_PRINT = 256
    EXCLUDE_AMOUNT_IN_PRINT = 512
    EXCLUDE_REMARKS_IN_PRINT = 1024
    INCLUDE_GEOMETRY_IN_PRINT = 8192
    EXCLUDE_QR_PAYMENT_MARKING_IN_PRINT = 16384
    GENERATE_XML_WITHOUT_DOCUMENTS = 65536
    GENERATE_XML_WITHOUT_SIGNATURE = 131072
    GENERATE_XML_WITHOUT_ENCRYPTION = 262144
    GENERATE_DOWNGRADE_TO_V450 = 2097152


CANTON_CODES: dict[str, int] = {
    "AG": 1, "AI": 2, "AR": 3, "BE": 4, "BL": 5, "BS": 6, "FR": 7, "GE": 8, "GL": 9,
    "GR": 10, "JU": 11, "LU": 12, "NE": 13, "NW": 14, "OW": 15, "SG": 16, "SH": 17,
    "SO": 18, "SZ": 19, "TG": 20, "TI": 21, "UR": 22, "VD": 23, "VS": 24, "ZG": 25,
    "ZH": 26,
}


def canton_code(canton: str | None) -> int:
    """Map a canton abbreviation to the engine code; unknown cantons map to 0."""
    return CANTON_CODES.get((canton or "").strip().upper(), 0)
