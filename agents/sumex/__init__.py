"""Sumex1 Rechnungsaufbau (generalInvoiceRequest_500) und Antwortauswertung (generalInvoiceResponse_500)."""

from .address import AddressSlot, AddressSlotBusyError, configure_address
from .dto import (
    BuildOptions,
    BuildResult,
    Diagnosis,
    InvoiceAddress,
    InvoiceInput,
    LoadXmlResult,
    Partner,
    ServiceExLine,
    ServiceLine,
    map_law_type,
    map_sex,
    map_tiers_mode,
)
from .invoice import (
    InvoiceRequestBuilder,
    SumexInvoiceClient,
    build_invoice_request,
    is_valid_zsr,
    resolve_debtor,
)
from .reference import generate_reference, is_valid_reference, mod10_check_digit
from .response import (
    AcceptDetails,
    InvoiceRef,
    Notification,
    PendingDetails,
    PrintResult,
    RejectDetails,
    ResponseInterpretation,
    ResponseInterpreter,
    iter_notifications,
    parse_invoice_response,
    print_invoice_response,
)
from .session import EngineSession, SessionLifecycle, SessionState
from .tariff import (
    EXTENDED_TARIFF_TYPES,
    ServiceExContext,
    TariffRouter,
    compute_extended_amount,
    is_extended_tariff,
    partition_services,
)

__all__ = [
    "AddressSlot",
    "AddressSlotBusyError",
    "configure_address",
    "BuildOptions",
    "BuildResult",
    "Diagnosis",
    "InvoiceAddress",
    "InvoiceInput",
    "LoadXmlResult",
    "Partner",
    "ServiceExLine",
    "ServiceLine",
    "map_law_type",
    "map_sex",
    "map_tiers_mode",
    "InvoiceRequestBuilder",
    "SumexInvoiceClient",
    "build_invoice_request",
    "is_valid_zsr",
    "resolve_debtor",
    "generate_reference",
    "is_valid_reference",
    "mod10_check_digit",
    "AcceptDetails",
    "InvoiceRef",
    "Notification",
    "PendingDetails",
    "PrintResult",
    "RejectDetails",
    "ResponseInterpretation",
    "ResponseInterpreter",
    "iter_notifications",
    "parse_invoice_response",
    "print_invoice_response",
    "EngineSession",
    "SessionLifecycle",
    "SessionState",
    "EXTENDED_TARIFF_TYPES",
    "ServiceExContext",
    "TariffRouter",
    "compute_extended_amount",
    "is_extended_tariff",
    "partition_services",
]
