"""IAddress handling.

The request session owns exactly one IAddress handle. Every address-bearing
call (creditor, biller, provider, patient, partner, ...) reconfigures that
handle right before handing it to the engine, so the handle behaves like a
single-slot scratch buffer rather than a per-party object.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from backend.clients.sumex.gateway import SumexError, SumexGateway
from backend.core.logging import get_logger

from .dto import InvoiceAddress

logger = get_logger(__name__)

IADDRESS = "IAddress"


class AddressSlotBusyError(SumexError):
    """Raised when the shared address handle is borrowed while already in use."""


def configure_address(gateway: SumexGateway, handle: int, address: InvoiceAddress) -> None:
    """Reset the handle and load ``address`` into it.

    Call order: Initialize, SetCompany *or* SetPerson, SetPostal, then
    SetOnline / AddPhone when contact data is present.
    """
    gateway.call(IADDRESS, "Initialize", {"pIAddress": handle})

    if address.is_company:
        gateway.call(
            IADDRESS,
            "SetCompany",
            {
                "pIAddress": handle,
                "bstrCompanyName": address.company_name,
                "bstrDepartment": address.department or "",
                "bstrSubaddressing": address.subaddressing or "",
            },
        )
    elif address.family_name:
        gateway.call(
            IADDRESS,
            "SetPerson",
            {
                "pIAddress": handle,
                "bstrFamilyname": address.family_name,
                "bstrGivenname": address.given_name or "",
                "bstrSalutation": address.salutation or "",
                "bstrTitle": address.title or "",
                "bstrSubaddressing": address.subaddressing or "",
            },
        )
    else:
        logger.warning("Address has neither company nor family name; only postal data is set")

    gateway.call(
        IADDRESS,
        "SetPostal",
        {
            "pIAddress": handle,
            "bstrStreet": address.street or "",
            "bstrPoBox": address.po_box or "",
            "bstrZip": address.zip or "",
            "bstrCity": address.city or "",
            "bstrStateCode": address.state_code or "",
            "bstrCountry": address.country or "",
            "bstrCountryCode": address.country_code or "",
        },
    )

    if address.email or address.url:
        gateway.call(
            IADDRESS,
            "SetOnline",
            {
                "pIAddress": handle,
                "bstrEMail": address.email or "",
                "bstrUrl": address.url or "",
            },
        )

    if address.phone:
        gateway.call(
            IADDRESS,
            "AddPhone",
            {
                "pIAddress": handle,
                "bstrNumber": address.phone,
                "bstrLocalCode": address.phone_local_code or "",
                "bstrInternationalCode": "",
                "bstrExt": "",
            },
        )


class AddressSlot:
    """Exclusive access to the session's IAddress handle.

    ``borrow`` configures the handle and yields it for exactly one consuming
    call. The content is not meant to survive the ``with`` block.
    """

    def __init__(self, gateway: SumexGateway, handle: int) -> None:
        self._gateway = gateway
        self._handle = handle
        self._borrowed = False

    @property
    def handle(self) -> int:
        return self._handle

    @property
    def borrowed(self) -> bool:
        return self._borrowed

    @contextmanager
    def borrow(self, address: InvoiceAddress) -> Iterator[int]:
        if self._borrowed:
            raise AddressSlotBusyError("address handle is already borrowed")
        self._borrowed = True
        try:
            configure_address(self._gateway, self._handle, address)
            yield self._handle
        finally:
            self._borrowed = False
