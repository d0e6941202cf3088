"""Fixtures for the Sumex1 client tests.

The engine is simulated by ``FakeEngine`` behind ``httpx.MockTransport``;
every request is recorded so tests can assert on call order and bodies.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Callable

import httpx
import pytest

from agents.sumex.dto import InvoiceAddress, InvoiceInput
from agents.sumex.enums import LawType, PlaceType, RoleType, SexType, TiersMode
from backend.clients.sumex.gateway import SumexGateway

REQUEST_BASE = "http://sumex.test/generalInvoiceRequestManagerServer500"
RESPONSE_BASE = "http://sumex.test/generalInvoiceResponseManagerServer500"

XML_FILE = "/generalInvoiceRequestManagerServer500/files/invoice.xml"
PDF_FILE = "/generalInvoiceRequestManagerServer500/files/invoice.pdf"
RESPONSE_PDF_FILE = "/generalInvoiceResponseManagerServer500/files/response.pdf"

MANAGER = 101
REQUEST = 202
ADDRESS = 303
SERVICE_EX_INPUT = 404
RESPONSE_MANAGER = 601
RESPONSE = 602

DEFAULT_ROUTES: dict[str, Any] = {
    "IGeneralInvoiceRequestManager/GetCreateGeneralInvoiceRequestManager": {
        "pIGeneralInvoiceRequestManager": MANAGER
    },
    "IGeneralInvoiceRequestManager/GetGeneralInvoiceRequest": {"pIGeneralInvoiceRequest": REQUEST},
    "IGeneralInvoiceRequest/GetCreateAddress": {"pIAddress": ADDRESS},
    "IGeneralInvoiceRequest/GetCreateServiceExInput": {"pIServiceExInput": SERVICE_EX_INPUT},
    "IGeneralInvoiceRequestManager/GetAbortInfo": {"pbstrAbortInfo": ""},
    "IGeneralInvoiceRequest/Finalize": {"pbStatus": True, "pdRoundDifference": 0.0},
    "IGeneralInvoiceRequestManager/GetXML": {
        "pbStatus": True,
        "pbstrOutputFile": XML_FILE,
        "plValidationError": 0,
        "plTimestamp": 1700000000,
        "pbstrUsedSchema": "generalInvoiceRequest_500.xsd",
        "pIGeneralInvoiceResult": 505,
    },
    "IGeneralInvoiceRequestManager/Print": {
        "pbStatus": True,
        "pbstrPDFFile": PDF_FILE,
        "plTimestamp": 1700000000,
    },
    "files/invoice.xml": b"<invoice:request/>",
    "files/invoice.pdf": b"%PDF-1.7 invoice",
    "IGeneralInvoiceResponseManager/GetCreateGeneralInvoiceResponseManager": {
        "pIGeneralInvoiceResponseManager": RESPONSE_MANAGER
    },
    "IGeneralInvoiceResponseManager/LoadXML": {"pIGeneralInvoiceResponse": RESPONSE, "pbStatus": True},
    "IGeneralInvoiceResponseManager/GetAbortInfo": {"pbstrAbortInfo": ""},
    "IGeneralInvoiceResponseManager/Print": {"pbStatus": True, "pbstrPDFFile": RESPONSE_PDF_FILE},
    "files/response.pdf": b"%PDF-1.7 response",
    "IGeneralInvoiceResponse/GetFirstNotification": {"pbStatus": False},
    "IGeneralInvoiceResponse/GetNextNotification": {"pbStatus": False},
}


@dataclass
class Call:
    method: str
    name: str
    params: dict[str, str]
    body: Any
    content: bytes
    content_type: str


class FakeEngine:
    """Route table keyed by ``<Interface>/<Method>``.

    A route value may be a dict (JSON 200), bytes (raw 200 body), an
    ``httpx.Response``, an exception instance (raised) or a callable taking
    the recorded ``Call``. ``queue`` answers successive requests in order and
    then falls back to the route.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = dict(DEFAULT_ROUTES)
        self.queues: dict[str, list[Any]] = {}
        self.calls: list[Call] = []

    def on(self, name: str, answer: Any) -> None:
        self.routes[name] = answer

    def queue(self, name: str, *answers: Any) -> None:
        self.queues.setdefault(name, []).extend(answers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        name = "/".join(request.url.path.split("/")[-2:])
        content_type = request.headers.get("content-type", "")
        body = None
        if request.content and content_type.startswith("application/json"):
            body = json.loads(request.content)
        call = Call(
            method=request.method,
            name=name,
            params=dict(request.url.params),
            body=body,
            content=request.content,
            content_type=content_type,
        )
        self.calls.append(call)

        pending = self.queues.get(name)
        answer = pending.pop(0) if pending else self.routes.get(name, {})
        if callable(answer) and not isinstance(answer, httpx.Response):
            answer = answer(call)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        if isinstance(answer, bytes):
            return httpx.Response(200, content=answer)
        return httpx.Response(200, json=answer)

    def names(self, prefix: str = "") -> list[str]:
        return [c.name for c in self.calls if c.name.startswith(prefix)]

    def methods(self) -> list[str]:
        return [c.name.split("/", 1)[1] for c in self.calls]

    def find(self, name: str) -> list[Call]:
        return [c for c in self.calls if c.name == name]

    def one(self, name: str) -> Call:
        found = self.find(name)
        assert len(found) == 1, f"expected one {name}, got {len(found)}"
        return found[0]


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


def _gateway(base: str, engine: FakeEngine) -> SumexGateway:
    return SumexGateway(
        base,
        timeout=5.0,
        generate_timeout=5.0,
        empty_body_retries=1,
        empty_body_retry_delay=1.0,
        transport=httpx.MockTransport(engine.handler),
    )


@pytest.fixture
def request_gateway(engine: FakeEngine):
    gateway = _gateway(REQUEST_BASE, engine)
    yield gateway
    gateway.close()


@pytest.fixture
def response_gateway(engine: FakeEngine):
    gateway = _gateway(RESPONSE_BASE, engine)
    yield gateway
    gateway.close()


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr("backend.clients.sumex.gateway.time.sleep", recorded.append)
    return recorded


PATIENT = InvoiceAddress(
    family_name="Muster",
    given_name="Anna",
    salutation="Frau",
    street="Bahnhofstrasse 1",
    zip="8001",
    city="Zürich",
    state_code="ZH",
    country_code="CH",
)

BILLER = InvoiceAddress(
    company_name="Aesthetics Clinic XT SA",
    department="Dermatologie",
    street="Rue du Rhône 10",
    zip="1204",
    city="Genève",
    state_code="GE",
    country_code="CH",
    email="billing@clinic.example",
    phone="0223456789",
)

INSURER = InvoiceAddress(
    company_name="Helvetia Kranken AG",
    street="Postfach",
    zip="3000",
    city="Bern",
    state_code="BE",
    country_code="CH",
)

BILLER_GLN = "7601000000001"
PROVIDER_GLN = "7601000000002"
INSURER_GLN = "7601003000001"


@pytest.fixture
def make_invoice() -> Callable[..., InvoiceInput]:
    base = InvoiceInput(
        invoice_id="INV-2024-0042",
        invoice_date=date(2024, 5, 2),
        role_type=RoleType.PHYSICIAN,
        place_type=PlaceType.PRACTICE,
        tiers_mode=TiersMode.GARANT,
        law_type=LawType.KVG,
        iban="CH93 0076 2011 6238 5295 7",
        biller_gln=BILLER_GLN,
        biller_address=BILLER,
        provider_gln=PROVIDER_GLN,
        provider_address=BILLER,
        patient_sex=SexType.FEMALE,
        patient_birthdate=date(1985, 3, 14),
        patient_address=PATIENT,
        treatment_canton="GE",
        treatment_date_begin=date(2024, 4, 15),
        treatment_date_end=date(2024, 4, 15),
    )

    def factory(**overrides: Any) -> InvoiceInput:
        return replace(base, **overrides)

    return factory
