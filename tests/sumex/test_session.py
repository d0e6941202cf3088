from datetime import UTC, datetime, timedelta

import httpx
import pytest

from agents.sumex.session import SessionLifecycle, SessionState, SessionStateError
from backend.clients.sumex.gateway import SumexSessionError

from .conftest import ADDRESS, MANAGER, REQUEST, RESPONSE_MANAGER

DESTRUCT = "IGeneralInvoiceRequestManager/PutDestructGeneralInvoiceRequestManager"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 2, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


def _lifecycle(gateway, **kwargs) -> SessionLifecycle:
    kwargs.setdefault("ttl_seconds", 3000)
    kwargs.setdefault("close_strategy", "passive")
    return SessionLifecycle(gateway, **kwargs)


def test_request_session_allocates_three_handles_in_order(request_gateway, engine) -> None:
    lifecycle = _lifecycle(request_gateway)

    session = lifecycle.open_request_session()

    assert [c.name for c in engine.calls] == [
        "IGeneralInvoiceRequestManager/GetCreateGeneralInvoiceRequestManager",
        "IGeneralInvoiceRequestManager/GetGeneralInvoiceRequest",
        "IGeneralInvoiceRequest/GetCreateAddress",
    ]
    assert engine.calls[1].params == {"pIGeneralInvoiceRequestManager": str(MANAGER)}
    assert engine.calls[2].params == {"pIGeneralInvoiceRequest": str(REQUEST)}
    assert session.manager_handle == MANAGER
    assert session.request_handle == REQUEST
    assert session.address.handle == ADDRESS
    assert session.state is SessionState.CREATED
    assert lifecycle.active_sessions == [session]


def test_missing_handle_fails_session_creation(request_gateway, engine) -> None:
    engine.on("IGeneralInvoiceRequest/GetCreateAddress", {})

    with pytest.raises(SumexSessionError) as excinfo:
        _lifecycle(request_gateway).open_request_session()

    assert excinfo.value.step == "GetCreateAddress"


def test_response_manager_session(response_gateway) -> None:
    session = _lifecycle(response_gateway).open_response_manager()

    assert session.manager_handle == RESPONSE_MANAGER
    assert session.request_handle is None
    assert session.address is None


def test_state_machine_rejects_skipped_steps(request_gateway) -> None:
    session = _lifecycle(request_gateway).open_request_session()

    with pytest.raises(SessionStateError):
        session.transition(SessionState.GENERATED)

    session.transition(SessionState.POPULATING)
    session.transition(SessionState.FINALIZED)
    session.transition(SessionState.GENERATED)
    session.transition(SessionState.PRINTED)
    session.transition(SessionState.CLOSED)
    assert session.terminal


def test_failed_is_reachable_from_any_live_state(request_gateway) -> None:
    session = _lifecycle(request_gateway).open_request_session()
    session.transition(SessionState.POPULATING)

    session.fail()

    assert session.state is SessionState.FAILED
    with pytest.raises(SessionStateError):
        session.transition(SessionState.POPULATING)


def test_expiry_uses_ttl(request_gateway) -> None:
    clock = FakeClock()
    lifecycle = _lifecycle(request_gateway, ttl_seconds=3000, clock=clock)
    session = lifecycle.open_request_session()

    clock.now += timedelta(seconds=2999)
    assert not lifecycle.is_expired(session)
    assert lifecycle.expired_sessions() == []

    clock.now += timedelta(seconds=1)
    assert lifecycle.is_expired(session)
    assert lifecycle.expired_sessions() == [session]


def test_passive_close_forgets_session(request_gateway, engine) -> None:
    lifecycle = _lifecycle(request_gateway)
    session = lifecycle.open_request_session()
    session.transition(SessionState.POPULATING)
    session.transition(SessionState.FINALIZED)
    session.transition(SessionState.GENERATED)

    lifecycle.close(session)

    assert session.state is SessionState.CLOSED
    assert lifecycle.active_sessions == []
    assert engine.find(DESTRUCT) == []


def test_destruct_close_issues_one_put(request_gateway, engine) -> None:
    lifecycle = _lifecycle(request_gateway, close_strategy="destruct")
    session = lifecycle.open_request_session()

    lifecycle.close(session)
    lifecycle.close(session)

    call = engine.one(DESTRUCT)
    assert call.method == "PUT"
    assert call.body == {"pIGeneralInvoiceRequestManager": MANAGER}


def test_destruct_failure_is_not_raised(request_gateway, engine) -> None:
    engine.on(DESTRUCT, httpx.Response(404))
    lifecycle = _lifecycle(request_gateway, close_strategy="destruct")
    session = lifecycle.open_request_session()

    lifecycle.close(session)

    assert lifecycle.active_sessions == []


def test_expired_session_is_not_destructed(request_gateway, engine) -> None:
    clock = FakeClock()
    lifecycle = _lifecycle(request_gateway, close_strategy="destruct", clock=clock)
    session = lifecycle.open_request_session()
    clock.now += timedelta(hours=1)

    lifecycle.close(session)

    assert engine.find(DESTRUCT) == []


def test_failed_session_stays_failed_after_close(request_gateway) -> None:
    lifecycle = _lifecycle(request_gateway)
    session = lifecycle.open_request_session()
    session.fail()

    lifecycle.close(session)

    assert session.state is SessionState.FAILED


def test_unknown_close_strategy_is_rejected(request_gateway) -> None:
    with pytest.raises(ValueError):
        _lifecycle(request_gateway, close_strategy="eager")
