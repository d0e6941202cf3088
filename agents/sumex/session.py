"""Session lifecycle for the Sumex1 engine.

A build allocates a fresh manager/request/address handle triple; a response
parse allocates a response manager. Handles are never shared across builds.
The engine garbage-collects instances that stay idle for 60 minutes, so
closing is best effort.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from backend.clients.sumex.gateway import SumexError, SumexGateway, SumexSessionError
from backend.core.config import settings
from backend.core.logging import get_logger

from .address import AddressSlot

REQUEST_MANAGER = "IGeneralInvoiceRequestManager"
RESPONSE_MANAGER = "IGeneralInvoiceResponseManager"

CLOSE_PASSIVE = "passive"
CLOSE_DESTRUCT = "destruct"
CLOSE_STRATEGIES = (CLOSE_PASSIVE, CLOSE_DESTRUCT)

logger = get_logger(__name__)


class SessionState(Enum):
    """Zustand einer Engine-Session."""

    CREATED = "created"
    POPULATING = "populating"
    FINALIZED = "finalized"
    GENERATED = "generated"
    PRINTED = "printed"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: Dict[SessionState, frozenset] = {
    SessionState.CREATED: frozenset({SessionState.POPULATING, SessionState.CLOSED, SessionState.FAILED}),
    SessionState.POPULATING: frozenset({SessionState.FINALIZED, SessionState.FAILED}),
    SessionState.FINALIZED: frozenset({SessionState.GENERATED, SessionState.FAILED}),
    SessionState.GENERATED: frozenset({SessionState.PRINTED, SessionState.CLOSED, SessionState.FAILED}),
    SessionState.PRINTED: frozenset({SessionState.CLOSED, SessionState.FAILED}),
    SessionState.CLOSED: frozenset(),
    SessionState.FAILED: frozenset(),
}


class SessionStateError(SumexError):
    """Raised on a transition the session state machine does not allow."""


@dataclass
class EngineSession:
    """Handles owned by one build or one parse."""

    manager_interface: str
    manager_handle: int
    created_at: datetime
    request_handle: Optional[int] = None
    address: Optional[AddressSlot] = None
    state: SessionState = SessionState.CREATED
    session_id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS[self.state]

    def transition(self, target: SessionState) -> None:
        if not self.can_transition(target):
            raise SessionStateError(f"Invalid session transition {self.state.value} -> {target.value}")
        logger.info(f"Session {self.session_id[:8]}: {self.state.value} -> {target.value}")
        self.state = target

    def fail(self) -> None:
        """Move to FAILED unless the session already reached a terminal state."""
        if not self.terminal:
            self.transition(SessionState.FAILED)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionLifecycle:
    """Allokiert Engine-Handles und räumt sie wieder ab.

    Regeln:
    - Jede Session bekommt ein eigenes Handle-Tripel
    - Sessions älter als die TTL gelten als abgelaufen
    - ``close`` wirft nie; Fehler beim Destruct werden nur geloggt
    """

    def __init__(
        self,
        gateway: SumexGateway,
        *,
        ttl_seconds: Optional[int] = None,
        close_strategy: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize lifecycle manager.

        Args:
            gateway: Gateway to the engine the sessions live on
            ttl_seconds: Age after which a session is considered expired
            close_strategy: ``passive`` (forget) or ``destruct`` (explicit PUT)
            clock: Time source, injectable for tests
        """
        self.logger = logger
        self.gateway = gateway
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.SUMEX_SESSION_TTL_S)
        strategy = (close_strategy or settings.SUMEX_SESSION_CLOSE_STRATEGY).strip().lower()
        if strategy not in CLOSE_STRATEGIES:
            raise ValueError(f"Unknown session close strategy: {strategy!r}")
        self.close_strategy = strategy
        self._clock = clock or _utcnow

        # In-memory only, sessions never outlive one build
        self._sessions: dict[str, EngineSession] = {}

    @property
    def active_sessions(self) -> List[EngineSession]:
        return list(self._sessions.values())

    def open_request_manager(self) -> EngineSession:
        """Manager only, for LoadXML and module queries."""
        session = EngineSession(
            manager_interface=REQUEST_MANAGER,
            manager_handle=self._create_request_manager(),
            created_at=self._clock(),
        )
        self._sessions[session.session_id] = session
        self.logger.info(f"Request manager created: {session.manager_handle}")
        return session

    def open_request_session(self) -> EngineSession:
        """Create manager, request and address handles (in that order)."""
        manager = self._create_request_manager()
        request = self._handle(
            self.gateway.get(
                f"{REQUEST_MANAGER}/GetGeneralInvoiceRequest",
                pIGeneralInvoiceRequestManager=manager,
            ),
            "pIGeneralInvoiceRequest",
            "GetGeneralInvoiceRequest",
        )
        address = self._handle(
            self.gateway.get(
                "IGeneralInvoiceRequest/GetCreateAddress",
                pIGeneralInvoiceRequest=request,
            ),
            "pIAddress",
            "GetCreateAddress",
        )

        session = EngineSession(
            manager_interface=REQUEST_MANAGER,
            manager_handle=manager,
            request_handle=request,
            address=AddressSlot(self.gateway, address),
            created_at=self._clock(),
        )
        self._sessions[session.session_id] = session
        self.logger.info(
            f"Request session created: manager={manager}, request={request}, address={address}"
        )
        return session

    def open_response_manager(self) -> EngineSession:
        manager = self._handle(
            self.gateway.get(f"{RESPONSE_MANAGER}/GetCreateGeneralInvoiceResponseManager"),
            "pIGeneralInvoiceResponseManager",
            "GetCreateGeneralInvoiceResponseManager",
        )
        session = EngineSession(
            manager_interface=RESPONSE_MANAGER,
            manager_handle=manager,
            created_at=self._clock(),
        )
        self._sessions[session.session_id] = session
        self.logger.info(f"Response manager created: {manager}")
        return session

    def is_expired(self, session: EngineSession, now: Optional[datetime] = None) -> bool:
        return (now or self._clock()) - session.created_at >= self.ttl

    def expired_sessions(self) -> List[EngineSession]:
        now = self._clock()
        return [session for session in self._sessions.values() if self.is_expired(session, now)]

    def close(self, session: EngineSession) -> None:
        """Release the session; never raises."""
        if self._sessions.pop(session.session_id, None) is None:
            return

        if session.state is not SessionState.FAILED and session.can_transition(SessionState.CLOSED):
            session.transition(SessionState.CLOSED)

        if self.close_strategy != CLOSE_DESTRUCT:
            self.logger.debug(f"Session {session.session_id[:8]} left to engine GC")
            return

        if self.is_expired(session):
            self.logger.info(f"Session {session.session_id[:8]} expired; engine already reclaimed it")
            return

        interface = session.manager_interface
        try:
            self.gateway.destruct(
                interface,
                f"PutDestruct{interface[1:]}",
                {f"p{interface}": session.manager_handle},
            )
        except SumexError as exc:
            self.logger.warning(f"Destruct of {interface} {session.manager_handle} failed: {exc}")

    def detach(self, session: EngineSession) -> None:
        """Hand the session to the caller; the engine idle GC reclaims it later."""
        self._sessions.pop(session.session_id, None)

    def _create_request_manager(self) -> int:
        return self._handle(
            self.gateway.get(f"{REQUEST_MANAGER}/GetCreateGeneralInvoiceRequestManager"),
            "pIGeneralInvoiceRequestManager",
            "GetCreateGeneralInvoiceRequestManager",
        )

    @staticmethod
    def _handle(data: Dict[str, Any], key: str, step: str) -> int:
        value = data.get(key)
        if value is None:
            raise SumexSessionError(step, f"no {key} returned")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise SumexSessionError(step, f"invalid {key}: {value!r}") from exc
