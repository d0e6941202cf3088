import inspect
import json
import socket
from pathlib import Path

import httpx
import pytest

ARTIFACTS_DIR = Path("artifacts")
REPORT = ARTIFACTS_DIR / "egress-violations.json"

# Only the Sumex gateway (always handed a MockTransport in tests) and the
# tests themselves may construct httpx clients.
ALLOWED_CLIENT_CALLSITES = (
    "/tests/",
    "/backend/clients/sumex/gateway.py",
)

VIOLATIONS: list[dict] = []


def _called_from(callsites: tuple[str, ...]) -> bool:
    for frame in inspect.stack():
        filename = (frame.filename or "").replace("\\", "/")
        if any(site in filename for site in callsites):
            return True
    return False


def _blocked(fn: str):
    def guard(*args, **kwargs):
        target = args[0] if args else None
        VIOLATIONS.append({"fn": fn, "target": str(target)})
        raise RuntimeError(f"Egress blocked: {fn} disallowed")

    return guard


@pytest.fixture(autouse=True, scope="session")
def egress_guard():
    """No test may open a socket; engine traffic goes through MockTransport."""
    real_getaddrinfo = socket.getaddrinfo
    real_create_connection = socket.create_connection
    real_httpx_init = httpx.Client.__init__

    def guard_httpx_init(self, *args, **kwargs):
        if not _called_from(ALLOWED_CLIENT_CALLSITES):
            VIOLATIONS.append({"fn": "httpx.Client.__init__"})
            raise RuntimeError("Egress blocked: httpx.Client not allowed from this callsite")
        return real_httpx_init(self, *args, **kwargs)

    socket.getaddrinfo = _blocked("getaddrinfo")  # type: ignore[assignment]
    socket.create_connection = _blocked("create_connection")  # type: ignore[assignment]
    httpx.Client.__init__ = guard_httpx_init  # type: ignore[assignment]

    yield

    socket.getaddrinfo = real_getaddrinfo  # type: ignore[assignment]
    socket.create_connection = real_create_connection  # type: ignore[assignment]
    httpx.Client.__init__ = real_httpx_init  # type: ignore[assignment]

    ARTIFACTS_DIR.mkdir(parents=True, exist_ok=True)
    REPORT.write_text(json.dumps(VIOLATIONS, indent=2))
