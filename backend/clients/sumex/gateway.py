from __future__ import annotations

import json
import time
from typing import Any, Dict, Optional
from urllib import parse as urlparse

import httpx

from backend.core.config import settings
from backend.core.logging import get_logger

from .dto import ModuleInfo, _int

logger = get_logger(__name__)

UNKNOWN_ABORT_INFO = "Unknown error"


class SumexError(RuntimeError):
    """Base error for everything raised while talking to the Sumex1 engine."""


class SumexTransportError(SumexError):
    """Raised when a remote call cannot be completed (network, malformed JSON)."""


class SumexResponseError(SumexTransportError):
    """Raised when the engine answers with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        operation: str,
        abort_code: Any = "",
        abort_text: str = "",
        response_body: Optional[bytes] = None,
    ):
        super().__init__(f"{operation} failed: http_{status_code} [{abort_code}] {abort_text}".rstrip())
        self.status_code = status_code
        self.operation = operation
        self.abort_code = abort_code
        self.abort_text = abort_text
        self.response_body = response_body or b""


class SumexTimeoutError(SumexTransportError):
    """Raised when a remote call exceeds its timeout."""


class SumexEmptyBodyError(SumexTransportError):
    """Raised when a 2xx answer stays empty after the retry budget is spent."""


class SumexSessionError(SumexError):
    """Raised when a mandatory session step reports a false status."""

    def __init__(self, step: str, abort_info: str = ""):
        message = f"{step} failed"
        if abort_info:
            message = f"{message}: {abort_info}"
        super().__init__(message)
        self.step = step
        self.abort_info = abort_info


class SumexGateway:
    """Synchronous HTTP gateway to one Sumex1 REST server.

    The engine exposes COM-style interfaces over REST:

    * factory / property: ``GET <Interface>/<Name>?<handle params>``
    * method: ``POST <Interface>/<Method>`` with a JSON body
    * binary load: ``POST <Interface>/<Method>?<params>`` with an octet-stream body
    * destructor: ``PUT <Interface>/<Method>`` with a JSON body
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | None = None,
        generate_timeout: float | None = None,
        empty_body_retries: int | None = None,
        empty_body_retry_delay: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.SUMEX_CALL_TIMEOUT_S)
        self.generate_timeout = float(
            generate_timeout if generate_timeout is not None else settings.SUMEX_GENERATE_TIMEOUT_S
        )
        self.empty_body_retries = max(
            0, int(empty_body_retries if empty_body_retries is not None else settings.SUMEX_EMPTY_BODY_RETRIES)
        )
        self.empty_body_retry_delay = float(
            empty_body_retry_delay
            if empty_body_retry_delay is not None
            else settings.SUMEX_EMPTY_BODY_RETRY_DELAY_S
        )
        self._client = httpx.Client(
            base_url=self.base_url + "/",
            headers={"Accept": "application/json"},
            timeout=self.timeout,
            transport=transport,
        )

    @classmethod
    def for_requests(cls, **kwargs: Any) -> SumexGateway:
        return cls(settings.SUMEX_INVOICE_REQUEST_URL, **kwargs)

    @classmethod
    def for_responses(cls, **kwargs: Any) -> SumexGateway:
        return cls(settings.SUMEX_INVOICE_RESPONSE_URL, **kwargs)

    def get(self, path: str, **params: Any) -> Dict[str, Any]:
        """Factory or property GET; returns the decoded JSON object."""
        operation = f"GET {path}"
        logger.debug(operation)
        response = self._send("GET", path, operation, params=self._query(params))
        self._raise_for_status(response, operation)
        return self._parse_json(response.content, operation)

    factory = get

    def call(
        self,
        interface: str,
        method: str,
        body: Dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> Dict[str, Any]:
        """Method POST with a JSON body."""
        operation = f"POST {interface}/{method}"
        logger.debug(operation)
        response = self._send(
            "POST",
            f"{interface}/{method}",
            operation,
            json=body,
            timeout=timeout if timeout is not None else self.timeout,
        )
        self._raise_for_status(response, operation)
        return self._parse_json(response.content, operation)

    def call_with_empty_body_retry(
        self,
        interface: str,
        method: str,
        body: Dict[str, Any],
        *,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> Dict[str, Any]:
        """Method POST that retries when the engine answers 2xx with an empty body."""
        operation = f"POST {interface}/{method}"
        budget = self.empty_body_retries if retries is None else max(0, int(retries))
        attempts = budget + 1

        for attempt in range(1, attempts + 1):
            logger.info(f"{operation} (attempt {attempt})")
            response = self._send(
                "POST",
                f"{interface}/{method}",
                operation,
                json=body,
                timeout=timeout if timeout is not None else self.generate_timeout,
            )
            self._raise_for_status(response, operation)
            if response.content.strip():
                return self._parse_json(response.content, operation)
            if attempt < attempts:
                logger.warning(
                    f"{operation} returned empty body (status={response.status_code}), "
                    f"retrying in {self.empty_body_retry_delay}s"
                )
                time.sleep(self.empty_body_retry_delay)

        raise SumexEmptyBodyError(f"{operation} returned an empty body after {attempts} attempts")

    def upload(self, interface: str, method: str, content: bytes, **params: Any) -> Dict[str, Any]:
        """Binary POST: raw document bytes as octet-stream, handles in the query."""
        operation = f"POST {interface}/{method}"
        logger.debug(f"{operation} ({len(content)} bytes)")
        response = self._send(
            "POST",
            f"{interface}/{method}",
            operation,
            params=self._query(params),
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._raise_for_status(response, operation)
        return self._parse_json(response.content, operation)

    def destruct(self, interface: str, method: str, body: Dict[str, Any]) -> None:
        operation = f"PUT {interface}/{method}"
        logger.debug(operation)
        response = self._send("PUT", f"{interface}/{method}", operation, json=body)
        self._raise_for_status(response, operation)

    def download(self, file_path: str) -> bytes:
        """Fetch a generated file; engine paths are relative to the server origin."""
        url = urlparse.urljoin(self.base_url + "/", file_path)
        operation = f"GET {file_path}"
        response = self._send("GET", url, operation)
        self._raise_for_status(response, operation)
        return response.content

    def abort_info(self, manager_interface: str, manager_handle: int) -> str:
        """Best effort ``GetAbortInfo``; never raises."""
        try:
            data = self.call(
                manager_interface,
                "GetAbortInfo",
                {f"p{manager_interface}": manager_handle},
            )
        except SumexError as exc:
            logger.debug(f"GetAbortInfo failed: {exc}")
            return UNKNOWN_ABORT_INFO
        return str(data.get("pbstrAbortInfo") or "")

    def module_info(self, manager_interface: str, manager_handle: int) -> ModuleInfo:
        """GetModuleVersion / GetModuleVersionText; each falls back independently."""
        info = ModuleInfo()
        params = {f"p{manager_interface}": manager_handle}
        try:
            data = self.get(f"{manager_interface}/GetModuleVersion", **params)
            info.module_version = _int(data.get("plModuleVersion"))
        except SumexError as exc:
            logger.warning(f"GetModuleVersion failed: {exc}")
        try:
            data = self.get(f"{manager_interface}/GetModuleVersionText", **params)
            info.module_version_text = str(data.get("pbstrModuleVersionText") or info.module_version_text)
        except SumexError as exc:
            logger.warning(f"GetModuleVersionText failed: {exc}")
        return info

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SumexGateway:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _send(self, method: str, url: str, operation: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error(f"{operation} timed out")
            raise SumexTimeoutError(f"{operation} timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(f"{operation} transport error: {exc}")
            raise SumexTransportError(f"{operation} failed: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        abort_code, abort_text = self._derive_abort(response.content)
        logger.error(
            f"{operation} FAILED: code={abort_code} {abort_text}",
            extra={"status_code": response.status_code},
        )
        raise SumexResponseError(
            response.status_code,
            operation,
            abort_code=abort_code,
            abort_text=abort_text or str(response.status_code),
            response_body=response.content,
        )

    @staticmethod
    def _derive_abort(body: bytes) -> tuple[Any, str]:
        try:
            payload = json.loads(body.decode("utf-8")) if body else {}
        except (UnicodeDecodeError, json.JSONDecodeError):
            return "", body.decode("utf-8", "ignore").strip()
        if not isinstance(payload, dict):
            return "", str(payload)
        abort_code = payload.get("abortCode", "")
        abort_text = (
            payload.get("pbstrAbort")
            or payload.get("errorText")
            or payload.get("errorCode")
            or ""
        )
        return abort_code, str(abort_text)

    @staticmethod
    def _parse_json(body: bytes, operation: str) -> Dict[str, Any]:
        if not body.strip():
            raise SumexTransportError(f"{operation} returned an empty body")
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error(f"{operation} JSON parse failed: len={len(body)}")
            raise SumexTransportError(f"{operation} returned invalid JSON") from exc
        # void methods may answer with a bare boolean status
        if isinstance(payload, bool):
            return {"pbStatus": payload}
        if not isinstance(payload, dict):
            raise SumexTransportError(f"{operation} expected a JSON object")
        return payload

    @staticmethod
    def _query(params: Dict[str, Any]) -> Dict[str, str]:
        return {key: str(value) for key, value in params.items() if value is not None}
