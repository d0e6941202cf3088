"""HTTP gateway utilities for the Sumex1 invoice engine."""

from .gateway import (
    SumexEmptyBodyError,
    SumexError,
    SumexGateway,
    SumexResponseError,
    SumexSessionError,
    SumexTimeoutError,
    SumexTransportError,
)

__all__ = [
    "SumexGateway",
    "SumexError",
    "SumexTransportError",
    "SumexResponseError",
    "SumexTimeoutError",
    "SumexEmptyBodyError",
    "SumexSessionError",
]
