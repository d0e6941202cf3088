"""Logging for the Sumex client with PII redaction.

Engine payloads carry patient data. AHV numbers, IBANs, e-mail addresses and
phone numbers are masked on every ``agents``/``backend``/``tools`` logger
before a record reaches a handler.
"""

import logging
import re

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
REDACTED_NAMESPACES = ("backend", "agents", "tools")

# 756.1234.5678.97, with or without separators
AHV_PATTERN = re.compile(r"(756[.\s]?\d{4}[.\s]?\d{4}[.\s]?\d{2})")
IBAN_PATTERN = re.compile(r"([A-Z]{2}\d{2}[A-Z0-9]{1,30})")
EMAIL_PATTERN = re.compile(r"(\b\S+@\S+\.\S+\b)")
PHONE_PATTERN = re.compile(r"(\+?\d[\d \-/]{6,})")


def _keep_prefix(value: str, keep: int) -> str:
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "*" * (len(value) - keep)


class PIIRedactionFilter(logging.Filter):
    """Mask PII in ``record.msg`` and in string ``record.args``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self.redact(str(record.msg))
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(self.redact(arg) if isinstance(arg, str) else arg for arg in record.args)
        return True

    def redact(self, text: str) -> str:
        # AHV must run before the phone pattern
        text = AHV_PATTERN.sub(self._mask_ahv, text)
        text = IBAN_PATTERN.sub(lambda m: _keep_prefix(m.group(1), 2), text)
        text = EMAIL_PATTERN.sub(self._mask_email, text)
        return PHONE_PATTERN.sub(lambda m: _keep_prefix(m.group(1), 2), text)

    @staticmethod
    def _mask_ahv(match: re.Match) -> str:
        return "756." + "*" * (len(match.group(1)) - 4)

    @staticmethod
    def _mask_email(match: re.Match) -> str:
        """Keep the first character of the local part and the whole domain."""
        user, _, domain = match.group(1).partition("@")
        return f"{_keep_prefix(user, 1) or '*'}@{domain}"


def setup_logging_with_pii_redaction(level: str | None = None) -> None:
    """Configure the root logger (level, one stream handler) and attach the filter."""
    from backend.core.config import settings

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    pii_filter = PIIRedactionFilter()
    for handler in root_logger.handlers:
        handler.addFilter(pii_filter)
    for namespace in REDACTED_NAMESPACES:
        logging.getLogger(namespace).addFilter(pii_filter)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with PII redaction applied."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, PIIRedactionFilter) for f in logger.filters):
        logger.addFilter(PIIRedactionFilter())
    return logger
