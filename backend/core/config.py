"""Core configuration with Pydantic v2 Settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_env: str = "development"
    log_level: str = "INFO"

    # Sumex1 engine endpoints (request builder / response parser)
    SUMEX_INVOICE_REQUEST_URL: str = (
        "http://localhost:8080/generalInvoiceRequestManagerServer500"
    )
    SUMEX_INVOICE_RESPONSE_URL: str = (
        "http://localhost:8080/generalInvoiceResponseManagerServer500"
    )

    # Per-call timeouts in seconds
    SUMEX_CALL_TIMEOUT_S: float = 60.0
    SUMEX_GENERATE_TIMEOUT_S: float = 30.0

    # GetXML may answer 200 before the document is ready
    SUMEX_EMPTY_BODY_RETRIES: int = 1
    SUMEX_EMPTY_BODY_RETRY_DELAY_S: float = 1.0

    # Engine reclaims idle instances after 60 min
    SUMEX_SESSION_TTL_S: int = 3000
    # passive|destruct
    SUMEX_SESSION_CLOSE_STRATEGY: str = "passive"

    # Software package reported in the invoice prolog
    SUMEX_SOFTWARE_PACKAGE: str = "AestheticsClinic"
    SUMEX_SOFTWARE_VERSION: int = 100
    SUMEX_SOFTWARE_ID: int = 0
    SUMEX_SOFTWARE_COPYRIGHT: str = "Aesthetics Clinic XT SA"


# Global settings instance
settings = Settings()
