from pydantic import PrivateAttr
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Loan Lifecycle API"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite+aiosqlite:///./loan_lifecycle.db"
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    app_url: str = "http://localhost:3000"

    # Lifecycle rules
    required_verifications: str = "pan,aadhaar,bank_account"
    esign_token_ttl_hours: int = 24
    esign_max_otp_attempts: int = 3
    upi_collection_expiry_minutes: int = 30
    client_reference_max_length: int = 20

    # Partner gateways
    provider_timeout_seconds: float = 15.0
    verification_api_url: str = "https://api.sandbox.co.in"
    verification_api_key: str = ""
    verification_api_secret: str = ""
    nach_api_url: str = "https://uat.rblbank.example/nach"
    nach_api_key: str = ""
    collection_api_url: str = "https://api-uat.nupaybiz.com"
    collection_api_key: str = ""
    notification_api_url: str = ""
    notification_api_key: str = ""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    _is_sqlite: bool = PrivateAttr(default=False)
    _is_postgresql: bool = PrivateAttr(default=False)

    def model_post_init(self, __context: object) -> None:
        _scheme = self.database_url.split(":")[0].lower()
        object.__setattr__(self, "_is_sqlite", "sqlite" in _scheme)
        object.__setattr__(self, "_is_postgresql", "postgresql" in _scheme)

    @property
    def is_sqlite(self) -> bool:
        return self._is_sqlite

    @property
    def is_postgresql(self) -> bool:
        return self._is_postgresql

    @property
    def required_verification_types(self) -> list[str]:
        return [t.strip() for t in self.required_verifications.split(",") if t.strip()]


settings = Settings()
