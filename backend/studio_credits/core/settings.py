import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./credits.db") or "sqlite:///./credits.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.db_lock_timeout_s = _getenv_float("DB_LOCK_TIMEOUT_S", 10.0)
        self.db_max_retries = max(1, _getenv_int("DB_MAX_RETRIES", 3))

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("NEXT_PUBLIC_SUPABASE_URL")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.supabase_jwt_secret = _getenv("SUPABASE_JWT_SECRET")
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.razorpay_key_id = _getenv("RAZORPAY_KEY_ID") or _getenv("NEXT_PUBLIC_RAZORPAY_KEY_ID")
        self.razorpay_key_secret = _getenv("RAZORPAY_KEY_SECRET")
        self.razorpay_webhook_secret = _getenv("RAZORPAY_WEBHOOK_SECRET")
        self.razorpay_api_base = (
            _getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1") or "https://api.razorpay.com/v1"
        ).rstrip("/")
        self.razorpay_timeout_s = _getenv_float("RAZORPAY_TIMEOUT_S", 15.0)

        self.trial_credits = max(0, _getenv_int("TRIAL_CREDITS", 3))
        self.webhook_grants_credits = _getenv_bool("WEBHOOK_GRANTS_CREDITS", default=True)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
