from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    """
    Application configuration.

    - Secrets are NEVER stored in code.
    - All sensitive values are injected via environment variables (.env).
    - Validation happens at startup (fail fast).
    - Services receive a Settings instance through their constructor,
      tests build their own instead of touching os.environ.
    """

    # --------------------------------------------------
    # Database / Storage
    # --------------------------------------------------
    DATABASE_URL: str = "sqlite:///./app.db"
    STORAGE_ROOT: str = "./storage"
    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024

    LOG_LEVEL: str = "INFO"

    # --------------------------------------------------
    # Severity thresholds (tenant rows may override)
    # --------------------------------------------------
    RISK_MEDIUM_THRESHOLD: float = 40
    RISK_HIGH_THRESHOLD: float = 70
    RISK_CRITICAL_THRESHOLD: float = 90

    # --------------------------------------------------
    # Scoring windows
    # --------------------------------------------------
    COMPANY_SCORE_WINDOW_DAYS: int = 90
    FRAUD_WINDOW_MONTHS: int = 12
    FORECAST_HISTORY_DAYS: int = 90

    # ML fraud alerting
    FRAUD_ALERT_THRESHOLD: float = 50
    FRAUD_HIGH_THRESHOLD: float = 70

    # --------------------------------------------------
    # Document worker
    # --------------------------------------------------
    WORKER_ENABLED: bool = False
    WORKER_INTERVAL_SECONDS: int = 5
    WORKER_BATCH_SIZE: int = 10
    JOB_MAX_ATTEMPTS: int = 3

    # --------------------------------------------------
    # Accounting system sync
    # --------------------------------------------------
    SYNC_ENABLED: bool = False
    SYNC_TENANT_ID: str | None = None
    SYNC_CLIENT_COMPANY_ID: int | None = None
    SYNC_MAX_CHANGED_PER_CYCLE: int = 50

    ACCOUNTING_BASE_URL: str = "http://localhost:8080"
    ACCOUNTING_API_KEY: str | None = None
    ACCOUNTING_API_SECRET: str | None = None

    # --------------------------------------------------
    # Internal Cache (seconds)
    # --------------------------------------------------
    DASHBOARD_TTL_SECONDS: int = 15

    # --------------------------------------------------
    # AI Provider (OpenAI / None)
    # --------------------------------------------------
    AI_ENABLED: bool = False
    AI_PROVIDER: str = "none"  # "none" | "openai"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"

    class Config:
        env_file = ".env"
        extra = "ignore"   # Ignore unrelated env vars (Docker / CI friendly)

    def model_post_init(self, __context) -> None:
        """
        Fail fast on inconsistent settings.
        """
        if self.AI_ENABLED and self.AI_PROVIDER == "openai":
            if not self.OPENAI_API_KEY:
                raise ValueError("AI_ENABLED=true and AI_PROVIDER=openai require OPENAI_API_KEY in .env")

        if not (0 <= self.RISK_MEDIUM_THRESHOLD <= self.RISK_HIGH_THRESHOLD <= self.RISK_CRITICAL_THRESHOLD <= 100):
            raise ValueError("risk thresholds must satisfy 0 <= medium <= high <= critical <= 100")

        if self.SYNC_ENABLED and not (self.SYNC_TENANT_ID and self.SYNC_CLIENT_COMPANY_ID):
            raise ValueError("SYNC_ENABLED=true requires SYNC_TENANT_ID and SYNC_CLIENT_COMPANY_ID")


settings = Settings()
