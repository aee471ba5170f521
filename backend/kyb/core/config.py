from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    # KYB routes are mounted at the root (/startKYB, /jobStatus, ...)
    API_PREFIX: str = ""

    # database & redis
    # Plain strings so sqlite:// and redis:// URLs are always accepted
    DATABASE_URL: str
    REDIS_URL: str
    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 60 * 60 * 24

    # job queue
    KYB_QUEUE: str = "kyb"

    # llm
    OPENROUTER_API_KEY: str | None = None
    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o"
    LLM_TIMEOUT_SECONDS: float = 30.0

    # company registry
    COMPANIES_HOUSE_API_KEY: str | None = None
    COMPANIES_HOUSE_BASE_URL: str = "https://api.company-information.service.gov.uk"
    COMPANIES_HOUSE_TIMEOUT_SECONDS: float = 10.0
    COMPANIES_HOUSE_PUBLIC_URL: str = "https://find-and-update.company-information.service.gov.uk"

    # website collection & discovery
    HTTP_TIMEOUT_SECONDS: float = 10.0
    DOMAIN_CHECK_TIMEOUT_SECONDS: float = 3.0
    SCRAPER_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    # Paid search API, only used when free search-engine scraping finds nothing
    EXA_API_KEY: str | None = None

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
