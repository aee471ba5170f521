from .companies_house import (
    CompaniesHouseClient,
    CompanyNotFoundError,
    RegistryAPIError,
    RegistryAuthError,
    RegistryError,
    RegistryRateLimitError,
    RegistryUnavailableError,
)
from .exa import ExaConnector
from .search_engines import SearchEngineScraper, SearchHit

__all__ = [
    "CompaniesHouseClient",
    "CompanyNotFoundError",
    "ExaConnector",
    "RegistryAPIError",
    "RegistryAuthError",
    "RegistryError",
    "RegistryRateLimitError",
    "RegistryUnavailableError",
    "SearchEngineScraper",
    "SearchHit",
]
