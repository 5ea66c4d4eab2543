"""Configuration settings for ReLink MCP Server."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Get default data directory (~/.relink-mcp/)."""
    return Path.home() / ".relink-mcp"


class EnhancedSearchConfig(BaseModel):
    """Site-scoped SERP search with content validation (404/403 links)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    max_serp_results: int = Field(default=5, ge=1)
    content_scrape_timeout: float = Field(default=10.0, gt=0)
    min_keyword_match_ratio: float = Field(default=0.4, ge=0, le=1)
    max_retries: int = Field(default=2, ge=0)
    fallback_to_original_search: bool = True
    enable_for_404: bool = True
    enable_for_403: bool = True


class ProcessorConfig(BaseModel):
    """Immutable batch processor configuration.

    Updates produce a new instance (see ``updated``); a running batch keeps
    the snapshot it started with.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: int = Field(default=5, ge=1)
    timeout: float = Field(default=10.0, gt=0)
    search_timeout: float = Field(default=15.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    use_cache: bool = True
    strict_domain_search: bool = True
    auto_fix: bool = False
    # Return the best unvalidated fallback hit (confidence x0.7) instead of
    # dropping it.
    surface_unvalidated_fallback: bool = False
    enhanced_search: EnhancedSearchConfig = EnhancedSearchConfig()

    def updated(self, changes: dict) -> "ProcessorConfig":
        """Return a copy with *changes* merged in (nested for enhanced_search)."""
        changes = dict(changes)
        enhanced = changes.pop("enhanced_search", None)
        data = self.model_dump()
        data.update(changes)
        if enhanced:
            if isinstance(enhanced, EnhancedSearchConfig):
                enhanced = enhanced.model_dump()
            data["enhanced_search"] = {**data["enhanced_search"], **enhanced}
        return ProcessorConfig.model_validate(data)


class Settings(BaseSettings):
    """ReLink MCP Server configuration.

    Environment variables:
    - SERPAPI_KEY: SerpApi key (keyed Google results, skipped if unset)
    - BING_SEARCH_KEY: Bing Web Search API key (else Bing HTML scrape)
    - SEARXNG_URL: Optional SearXNG instance used as an extra provider
    - RELAY_URL: Optional relay for reachability checks blocked locally
    - SEARCH_RATE_LIMIT: Minimum seconds between search requests (default 1)
    - BATCH_SIZE: URLs processed concurrently per batch (default 5)
    - STRICT_DOMAIN_SEARCH: Only accept replacements on the same domain
    - AUTO_FIX: Mark found replacements as fixed and set the new URL
    - SURFACE_UNVALIDATED_FALLBACK: Report best unvalidated fallback hits
    - RELINK_CACHE: Enable the SQLite reachability cache (default true)
    - CACHE_MAX_AGE: Maximum age of cached checks in seconds (default 3600)
    """

    # Search providers
    serpapi_key: str | None = None
    bing_search_key: str | None = None
    searxng_url: str = ""
    search_rate_limit: float = 1.0  # seconds between outbound searches
    search_timeout: float = 15.0
    max_serp_results: int = 5
    content_scrape_timeout: float = 10.0

    # Reachability checks
    check_timeout: float = 10.0
    check_retries: int = 2
    retry_delay: float = 1.0  # linear backoff base (seconds)
    relay_url: str = ""  # e.g. http://localhost:3001
    relay_enabled: bool = True

    # Batch processing
    batch_size: int = 5
    strict_domain_search: bool = True
    auto_fix: bool = False
    surface_unvalidated_fallback: bool = False

    # Cache
    relink_cache: bool = True
    cache_dir: str = ""  # default: ~/.relink-mcp
    cache_max_age: int = 3600

    # Tool execution timeout (seconds, 0 = no timeout)
    tool_timeout: int = 300

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses CACHE_DIR if set, otherwise ~/.relink-mcp/.
        """
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return _default_data_dir()

    def get_cache_db_path(self) -> Path:
        """Get resolved reachability cache database path."""
        return self.get_data_dir() / "cache.db"

    def processor_config(self) -> ProcessorConfig:
        """Build the initial processor configuration from the environment."""
        return ProcessorConfig(
            batch_size=self.batch_size,
            timeout=self.check_timeout,
            search_timeout=self.search_timeout,
            max_retries=self.check_retries,
            use_cache=self.relink_cache,
            strict_domain_search=self.strict_domain_search,
            auto_fix=self.auto_fix,
            surface_unvalidated_fallback=self.surface_unvalidated_fallback,
            enhanced_search=EnhancedSearchConfig(
                max_serp_results=self.max_serp_results,
                content_scrape_timeout=self.content_scrape_timeout,
            ),
        )


settings = Settings()
