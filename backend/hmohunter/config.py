from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    HMO_DB_URL: str = "sqlite+aiosqlite:///./hmohunter.db"
    LOG_LEVEL: str = "INFO"

    # --- Minimal B2B Auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Geocoding upstreams (free, unauthenticated, rate limited) ---
    NOMINATIM_BASE_URL: str = "https://nominatim.openstreetmap.org"
    NOMINATIM_MIN_INTERVAL_S: float = 1.1  # hard ceiling of 1 req/s on the public instance
    POSTCODES_IO_BASE_URL: str = "https://api.postcodes.io"
    POSTCODES_IO_MIN_INTERVAL_S: float = 0.1
    GEOCODE_TIMEOUT_S: float = 10.0
    GEOCODE_USER_AGENT: str = "HMO-Hunter-App/1.0 (contact@hmohunter.com)"

    # --- Source adapters ---
    # Comma-separated; "propertydata_hmo" and "stub_json" are built in.
    INGESTION_SOURCES: str = "propertydata_hmo"
    PROPERTYDATA_API_KEY: str | None = None
    PROPERTYDATA_BASE_URL: str = "https://api.propertydata.co.uk"
    PROPERTYDATA_POSTCODES: str = "N7 6PA,E2 9PL,SE5 8TR,NW5 2HB,E8 1EJ"
    PROPERTYDATA_MIN_INTERVAL_S: float = 0.5
    SOURCE_HTTP_TIMEOUT_S: float = 30.0
    STUB_LISTINGS_DIR: str = "data/stub_listings"

    # --- Enrichment adapters ---
    STREETDATA_API_KEY: str | None = None
    STREETDATA_BASE_URL: str = "https://api.street.co.uk"

    # --- Matching ---
    MATCH_STRATEGY: str = "points"  # points|similarity
    MATCH_THRESHOLD: float | None = None  # None => strategy default

    # --- Ingestion tuning ---
    INGEST_RECORD_DELAY_S: float = 0.3
    INGEST_MAX_ERRORS: int = 50
    INGEST_CONCURRENT_SOURCES: bool = False
    ENRICH_BATCH_SIZE: int = 100
    STALE_AFTER_DAYS: int = 7


settings = Settings()
