from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # AI / search providers
    google_ai_api_key: str = ""
    serpapi_api_key: str = ""
    estimation_model: str = "gemini-2.5-flash"
    ranking_model: str = "gemini-1.5-flash"

    # Rate limiting (pricing-search calls per session)
    max_calls_per_session: int = 50
    session_timeout_seconds: int = 24 * 60 * 60

    # Pricing pipeline
    pricing_item_delay_seconds: float = 0.5

    # Access gate; empty disables it
    access_password: str = ""

    # Client-side persisted state (session counters, form contents, item lists)
    client_state_file: str = ".prospec-state.json"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""


settings = Settings()
