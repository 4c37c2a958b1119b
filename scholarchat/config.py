from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenAI-compatible completion service
    openai_api_key: str = ""
    openai_base_url: str = ""  # optional, e.g. an OpenRouter or proxy endpoint
    openai_model: str = "gpt-4o-mini"
    interpreter_model: str = ""  # optional override for query interpretation only
    summary_model: str = ""  # optional override for summary streaming only
    summary_max_tokens: int = 2048

    # Works catalog (OpenAlex)
    catalog_base_url: str = "https://api.openalex.org/works"
    catalog_timeout_seconds: float = 20.0
    catalog_mailto: str = ""  # joins the OpenAlex polite pool when set

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"  # empty disables the file sink

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
