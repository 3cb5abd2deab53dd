from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Request lifecycle
    search_ttl_ms: int = 1000 * 60 * 10
    search_retention_ms: int = 1000 * 60 * 10  # expired records answer 410 this long
    mcp_timeout_ms: int = 8000

    # Tool-call decision
    mcp_tool_mode: str = "delegate"  # delegate | simple
    mcp_tool_decider: str = "codex"  # codex | openai
    mcp_tool_timeout_ms: int = 3000

    # Enrichment provider
    mcp_use_mock: bool = False
    mcp_simulated_delay_ms: int = 2500
    mcp_provider: str = "wikipedia"  # wikipedia | namuwiki
    mcp_wiki_base: str = "https://ko.wikipedia.org"
    mcp_namu_base: str = "https://namu.wiki"
    mcp_http_timeout_s: float = 10.0
    mcp_user_agent: str = "parallel-tool-calling/0.1"

    # Primary answer provider
    llm_use_mock: bool = False
    llm_mock_delay_ms: int = 30
    llm_provider: str = "codex"  # codex | openai
    llm_api_base: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = ""
    llm_timeout_ms: int = 20000
    llm_chunk_size: int = 24
    llm_chunk_delay_ms: int = 30
    codex_bin: str = "codex"

    # Best-effort record mirror (empty = disabled)
    record_mirror_dir: str = ""

    # App
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: str = "*"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = ""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def uses_simple_tool_mode(self) -> bool:
        return self.mcp_tool_mode.lower().strip() == "simple"


settings = Settings()
