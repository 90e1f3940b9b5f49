"""
Configuration management for the skill scheduler.
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# 模型上下文窗口（token）
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4.1": 1047576,
    "gpt-4.1-mini": 1047576,
    "gpt-3.5-turbo": 16385,
    "claude-3-5-sonnet": 200000,
    "claude-3-haiku": 200000,
    "deepseek-chat": 65536,
}
DEFAULT_CONTEXT_LIMIT = 16000


class RetryPolicy(BaseModel):
    """
    Per-category retry attempts for absorbed failures.

    0 means "fail once and degrade" (the default everywhere).
    """

    classification: int = Field(default=0, ge=0, le=5)
    analysis: int = Field(default=0, ge=0, le=5)
    capability: int = Field(default=0, ge=0, le=5)
    summarization: int = Field(default=0, ge=0, le=5)
    follow_up: int = Field(default=0, ge=0, le=5)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "skill-scheduler"
    app_env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=True, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    server_port: int = Field(default=8000, alias="SERVER_PORT")

    # LLM Configuration（兼容 OpenAI 格式的服务均可）
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    default_model: str = Field(default="gpt-4o-mini", alias="SCHEDULER_DEFAULT_MODEL")
    temperature: float = Field(default=0.1, alias="SCHEDULER_TEMPERATURE")

    # Deadlines (seconds)
    model_timeout_seconds: float = Field(default=120.0, alias="MODEL_TIMEOUT_SECONDS")
    capability_timeout_seconds: float = Field(default=300.0, alias="CAPABILITY_TIMEOUT_SECONDS")
    run_deadline_seconds: float = Field(default=600.0, alias="RUN_DEADLINE_SECONDS")

    # Token Budget
    token_counter: str = Field(default="tiktoken", alias="TOKEN_COUNTER")
    chat_history_max_messages: int = Field(default=20, alias="CHAT_HISTORY_MAX_MESSAGES")
    chat_history_max_tokens: int = Field(default=8000, alias="CHAT_HISTORY_MAX_TOKENS")
    max_query_tokens: int = Field(default=2000, alias="MAX_QUERY_TOKENS")

    # Capability / follow-up
    summary_max_words: int = Field(default=100, alias="SUMMARY_MAX_WORDS")
    follow_up_count: int = Field(default=3, ge=0, le=3, alias="FOLLOW_UP_COUNT")

    # Retrieval
    retrieval_limit: int = Field(default=10, alias="RETRIEVAL_LIMIT")
    url_crawl_concurrency: int = Field(default=5, alias="URL_CRAWL_CONCURRENCY")
    max_urls_per_query: int = Field(default=8, alias="MAX_URLS_PER_QUERY")

    # Graph
    graph_recursion_limit: int = Field(default=50, alias="GRAPH_RECURSION_LIMIT")

    # Event streaming
    large_data_chunk_size: int = Field(default=5, alias="LARGE_DATA_CHUNK_SIZE")

    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"
        extra = "ignore"
        populate_by_name = True


def get_model_context_limit(model_name: str | None) -> int:
    """Context window for a model; prefix match so dated snapshots resolve."""
    if not model_name:
        return DEFAULT_CONTEXT_LIMIT
    if model_name in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[model_name]
    for name in sorted(MODEL_CONTEXT_LIMITS, key=len, reverse=True):
        if model_name.startswith(name):
            return MODEL_CONTEXT_LIMITS[name]
    return DEFAULT_CONTEXT_LIMIT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
