from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from dotenv import load_dotenv


def _load_env() -> None:
    # Load .env if present (non-fatal if missing)
    load_dotenv(override=False)


LLMProvider = Literal["mock", "perplexity", "databricks"]

DEFAULT_PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"


@dataclass(frozen=True)
class Settings:
    llm_provider: LLMProvider = "mock"

    # Perplexity (search-augmented chat completions).
    # Required when STORYCRAFT_LLM_PROVIDER=perplexity:
    #   - PERPLEXITY_API_KEY
    perplexity_api_key: str = ""
    perplexity_api_url: str = DEFAULT_PERPLEXITY_URL
    perplexity_model: str = "sonar"

    # Databricks model serving (bearer token auth).
    # Required when STORYCRAFT_LLM_PROVIDER=databricks:
    #   - DATABRICKS_HOST
    #   - DATABRICKS_TOKEN
    #   - DATABRICKS_ENDPOINT
    databricks_host: str = ""
    databricks_token: str = ""
    databricks_endpoint: str = ""

    # Document-generation script endpoints.
    export_url: str = ""
    value_story_url: str = ""

    port: int = 3000
    http_timeout: float = 120.0

    # Per-browser-session wizard snapshots and validation flags.
    session_dir: str = ".storycraft_sessions"

    @staticmethod
    def from_env() -> "Settings":
        _load_env()
        llm_provider = os.getenv("STORYCRAFT_LLM_PROVIDER", "mock").strip().lower()
        if llm_provider not in ("mock", "perplexity", "databricks"):
            llm_provider = "mock"

        perplexity_api_url = os.getenv("PERPLEXITY_API_URL", "").strip() or DEFAULT_PERPLEXITY_URL
        perplexity_model = os.getenv("PERPLEXITY_MODEL", "").strip() or "sonar"

        # Hosts are often pasted with a trailing slash from the workspace URL bar.
        databricks_host = os.getenv("DATABRICKS_HOST", "").strip().rstrip("/")

        try:
            port = int(os.getenv("DATABRICKS_APP_PORT", "3000"))
        except ValueError:
            port = 3000

        try:
            http_timeout = float(os.getenv("STORYCRAFT_HTTP_TIMEOUT", "120"))
        except ValueError:
            http_timeout = 120.0

        return Settings(
            llm_provider=llm_provider,  # type: ignore[arg-type]
            perplexity_api_key=os.getenv("PERPLEXITY_API_KEY", "").strip(),
            perplexity_api_url=perplexity_api_url,
            perplexity_model=perplexity_model,
            databricks_host=databricks_host,
            databricks_token=os.getenv("DATABRICKS_TOKEN", "").strip(),
            databricks_endpoint=os.getenv("DATABRICKS_ENDPOINT", "").strip(),
            export_url=os.getenv("STORYCRAFT_EXPORT_URL", "").strip(),
            value_story_url=os.getenv("STORYCRAFT_VALUE_STORY_URL", "").strip(),
            port=port,
            http_timeout=http_timeout,
            session_dir=os.getenv("STORYCRAFT_SESSION_DIR", "").strip() or ".storycraft_sessions",
        )
