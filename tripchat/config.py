from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from a .env file if present (local dev only)
load_dotenv()


class Settings(BaseSettings):
    """Application configuration loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # General
    project_id: Optional[str] = Field(default=None, description="Firebase / GCP project ID")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    # LLM provider selection
    llm_provider: str = Field("gemini", alias="LLM_PROVIDER")
    llm_temperature: float = Field(
        0.5,
        alias="LLM_TEMPERATURE",
        description="Kept low so the model prefers the itinerary tool over free text.",
    )
    llm_max_tokens: int = Field(8192, alias="LLM_MAX_TOKENS")

    # Gemini
    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field("gemini-2.5-flash", alias="GEMINI_MODEL")

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o", alias="OPENAI_MODEL")

    # Persistence backend: "firebase" or "local"
    backend: str = Field("firebase", alias="CHAT_BACKEND")

    # Firebase
    firebase_credentials_json: Optional[str] = Field(
        default=None,
        alias="GOOGLE_APPLICATION_CREDENTIALS",
        description="Path to service-account JSON file or JSON string itself.",
    )
    firebase_database_url: Optional[str] = Field(default=None, alias="FIREBASE_DATABASE_URL")
    firebase_web_api_key: Optional[str] = Field(
        default=None,
        alias="FIREBASE_WEB_API_KEY",
        description="Web API key used for the Identity Toolkit sign-in endpoints.",
    )

    # Local JSON backend
    local_db_path: str = Field("data/tripchat.json", alias="LOCAL_DB_PATH")

    # Image processing
    image_max_dim: int = Field(
        1536, alias="IMAGE_MAX_DIM", description="Images larger than this (pixels) are downscaled before upload."
    )
    image_quality: int = Field(85, alias="IMAGE_QUALITY", description="JPEG quality for downscaled images (1-100).")

    # Conversations kept in memory; the least recently used idle one is dropped beyond this
    max_conversations: int = Field(500, alias="MAX_CONVERSATIONS")

    # Admin reporting
    admin_emails: List[str] = Field(default_factory=list, alias="ADMIN_EMAILS")

    @property
    def database_url(self) -> Optional[str]:
        if self.firebase_database_url:
            return self.firebase_database_url
        if self.project_id:
            return f"https://{self.project_id}-default-rtdb.firebaseio.com"
        return None


@lru_cache()
def get_settings() -> Settings:  # pragma: no cover
    """Return a cached Settings instance so it is only parsed once."""

    return Settings()
