from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite+aiosqlite:///./school_finance.db", alias="DATABASE_URL")

    appwrite_endpoint: str = Field("https://fra.cloud.appwrite.io/v1", alias="APPWRITE_ENDPOINT")
    appwrite_project_id: str = Field("", alias="APPWRITE_PROJECT_ID")
    appwrite_api_key: Optional[str] = Field(None, alias="APPWRITE_API_KEY")
    appwrite_database_id: str = Field("", alias="APPWRITE_DATABASE_ID")
    appwrite_users_collection_id: str = Field("", alias="APPWRITE_USERS_COLLECTION_ID")
    appwrite_schools_collection_id: str = Field("", alias="APPWRITE_SCHOOLS_COLLECTION_ID")
    remote_timeout_seconds: float = Field(10.0, alias="REMOTE_TIMEOUT_SECONDS")

    admin_email: Optional[str] = Field(None, alias="ADMIN_EMAIL")

    whatsapp_api_url: str = Field("https://graph.facebook.com/v19.0/messages", alias="WHATSAPP_API_URL")
    whatsapp_api_token: Optional[str] = Field(None, alias="WHATSAPP_API_TOKEN")
    phone_prefix: str = Field("+968", alias="PHONE_PREFIX")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


settings = Settings()
