"""
Configuration management for the FastAPI application.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    API_TITLE: str = "Builder CMS API"
    API_VERSION: str = "0.1.0"
    API_DESCRIPTION: str = "Project gallery and file management API for the company website"

    # CORS Configuration
    # Admin dashboard and public site origins
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5000",
        "http://127.0.0.1:5173",
    ]

    # Database Configuration
    # Empty falls back to in-memory SQLite
    DATABASE_URL: str = ""

    # Cloudinary Configuration
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_FOLDER: str = "projects"

    # Admin Password
    # Should be bcrypt hashed password
    ADMIN_PASSWORD_HASH: str = ""

    # Gallery editing
    GALLERY_MAX_IMAGES: int = 10
    GALLERY_SNAPSHOT_DIR: str = ".gallery_snapshots"
    CMS_API_BASE_URL: str = "http://localhost:8000"

    # Uploads older than this that were never committed are treated as abandoned
    STALE_UPLOAD_MAX_AGE_SECONDS: int = 3600

    # Set False to disable slowapi limits (e.g. in tests)
    RATE_LIMIT_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings


# Global settings instance
settings = Settings()
