"""
Configuration module for DuoChat application.
Stores all application settings and sensitive information.
"""

import os
from typing import Dict, Any


class Config:
    """Application configuration class."""

    # JWT Configuration
    JWT_SECRET = os.environ.get("DUOCHAT_JWT_SECRET", "default-secret-key-change-in-production")
    JWT_ALGORITHM = "HS256"
    JWT_EXPIRE_MINUTES = int(os.environ.get("DUOCHAT_JWT_EXPIRE_MINUTES", 30 * 24 * 60))

    # Password hashing
    BCRYPT_ROUNDS = 10

    # Server Configuration
    DEFAULT_HOST = os.environ.get("DUOCHAT_HOST", "localhost")
    DEFAULT_SERVER_PORT = int(os.environ.get("DUOCHAT_WS_PORT", 8765))
    DEFAULT_API_PORT = int(os.environ.get("DUOCHAT_API_PORT", 8766))

    # SQLite database (users, chats, messages)
    SQLITE_DB_FILE = os.environ.get("DUOCHAT_DB", "duochat.db")

    # Uploaded files
    UPLOAD_DIR = os.environ.get("DUOCHAT_UPLOAD_DIR", "uploads")
    UPLOAD_URL_PREFIX = "/uploads"
    MAX_IMAGE_BYTES = 5 * 1024 * 1024
    MAX_VIDEO_BYTES = 50 * 1024 * 1024
    MAX_DOCUMENT_BYTES = 10 * 1024 * 1024

    # Message listing
    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 100

    # CORS
    CORS_ORIGINS = os.environ.get(
        "DUOCHAT_CORS_ORIGINS", "http://localhost:3000,http://localhost:8000"
    ).split(",")

    @classmethod
    def get_config(cls) -> Dict[str, Any]:
        """Get all configuration values as a dictionary."""
        return {
            "JWT_SECRET": cls.JWT_SECRET,
            "JWT_ALGORITHM": cls.JWT_ALGORITHM,
            "JWT_EXPIRE_MINUTES": cls.JWT_EXPIRE_MINUTES,
            "BCRYPT_ROUNDS": cls.BCRYPT_ROUNDS,
            "DEFAULT_HOST": cls.DEFAULT_HOST,
            "DEFAULT_SERVER_PORT": cls.DEFAULT_SERVER_PORT,
            "DEFAULT_API_PORT": cls.DEFAULT_API_PORT,
            "SQLITE_DB_FILE": cls.SQLITE_DB_FILE,
            "UPLOAD_DIR": cls.UPLOAD_DIR,
            "DEFAULT_PAGE_SIZE": cls.DEFAULT_PAGE_SIZE,
            "MAX_PAGE_SIZE": cls.MAX_PAGE_SIZE,
            "CORS_ORIGINS": cls.CORS_ORIGINS,
        }


# Create config instance
config = Config()
