"""Default configuration, read from environment variables."""
from __future__ import annotations

import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///studio.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment proofs land here unless an S3 bucket is configured.
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", os.path.join(os.getcwd(), "uploads"))
    BLOB_S3_BUCKET = os.environ.get("BLOB_S3_BUCKET")
    BLOB_PUBLIC_BASE_URL = os.environ.get("BLOB_PUBLIC_BASE_URL")
    AWS_REGION = os.environ.get("AWS_REGION", "ap-southeast-1")

    # Web push (VAPID). Push is skipped when any of these is missing.
    VAPID_PRIVATE_KEY = os.environ.get("VAPID_PRIVATE_KEY")
    VAPID_PUBLIC_KEY = os.environ.get("VAPID_PUBLIC_KEY")
    WEB_PUSH_EMAIL = os.environ.get("WEB_PUSH_EMAIL")
    NOTIFICATION_WORKERS = int(os.environ.get("NOTIFICATION_WORKERS", 2))

    TRANSACTION_MAX_ATTEMPTS = int(os.environ.get("TRANSACTION_MAX_ATTEMPTS", 5))
    TOKEN_MAX_AGE = int(os.environ.get("TOKEN_MAX_AGE", 86400))
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
