# backend/lotkeeper/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # Postgres in production
        "sqlite:///lotkeeper.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # At-price (cost-plus) price list. Sync is disabled while the group id is unset.
    AT_PRICE_CUSTOMER_GROUP_ID = os.environ.get("AT_PRICE_CUSTOMER_GROUP_ID") or None
    AT_PRICE_LIST_HANDLE = os.environ.get("AT_PRICE_LIST_HANDLE", "at-price")
    DEFAULT_CURRENCY_CODE = os.environ.get("DEFAULT_CURRENCY_CODE", "usd")

    # COA documents live in an S3-compatible bucket (MinIO in production)
    COA_STORAGE_ENDPOINT = os.environ.get("COA_STORAGE_ENDPOINT") or None
    COA_STORAGE_BUCKET = os.environ.get("COA_STORAGE_BUCKET", "medusa-media")

    BACKEND_PUBLIC_URL = os.environ.get("BACKEND_PUBLIC_URL", "http://localhost:5000")

    ALLOCATION_RETRY_ATTEMPTS = int(os.environ.get("ALLOCATION_RETRY_ATTEMPTS", "3"))
