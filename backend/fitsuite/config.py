# backend/fitsuite/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///fitsuite.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payment provider (Mercado Pago REST API)
    MP_ACCESS_TOKEN = os.environ.get("MP_ACCESS_TOKEN", "")
    MP_API_BASE_URL = os.environ.get("MP_API_BASE_URL", "https://api.mercadopago.com")
    MP_TIMEOUT_SECONDS = float(os.environ.get("MP_TIMEOUT_SECONDS", "10"))
    MP_RETRY_ATTEMPTS = int(os.environ.get("MP_RETRY_ATTEMPTS", "3"))
    MP_RETRY_BACKOFF = float(os.environ.get("MP_RETRY_BACKOFF", "0.2"))

    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:10000")
    BRAND_NAME = os.environ.get("BRAND_NAME", "FitSuite Pro")
    STATEMENT_DESCRIPTOR = os.environ.get("STATEMENT_DESCRIPTOR", "FITSUITE")

    # Tenant-local business day for revenue rollups
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "America/Argentina/Buenos_Aires")

    DEFAULT_GRACE_HOURS = int(os.environ.get("DEFAULT_GRACE_HOURS", "72"))
    DEFAULT_PLAN_DURATION_DAYS = int(os.environ.get("DEFAULT_PLAN_DURATION_DAYS", "30"))

    # Referral program: flat tier step and flat points per confirmed referral (tier capped at 20)
    REFERRAL_TIER_STEP = int(os.environ.get("REFERRAL_TIER_STEP", "4"))
    REFERRAL_POINTS_PER_REFERRAL = int(os.environ.get("REFERRAL_POINTS_PER_REFERRAL", "100"))

    # Bearer token for the manual/API endpoints (orders, referrals, devices)
    SERVICE_API_TOKEN = os.environ.get("SERVICE_API_TOKEN", "")
