# backend/oms/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Central registry: tenants, domains, users
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///oms_central.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared store for tenants without a dedicated store_url
    TENANT_STORE_DEFAULT_URL = os.environ.get(
        "TENANT_STORE_DEFAULT_URL",
        "sqlite:///oms_tenants.sqlite3",
    )

    # Courier (carrier) endpoints, selected by the tenant's courier mode
    COURIER_NEW_WAYBILL_URL = os.environ.get(
        "COURIER_NEW_WAYBILL_URL",
        "https://www.fdedomestic.com/api/parcel/new_api_v1.php",
    )
    COURIER_EXISTING_WAYBILL_URL = os.environ.get(
        "COURIER_EXISTING_WAYBILL_URL",
        "https://www.fdedomestic.com/api/parcel/existing_waybill_api_v1.php",
    )
    # Applied by the HTTP layer to the client it hands to the courier adapter
    COURIER_TIMEOUT_SECONDS = float(os.environ.get("COURIER_TIMEOUT_SECONDS", "15"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Dashboard origins allowed to call the API from a browser
    CORS_ORIGINS = {
        o.strip()
        for o in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        ).split(",")
        if o.strip()
    }
