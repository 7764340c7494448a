# backend/app/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retail.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retail.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale commit: header, lines and stock writes share one DB transaction.
    # When off, the financial record commits first and each line's stock
    # mutation commits on its own.
    SALE_COMMIT_ATOMIC = _env_flag("SALE_COMMIT_ATOMIC", True)

    # Poured mixtures are physically finite; voiding does not return them
    # to ingredient stock unless this is enabled (or overridden per void).
    VOID_RESTORES_MIXTURES = _env_flag("VOID_RESTORES_MIXTURES", False)

    MAX_MIXTURE_INGREDIENTS = int(os.environ.get("MAX_MIXTURE_INGREDIENTS", "10"))

    # Stock alerts
    LOW_STOCK_THRESHOLD_ML = float(os.environ.get("LOW_STOCK_THRESHOLD_ML", "100"))
    LOW_STOCK_THRESHOLD_UNITS = int(os.environ.get("LOW_STOCK_THRESHOLD_UNITS", "5"))

    # Typical perfume oil density (g/ml) used by ingredient weigh-ins
    DEFAULT_INGREDIENT_DENSITY = float(os.environ.get("DEFAULT_INGREDIENT_DENSITY", "0.9"))

    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RCP")
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
