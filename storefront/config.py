from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # .../storefront repo root
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_float(*keys: str, default: float | None = None) -> float | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v.replace(",", "."))


def _get_path(*keys: str, default: str) -> str:
    v = _get_env(*keys, default=default)
    return str(v)


@dataclass(frozen=True)
class Settings:
    db_path: str
    receipt_dir: str
    currency: str
    decimals: int
    tax_rate: float
    free_shipping_threshold: float
    standard_delivery_fee: float
    log_level: str


settings = Settings(
    db_path=_get_path("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "storefront.db")),
    receipt_dir=_get_path("RECEIPT_DIR", "EXPORT_DIR", default=str(ROOT_DIR / "exports")),
    currency=_get_env("CURRENCY", default="USD") or "USD",
    decimals=_get_int("DECIMALS", default=2) or 2,
    tax_rate=_get_float("TAX_RATE", default=0.08),
    free_shipping_threshold=_get_float("FREE_SHIPPING_THRESHOLD", default=50.0),
    standard_delivery_fee=_get_float("STANDARD_DELIVERY_FEE", "DELIVERY_FEE", default=5.0),
    log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
)

if settings.tax_rate < 0:
    raise RuntimeError("TAX_RATE must be >= 0. Check TAX_RATE in .env")
if settings.standard_delivery_fee < 0:
    raise RuntimeError("STANDARD_DELIVERY_FEE must be >= 0. Check .env")
