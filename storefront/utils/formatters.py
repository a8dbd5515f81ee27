from typing import Optional

from storefront.config import settings


def money(v: float, currency: Optional[str] = None) -> str:
    return f"{v:.{settings.decimals}f} {currency or settings.currency}"


def percent(progress: float) -> str:
    return f"{round(progress * 100)}%"
