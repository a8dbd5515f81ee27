from __future__ import annotations

import os
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from storefront.config import settings
from storefront.models import Order
from storefront.utils.formatters import money


def _variants_text(variants) -> str:
    if not variants:
        return ""
    return " (" + ", ".join(f"{k}: {v}" for k, v in sorted(variants.items())) + ")"


def generate_receipt_pdf(order: Order, directory: Optional[str] = None) -> str:
    export_dir = directory or settings.receipt_dir
    os.makedirs(export_dir, exist_ok=True)

    filename = f"receipt_{order.order_number}.pdf"
    path = os.path.join(export_dir, filename)

    c = canvas.Canvas(path, pagesize=A4)
    w, h = A4

    y = h - 50
    c.setFont("Helvetica-Bold", 14)
    c.drawString(40, y, f"ORDER {order.order_number}")
    y -= 20

    c.setFont("Helvetica", 11)
    c.drawString(40, y, f"Date: {order.created_at:%Y-%m-%d %H:%M}")
    y -= 16
    c.drawString(40, y, f"Delivery: {order.delivery_method}")
    y -= 16
    c.drawString(40, y, f"Status: {order.status}")
    y -= 24

    # header
    c.setFont("Helvetica-Bold", 10)
    c.drawString(40, y, "Item")
    c.drawString(310, y, "Qty")
    c.drawString(360, y, "Price")
    c.drawString(440, y, "Total")
    y -= 10
    c.line(40, y, 550, y)
    y -= 16

    c.setFont("Helvetica", 10)
    for it in order.items:
        item_name = it.product_name + _variants_text(it.selected_variants)
        c.drawString(40, y, item_name[:45])
        c.drawRightString(340, y, str(it.quantity))
        c.drawRightString(420, y, f"{it.unit_price:.{settings.decimals}f}")
        c.drawRightString(550, y, f"{it.unit_price * it.quantity:.{settings.decimals}f}")
        y -= 14
        if y < 120:
            c.showPage()
            y = h - 50
            c.setFont("Helvetica", 10)

    y -= 10
    c.line(40, y, 550, y)
    y -= 18
    for label, value in (
        ("Subtotal", order.subtotal),
        ("Shipping", order.shipping_fee),
        ("Tax", order.tax),
    ):
        c.drawRightString(550, y, f"{label}: {money(value)}")
        y -= 14

    y -= 4
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(550, y, f"TOTAL: {money(order.total)}")

    c.save()
    return path
