"""
Purchase invoice PDF (reportlab canvas, A4, one page).
Returns raw bytes; the caller stores them base64-encoded on the invoice.
"""

from io import BytesIO
from typing import Any, Dict

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from config import COMPANY_NAME
from services.allocation import CostCategory


def _money(value: Any) -> str:
    return f"AED {float(value or 0):,.2f}"


def render_invoice_pdf(invoice: Dict[str, Any]) -> bytes:
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    vehicle = invoice.get("vehicle") or {}
    totals = invoice.get("totals") or {}
    payment = invoice.get("payment") or {}

    c.setFont("Helvetica-Bold", 16)
    c.drawString(0.75 * inch, height - 0.85 * inch, COMPANY_NAME)
    c.setFont("Helvetica-Bold", 22)
    c.drawRightString(width - 0.75 * inch, height - 0.90 * inch, "Invoice")

    c.setFont("Helvetica", 10)
    c.drawRightString(width - 0.75 * inch, height - 1.20 * inch, f"Invoice #: {invoice['invoice_number']}")
    c.drawRightString(width - 0.75 * inch, height - 1.38 * inch, f"Date: {invoice['created_at'][:10]}")
    if invoice.get("po_number"):
        c.drawRightString(width - 0.75 * inch, height - 1.56 * inch, f"PO Ref: {invoice['po_number']}")

    c.setStrokeColor(colors.HexColor("#1f2937"))
    c.setLineWidth(1)
    c.rect(0.75 * inch, height - 2.45 * inch, 3.3 * inch, 0.9 * inch, stroke=1, fill=0)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(0.85 * inch, height - 1.72 * inch, "Investor")
    c.setFont("Helvetica", 9.5)
    c.drawString(0.85 * inch, height - 1.92 * inch, invoice.get("investor_name") or "")
    c.drawString(0.85 * inch, height - 2.08 * inch, f"Share: {invoice.get('percentage') or 0}%")
    c.drawString(0.85 * inch, height - 2.24 * inch, f"Prepared by: {invoice.get('prepared_by') or ''}")

    c.setFont("Helvetica-Bold", 10)
    c.drawString(4.35 * inch, height - 1.72 * inch, "Vehicle")
    c.setFont("Helvetica", 9.5)
    title = " ".join(str(vehicle.get(k)) for k in ("year", "make", "model", "trim") if vehicle.get(k))
    c.drawString(4.35 * inch, height - 1.92 * inch, title)
    c.drawString(4.35 * inch, height - 2.08 * inch, f"Chassis: {vehicle.get('vin') or 'N/A'}")
    c.drawString(4.35 * inch, height - 2.24 * inch, f"Lead: {invoice.get('lead_number') or ''}")

    table_top = height - 3.0 * inch
    c.setFillColor(colors.HexColor("#e5e7eb"))
    c.rect(0.75 * inch, table_top, width - 1.5 * inch, 0.32 * inch, stroke=0, fill=1)
    c.setFillColor(colors.black)
    c.setFont("Helvetica-Bold", 9)
    c.drawString(0.85 * inch, table_top + 0.12 * inch, "Description")
    c.drawRightString(width - 0.85 * inch, table_top + 0.12 * inch, "Amount")

    lines = [("Buying Price", totals.get("buying_price"))]
    lines += [(category.label, totals.get(category.value)) for category in CostCategory]

    y = table_top - 0.25 * inch
    c.setFont("Helvetica", 9)
    for label, amount in lines:
        c.drawString(0.85 * inch, y, label)
        c.drawRightString(width - 0.85 * inch, y, _money(amount))
        y -= 0.22 * inch

    y -= 0.10 * inch
    c.setLineWidth(0.7)
    c.line(width - 3.0 * inch, y, width - 0.85 * inch, y)
    y -= 0.25 * inch
    c.setFont("Helvetica-Bold", 11)
    c.drawRightString(width - 2.2 * inch, y, "Total Amount Payable:")
    c.drawRightString(width - 0.85 * inch, y, _money(totals.get("total_amount_payable")))

    y -= 0.55 * inch
    c.setFont("Helvetica", 9.5)
    c.drawString(0.85 * inch, y, f"Mode of payment: {payment.get('mode_of_payment') or ''}")
    c.drawString(0.85 * inch, y - 0.20 * inch, f"Payment received by: {payment.get('payment_received_by') or ''}")

    c.showPage()
    c.save()
    return buffer.getvalue()
