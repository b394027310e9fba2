# features/booking/documents.py

import os
from decimal import Decimal
from typing import Any, Dict, List

from reportlab.lib.colors import black, red
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from utils import get_current_ist_time

# --- CONSTANTS ---
ROW_HEIGHT = 0.2 * inch
DEFAULT_OUTPUT_DIR = os.environ.get("BOOKING_FORMS_DIR", "booking_forms")


def _rs(value) -> str:
    return f"Rs.{Decimal(str(value or 0)):,.2f}"


class BookingForm:
    """Printable booking form built from a booking snapshot."""

    def __init__(self, snapshot: Dict[str, Any]):
        self.snapshot = snapshot
        self.booking_number = snapshot.get('booking_number', '')
        self.customer = snapshot.get('customer_details') or {}
        self.price_components: List[Dict[str, Any]] = snapshot.get('price_components') or []
        self.accessories: List[Dict[str, Any]] = snapshot.get('accessories') or []
        self.discounts: List[Dict[str, Any]] = snapshot.get('discounts') or []
        self.payment = snapshot.get('payment') or {}
        self.printed_on = get_current_ist_time().strftime("%d-%m-%Y")

    @property
    def customer_name(self) -> str:
        return f"{self.customer.get('salutation', '')} {self.customer.get('name', '')}".strip()

    def generate_pdf(self, filename: str) -> str:
        c = canvas.Canvas(filename, pagesize=A4)
        width, height = A4
        x_margin = inch
        x_col_split = x_margin + 3.5 * inch
        x_price_col = x_margin + 4.5 * inch
        y_cursor = height - inch

        # --- Title and Header ---
        c.setFont("Helvetica-Bold", 18)
        c.drawString(x_margin, y_cursor, "VEHICLE BOOKING FORM")
        c.setFont("Helvetica-Bold", 12)
        c.drawString(width - x_margin - 2 * inch, y_cursor, f"DATE: {self.printed_on}")
        y_cursor -= 0.3 * inch
        c.line(x_margin, y_cursor, width - x_margin, y_cursor)
        y_cursor -= 0.3 * inch

        # --- 1. Customer & Vehicle ---
        c.setFont("Helvetica-Bold", 12)
        c.drawString(x_margin, y_cursor, "1. CUSTOMER & VEHICLE DETAILS")
        c.drawString(width - x_margin - 2 * inch, y_cursor, f"BOOKING NO: {self.booking_number}")
        y_cursor -= 0.25 * inch
        c.setFont("Helvetica", 10)

        y_col_start = y_cursor
        c.drawString(x_margin, y_cursor, f"Customer: {self.customer_name}")
        y_cursor -= ROW_HEIGHT
        c.drawString(x_margin, y_cursor, f"Mobile: {self.customer.get('mobile1', '')}")
        y_cursor -= ROW_HEIGHT
        c.drawString(x_margin, y_cursor, f"Customer Type: {self.snapshot.get('customer_type', '')}")
        if self.snapshot.get('gstin'):
            y_cursor -= ROW_HEIGHT
            c.drawString(x_margin, y_cursor, f"GSTIN: {self.snapshot['gstin']}")

        y_cursor = y_col_start
        c.drawString(x_col_split, y_cursor, f"Model: {self.snapshot.get('model_name', 'N/A')}")
        y_cursor -= ROW_HEIGHT
        c.drawString(x_col_split, y_cursor, f"Color: {self.snapshot.get('color_name', 'N/A')}")
        y_cursor -= ROW_HEIGHT
        c.drawString(x_col_split, y_cursor, f"RTO: {self.snapshot.get('rto', '')}")
        y_cursor -= 0.5 * inch

        # --- 2. Price Breakdown ---
        c.setFont("Helvetica-Bold", 12)
        c.drawString(x_margin, y_cursor, "2. PRICE BREAKDOWN")
        y_cursor -= 0.25 * inch
        c.setFont("Helvetica", 10)
        for component in self.price_components:
            c.drawString(x_margin, y_cursor, str(component.get('header_key', ''))[:60])
            c.drawString(x_price_col, y_cursor, _rs(component.get('discounted_value')))
            y_cursor -= ROW_HEIGHT

        c.drawString(x_margin, y_cursor, "Accessories:")
        c.drawString(x_price_col, y_cursor, _rs(self.snapshot.get('accessories_total')))
        y_cursor -= ROW_HEIGHT
        c.drawString(x_margin, y_cursor, "RTO Charges:")
        c.drawString(x_price_col, y_cursor, _rs(self.snapshot.get('rto_amount')))
        y_cursor -= ROW_HEIGHT

        c.line(x_price_col, y_cursor + 0.05 * inch, x_price_col + 1.5 * inch, y_cursor + 0.05 * inch)
        y_cursor -= 0.1 * inch
        c.setFont("Helvetica-Bold", 10)
        c.drawString(x_margin, y_cursor, "TOTAL AMOUNT:")
        c.drawString(x_price_col, y_cursor, _rs(self.snapshot.get('total_amount')))
        y_cursor -= 0.3 * inch

        if self.discounts:
            c.setFillColor(red)
            c.drawString(x_margin, y_cursor, "Discount:")
            c.drawString(x_price_col, y_cursor, f"- {_rs(self.snapshot.get('total_discount'))}")
            c.setFillColor(black)
            y_cursor -= 0.3 * inch

        c.setFont("Helvetica-Bold", 12)
        c.drawString(x_margin, y_cursor, "NET PAYABLE:")
        c.drawString(x_price_col, y_cursor, _rs(self.snapshot.get('discounted_amount')))
        y_cursor -= 0.5 * inch

        # --- 3. Payment ---
        c.setFont("Helvetica-Bold", 12)
        c.drawString(x_margin, y_cursor, "3. PAYMENT DETAILS")
        y_cursor -= 0.25 * inch
        c.setFont("Helvetica", 10)
        c.drawString(x_margin, y_cursor, f"Payment Type: {self.payment.get('type', 'CASH')}")
        y_cursor -= ROW_HEIGHT
        if self.payment.get('type') == 'FINANCE':
            c.drawString(x_margin, y_cursor, f"Financer: {self.snapshot.get('financer_name', self.payment.get('financer'))}")
            c.drawString(x_col_split, y_cursor, f"Scheme: {self.payment.get('scheme') or '-'}")
            y_cursor -= ROW_HEIGHT
            if self.payment.get('gc_applicable'):
                c.drawString(x_margin, y_cursor, "GC Amount:")
                c.drawString(x_price_col, y_cursor, _rs(self.payment.get('gc_amount')))
                y_cursor -= ROW_HEIGHT

        # --- Footer Signatures ---
        y_cursor = 1.5 * inch
        c.line(x_margin, y_cursor, x_margin + 2 * inch, y_cursor)
        c.drawCentredString(x_margin + inch, y_cursor - 0.2 * inch, "Customer Signature")
        c.line(width - x_margin - 2 * inch, y_cursor, width - x_margin, y_cursor)
        c.drawCentredString(width - x_margin - inch, y_cursor - 0.2 * inch, "Authorised Signatory")

        c.save()
        return filename


def render_booking_form(snapshot: Dict[str, Any], output_dir: str = DEFAULT_OUTPUT_DIR) -> str:
    """Writes the booking form PDF and returns its path."""
    os.makedirs(output_dir, exist_ok=True)
    filename = os.path.join(output_dir, f"{snapshot.get('booking_number', 'booking')}.pdf")
    return BookingForm(snapshot).generate_pdf(filename)
