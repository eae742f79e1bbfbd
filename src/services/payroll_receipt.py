"""
Payroll Receipt PDF

Renders the payroll payment receipt of one staff member for a month:
header, person and period, a base salary / commission table and the total paid.
"""

import io
import logging
import re
import unicodedata
from datetime import date
from typing import Any, Dict

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.colors import black, grey, lightgrey, white
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

BRAND = "ACADEMIA ALERIS"
AUTHOR = "ALERIS.ops"
FOOTER = "Documento generado automáticamente por ALERIS.ops"


def _money(value: Any) -> str:
    return f"${float(value or 0):,.2f}"


def receipt_filename(full_name: str, year: int, month: int) -> str:
    """Nomina_<nombre>_<AAAA-MM>.pdf, solo ASCII para el header Content-Disposition."""
    ascii_name = unicodedata.normalize("NFKD", full_name or "").encode("ascii", "ignore").decode("ascii")
    safe = re.sub(r"[^A-Za-z0-9]+", "_", ascii_name).strip("_") or "personal"
    return f"Nomina_{safe}_{int(year)}-{int(month):02d}.pdf"


def _styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReceiptTitle", parent=base["Title"], fontSize=20, spaceAfter=6, alignment=TA_CENTER, textColor=black
        ),
        "subtitle": ParagraphStyle(
            "ReceiptSubtitle", parent=base["Heading2"], fontSize=14, spaceAfter=16, alignment=TA_CENTER
        ),
        "body": ParagraphStyle("ReceiptBody", parent=base["Normal"], fontSize=11, spaceAfter=4, alignment=TA_LEFT),
        "total": ParagraphStyle(
            "ReceiptTotal", parent=base["Heading3"], fontSize=14, spaceBefore=8, alignment=TA_LEFT
        ),
        "small": ParagraphStyle(
            "ReceiptSmall", parent=base["Normal"], fontSize=9, alignment=TA_CENTER, textColor=grey
        ),
    }


def build_payroll_receipt(item: Dict[str, Any], period_label: str, issued_on: date) -> bytes:
    """PDF del comprobante; item es una fila de la nómina mensual."""
    styles = _styles()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=20 * mm,
        leftMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Comprobante de Pago de Nómina - {item.get('full_name') or ''}",
        author=AUTHOR,
    )

    table = Table(
        [
            ["Concepto", "Monto"],
            ["Sueldo Base", _money(item.get("base_salary"))],
            [f"Comisiones ({float(item.get('commission_percentage') or 0):g}%)", _money(item.get("commission_amount"))],
        ],
        colWidths=[110 * mm, 50 * mm],
    )
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), lightgrey),
        ('TEXTCOLOR', (0, 0), (-1, 0), black),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ('BACKGROUND', (0, 1), (-1, -1), white),
        ('GRID', (0, 0), (-1, -1), 1, black),
    ]))

    story = [
        Paragraph(BRAND, styles["title"]),
        Paragraph("Comprobante de Pago de Nómina", styles["subtitle"]),
        Paragraph(f"Fecha de emisión: {issued_on.strftime('%d/%m/%Y')}", styles["body"]),
        Paragraph(f"Instructor: {item.get('full_name') or ''}", styles["body"]),
        Paragraph(f"Periodo: {period_label}", styles["body"]),
        Spacer(1, 10),
        table,
        Paragraph(f"TOTAL PAGADO: {_money(item.get('total_payable'))}", styles["total"]),
        Spacer(1, 30),
        Paragraph(FOOTER, styles["small"]),
    ]
    try:
        doc.build(story)
    except Exception as e:
        logger.error(f"Error generando comprobante de nómina: {e}")
        raise
    return buffer.getvalue()
