from fpdf import FPDF

from utils.formatters import format_date_long

NEXT_LINE = {'new_x': 'LMARGIN', 'new_y': 'NEXT'}


def _latin1(text) -> str:
    # Core PDF fonts only cover latin-1
    return str(text if text is not None else '').encode('latin-1', 'replace').decode('latin-1')


def generate_receipt_pdf(transaction: dict, property_row: dict, tenant: dict = None) -> bytes:
    """
    Generates a PDF receipt for a single income or expense transaction.
    """
    currency = transaction.get('currency') or property_row.get('currency') or 'USD'
    amount = float(transaction.get('amount') or 0)
    kind = "Payment Receipt" if transaction.get('transaction_type') == 'income' else "Expense Record"

    pdf = FPDF()
    pdf.add_page()

    # Title
    pdf.set_font("helvetica", "B", 16)
    pdf.cell(0, 10, kind, align="C", **NEXT_LINE)
    pdf.ln(10)

    # Property and tenant
    pdf.set_font("helvetica", "B", 12)
    pdf.cell(0, 10, _latin1(f"Property: {property_row.get('title') or 'N/A'}"), **NEXT_LINE)
    if tenant:
        name = f"{tenant.get('first_name', '')} {tenant.get('last_name', '')}".strip()
        pdf.cell(0, 10, _latin1(f"Tenant: {name}"), **NEXT_LINE)
    pdf.ln(5)

    pdf.set_font("helvetica", size=12)
    pdf.cell(0, 10, f"Date: {format_date_long(transaction.get('transaction_date'))}", **NEXT_LINE)
    pdf.cell(0, 10, _latin1(f"Reference: {transaction.get('id') or 'N/A'}"), **NEXT_LINE)
    pdf.ln(10)

    # Line item
    pdf.set_font("helvetica", "B", 12)
    pdf.cell(100, 10, "Description", border=1)
    pdf.cell(40, 10, "Category", border=1)
    pdf.cell(40, 10, "Amount", border=1, align="R", **NEXT_LINE)

    pdf.set_font("helvetica", size=12)
    description = transaction.get('description') or (transaction.get('category') or 'other').replace('_', ' ').title()
    pdf.cell(100, 10, _latin1(description[:48]), border=1)
    pdf.cell(40, 10, _latin1((transaction.get('category') or 'other').replace('_', ' ')), border=1)
    pdf.cell(40, 10, f"{amount:,.2f} {currency}", border=1, align="R", **NEXT_LINE)

    pdf.set_font("helvetica", "B", 12)
    pdf.cell(140, 10, "Total", border=1)
    pdf.cell(40, 10, f"{amount:,.2f} {currency}", border=1, align="R", **NEXT_LINE)
    pdf.ln(10)

    if transaction.get('notes'):
        pdf.set_font("helvetica", size=10)
        pdf.multi_cell(0, 6, _latin1(f"Notes: {transaction['notes']}"))
        pdf.ln(5)

    pdf.set_font("helvetica", "I", 12)
    pdf.cell(0, 10, "Generated by PropertyPilot", align="C", **NEXT_LINE)

    return bytes(pdf.output())
