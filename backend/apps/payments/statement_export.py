"""
Project statement export for PDF and Excel.

A read-only snapshot of a project's invoices and payout position.
Access rules are enforced in the view; this module is pure I/O.
"""

import io

from django.utils import timezone

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from apps.payments import calculation
from apps.projects.models import Project
from core.exceptions import NotFoundError

INVOICE_HEADERS = ["Invoice", "Kind", "Milestone", "Amount", "Status", "Paid At"]


def _fmt_dt(value):
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _statement_data(project_id):
    project = (
        Project.objects.select_related("freelancer", "commissioner")
        .filter(project_id=project_id)
        .first()
    )
    if project is None:
        raise NotFoundError(f"Project {project_id} does not exist")
    invoices = list(project.invoices.order_by("created_at", "invoice_number"))
    return project, invoices


def _summary_rows(project):
    return [
        ["Project", project.project_id],
        ["Title", project.title],
        ["Status", project.status],
        ["Invoicing", project.invoicing_method],
        ["Freelancer", project.freelancer.display_name],
        ["Commissioner", project.commissioner.display_name],
        ["Total Budget", str(project.total_budget)],
        ["Paid To Date", str(project.paid_to_date)],
        ["Remaining", str(calculation.remaining_budget(project))],
    ]


def _invoice_row(invoice):
    return [
        invoice.invoice_number,
        invoice.kind,
        str(invoice.milestone_number) if invoice.milestone_number else "-",
        str(invoice.total_amount),
        invoice.status,
        _fmt_dt(invoice.paid_at),
    ]


def _filename(project, extension):
    ts = timezone.now().strftime("%Y%m%d_%H%M")
    return f"statement_{project.project_id}_{ts}.{extension}"


def export_project_statement_pdf(project_id):
    """
    Generate a PDF statement for a project.
    Returns (bytes, filename).
    """
    project, invoices = _statement_data(project_id)

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=inch,
        leftMargin=inch,
        topMargin=inch,
        bottomMargin=inch,
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "StatementTitle",
        parent=styles["Heading1"],
        fontSize=16,
        alignment=TA_CENTER,
        spaceAfter=12,
    )
    heading_style = ParagraphStyle(
        "StatementHeading",
        parent=styles["Heading2"],
        fontSize=12,
        spaceAfter=6,
    )

    story = [
        Paragraph(f"Project Statement - {project.title}", title_style),
        Spacer(1, 12),
        Paragraph("Summary", heading_style),
    ]
    summary = Table(_summary_rows(project), colWidths=[2 * inch, 4 * inch])
    summary.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (0, -1), colors.lightgrey),
                ("ALIGN", (0, 0), (0, -1), "RIGHT"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ]
        )
    )
    story += [summary, Spacer(1, 20), Paragraph("Invoices", heading_style)]

    if invoices:
        rows = [INVOICE_HEADERS] + [_invoice_row(inv) for inv in invoices]
        table = Table(rows, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("ALIGN", (3, 1), (3, -1), "RIGHT"),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ]
            )
        )
        story.append(table)
    else:
        story.append(Paragraph("<i>No invoices issued</i>", styles["Normal"]))

    story += [
        Spacer(1, 12),
        Paragraph(
            f"<i>Exported on {timezone.now().strftime('%Y-%m-%d %H:%M UTC')}</i>",
            styles["Normal"],
        ),
    ]
    doc.build(story)
    buffer.seek(0)
    return buffer.read(), _filename(project, "pdf")


def export_project_statement_excel(project_id):
    """
    Generate an Excel statement for a project.
    Returns (bytes, filename).
    """
    from openpyxl import Workbook
    from openpyxl.styles import Border, Font, PatternFill, Side
    from openpyxl.utils import get_column_letter

    project, invoices = _statement_data(project_id)

    wb = Workbook()
    ws = wb.active
    ws.title = "Statement"

    header_font = Font(bold=True)
    header_fill = PatternFill(
        start_color="DDDDDD", end_color="DDDDDD", fill_type="solid"
    )
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)

    row = 1
    ws.cell(row=row, column=1, value="Summary").font = header_font
    row += 1
    for label, value in _summary_rows(project):
        ws.cell(row=row, column=1, value=label)
        ws.cell(row=row, column=2, value=value)
        row += 1
    row += 1

    ws.cell(row=row, column=1, value="Invoices").font = header_font
    row += 1
    for col, header in enumerate(INVOICE_HEADERS, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.border = border
    row += 1

    for invoice in invoices:
        values = _invoice_row(invoice)
        values[3] = float(invoice.total_amount)
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value).border = border
        row += 1

    row += 1
    ws.cell(
        row=row,
        column=1,
        value=f"Exported on {timezone.now().strftime('%Y-%m-%d %H:%M UTC')}",
    ).font = Font(italic=True)

    for col in range(1, len(INVOICE_HEADERS) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 20

    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer.read(), _filename(project, "xlsx")
