"""
PDF Report Generation Module

Customer-facing estimate documents:
- Line item table grouped in estimate order
- Subtotal / markup / total summary
- Approval and validity notes

Styles, table styling and table building are kept in separate classes so
further reports can share them.
"""

from reportlab.lib.pagesizes import letter
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib import colors
from reportlab.lib.units import inch
from io import BytesIO
from datetime import datetime
from xml.sax.saxutils import escape

from crm.utils import format_currency


# ============================================================================
# CONSTANTS AND CONFIGURATION
# ============================================================================

class CRMTheme:
    """Color scheme for customer documents"""
    PRIMARY = colors.Color(0.13, 0.33, 0.55)
    DARK = colors.Color(0.07, 0.2, 0.36)
    GRAY = colors.Color(0.95, 0.95, 0.95)
    WHITE = colors.white
    BLACK = colors.black


class PageDimensions:
    MARGIN_SIDE = 0.6 * inch
    MARGIN_TOP = 0.5 * inch


# ============================================================================
# CENTRALIZED STYLES
# ============================================================================

class PDFStyles:
    """Centralized style definitions for all PDF elements"""

    def __init__(self):
        self.base_styles = getSampleStyleSheet()
        self._create_custom_styles()

    def _create_custom_styles(self):
        self.title_style = ParagraphStyle(
            'EstimateTitle',
            parent=self.base_styles['Heading1'],
            fontSize=22,
            textColor=CRMTheme.PRIMARY,
            alignment=1  # Center alignment
        )

        self.section_title_style = ParagraphStyle(
            'SectionTitle',
            parent=self.base_styles['Heading3'],
            fontSize=14,
            textColor=CRMTheme.PRIMARY,
            spaceAfter=10
        )

        self.table_header_style = ParagraphStyle(
            'TableHeaderStyle',
            parent=self.base_styles['Normal'],
            fontSize=10,
            leading=12,
            fontName='Helvetica-Bold',
            textColor=CRMTheme.WHITE,
            alignment=1
        )

        self.table_cell_style = ParagraphStyle(
            'TableCellStyle',
            parent=self.base_styles['Normal'],
            fontSize=9,
            leading=11,
            wordWrap='LTR'
        )

        self.info_style = self.base_styles['Normal']

        self.notice_style = ParagraphStyle(
            'Notice',
            parent=self.base_styles['Normal'],
            fontSize=11,
            fontName='Helvetica-Bold',
            textColor=CRMTheme.DARK,
            alignment=1,
            spaceBefore=8,
            spaceAfter=8
        )


class TableStyler:
    """Centralized table styling functionality"""

    @staticmethod
    def get_base_table_style():
        return TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), CRMTheme.PRIMARY),
            ('TEXTCOLOR', (0, 0), (-1, 0), CRMTheme.WHITE),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('GRID', (0, 0), (-1, -1), 0.5, CRMTheme.BLACK),
            ('TOPPADDING', (0, 0), (-1, 0), 6),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ])

    @staticmethod
    def apply_alternating_rows(table, row_count, start_row=1, end_offset=0):
        for i in range(start_row, row_count - end_offset):
            background = CRMTheme.WHITE if i % 2 == 1 else CRMTheme.GRAY
            table.setStyle(TableStyle([('BACKGROUND', (0, i), (-1, i), background)]))

    @staticmethod
    def style_line_item_table(table, row_count):
        table.setStyle(TableStyler.get_base_table_style())
        table.setStyle(TableStyle([
            ('FONTSIZE', (0, 1), (-1, -1), 9),
            ('ALIGN', (0, 1), (0, -1), 'CENTER'),
            ('ALIGN', (2, 1), (-1, -1), 'RIGHT'),
        ]))
        TableStyler.apply_alternating_rows(table, row_count)

    @staticmethod
    def style_totals_table(table):
        table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (0, -1), 'LEFT'),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('FONTSIZE', (0, 0), (-1, -1), 11),
            ('LINEABOVE', (0, -1), (-1, -1), 1.5, CRMTheme.PRIMARY),
            ('BACKGROUND', (0, -1), (-1, -1), CRMTheme.DARK),
            ('TEXTCOLOR', (0, -1), (-1, -1), CRMTheme.WHITE),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('TOPPADDING', (0, -1), (-1, -1), 6),
            ('BOTTOMPADDING', (0, -1), (-1, -1), 6),
        ]))


class TableBuilder:
    """Centralized table building functionality"""

    def __init__(self, styles: PDFStyles):
        self.styles = styles

    def create_header_paragraphs(self, headers):
        return [Paragraph(header, self.styles.table_header_style) for header in headers]

    def build_line_item_table(self, line_items):
        headers = ['#', 'Description', 'Qty', 'Unit', 'Unit Price', 'Total']
        table_data = [self.create_header_paragraphs(headers)]

        for i, item in enumerate(line_items, 1):
            table_data.append([
                str(i),
                Paragraph(escape(item.description), self.styles.table_cell_style),
                f"{item.quantity.normalize():f}",
                item.unit,
                format_currency(item.unit_price),
                format_currency(item.total),
            ])

        table = Table(table_data, colWidths=[0.3*inch, 3.6*inch, 0.7*inch, 0.5*inch, 0.9*inch, 1.0*inch],
                      repeatRows=1)
        TableStyler.style_line_item_table(table, len(table_data))
        return table

    def build_totals_table(self, estimate):
        table_data = [
            ['Subtotal', format_currency(estimate.subtotal)],
            [f'Markup ({estimate.markup_percentage.normalize():f}%)',
             format_currency(estimate.total_amount - estimate.subtotal)],
            ['Total', format_currency(estimate.total_amount)],
        ]
        table = Table(table_data, colWidths=[4.5*inch, 2.5*inch])
        TableStyler.style_totals_table(table)
        return table


def generate_estimate_pdf(estimate):
    """
    Generate the customer estimate PDF.

    Args:
        estimate: crm.models.Estimate row, with its job loaded

    Returns:
        BytesIO: PDF buffer ready for download
    """
    priced = estimate.to_priced()
    styles = PDFStyles()
    table_builder = TableBuilder(styles)

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        leftMargin=PageDimensions.MARGIN_SIDE,
        rightMargin=PageDimensions.MARGIN_SIDE,
        topMargin=PageDimensions.MARGIN_TOP,
        bottomMargin=PageDimensions.MARGIN_TOP,
        title=f"Estimate {estimate.estimate_number}",
    )

    story = []
    story.append(Paragraph("Estimate", styles.title_style))
    _add_estimate_info(story, styles, estimate)
    story.append(Spacer(1, 14))

    story.append(Paragraph("Scope of Work", styles.section_title_style))
    story.append(table_builder.build_line_item_table(priced.line_items))
    story.append(Spacer(1, 14))
    story.append(table_builder.build_totals_table(priced))

    if priced.approval_message:
        story.append(Paragraph(priced.approval_message, styles.notice_style))
    if estimate.valid_until:
        story.append(Paragraph(
            f"This estimate is valid until {estimate.valid_until.strftime('%B %d, %Y')}.",
            styles.info_style
        ))

    doc.build(story)
    buffer.seek(0)
    return buffer


def _add_estimate_info(story, styles, estimate):
    job = estimate.job
    story.append(Paragraph(f"<b>Job:</b> {escape(job.job_name)}", styles.info_style))
    if job.lead is not None:
        story.append(Paragraph(f"<b>Customer:</b> {escape(job.lead.name)}", styles.info_style))
    story.append(Paragraph(f"<b>Estimate #:</b> {estimate.estimate_number} (Rev. {estimate.revision_number})",
                           styles.info_style))
    story.append(Paragraph(f"<b>Service:</b> {(estimate.service_type or job.service_type).title()}",
                           styles.info_style))
    story.append(Paragraph(f"<b>Status:</b> {estimate.status.replace('_', ' ').title()}", styles.info_style))
    story.append(Paragraph(f"<b>Generated:</b> {datetime.now().strftime('%B %d, %Y at %I:%M %p')}",
                           styles.info_style))


def get_estimate_filename(estimate):
    """Generate a standardized filename for the estimate PDF"""
    safe_name = estimate.job.job_name.replace(" ", "_").replace("/", "_")
    return f"{estimate.estimate_number}_{safe_name}.pdf"
