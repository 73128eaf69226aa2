import io
from decimal import Decimal

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

HEADERS = ['MONTH', 'SALESPERSON', 'EMAIL', 'JOB', 'PHASE', 'RATE', 'BASE AMOUNT', 'COMMISSION']
COLUMN_WIDTHS = [10, 28, 32, 36, 11, 8, 15, 15]


def commission_export_filename(month=None):
    return f"commissions_{month}.xlsx" if month else "commissions_all.xlsx"


def build_commission_workbook(commissions, summary, month=None):
    """
    Payout sheet listing every commission row, plus a per-salesperson summary
    sheet. Returns a BytesIO positioned at the start.
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = f"Commissions {month}" if month else "Commissions"

    # Define styles
    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
    total_font = Font(bold=True)
    total_fill = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
    border = Border(left=Side(style='thin'), right=Side(style='thin'),
                    top=Side(style='thin'), bottom=Side(style='thin'))
    center_align = Alignment(horizontal='center')
    right_align = Alignment(horizontal='right')

    for col, header in enumerate(HEADERS, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = center_align
        cell.border = border

    row = 2
    grand_total = Decimal('0.00')
    for commission in commissions:
        user = commission.user
        ws.cell(row=row, column=1, value=commission.paid_month)
        ws.cell(row=row, column=2, value=user.full_name if user else commission.user_id)
        ws.cell(row=row, column=3, value=user.email if user else '')
        ws.cell(row=row, column=4, value=commission.job.job_name if commission.job else commission.job_id)
        ws.cell(row=row, column=5, value=commission.phase)
        ws.cell(row=row, column=6, value=float(commission.rate))
        ws.cell(row=row, column=7, value=float(commission.base_amount))
        ws.cell(row=row, column=8, value=float(commission.amount))
        grand_total += commission.amount

        ws.cell(row=row, column=6).number_format = '0.00%'
        for col in (7, 8):
            ws.cell(row=row, column=col).number_format = '"$"#,##0.00'
        for col in range(1, len(HEADERS) + 1):
            cell = ws.cell(row=row, column=col)
            cell.border = border
            if col >= 6:
                cell.alignment = right_align
        row += 1

    ws.cell(row=row, column=7, value="TOTAL")
    ws.cell(row=row, column=8, value=float(grand_total))
    ws.cell(row=row, column=8).number_format = '"$"#,##0.00'
    for col in range(1, len(HEADERS) + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = total_font
        cell.fill = total_fill
        cell.border = border

    for col, width in enumerate(COLUMN_WIDTHS, 1):
        ws.column_dimensions[get_column_letter(col)].width = width

    # Summary sheet
    summary_ws = wb.create_sheet("Summary")
    for col, header in enumerate(['USER ID', 'FRONTEND', 'BACKEND', 'TOTAL'], 1):
        cell = summary_ws.cell(row=1, column=col, value=header)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = center_align
        cell.border = border

    for row, (user_id, amounts) in enumerate(summary.items(), 2):
        summary_ws.cell(row=row, column=1, value=user_id).border = border
        for col, key in enumerate(('frontend', 'backend', 'total'), 2):
            cell = summary_ws.cell(row=row, column=col, value=float(amounts[key]))
            cell.number_format = '"$"#,##0.00'
            cell.alignment = right_align
            cell.border = border
    summary_ws.column_dimensions['A'].width = 40
    for letter in ('B', 'C', 'D'):
        summary_ws.column_dimensions[letter].width = 15

    # Save to memory
    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output
