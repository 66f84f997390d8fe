import io
import logging
from datetime import datetime

import pandas as pd
from fpdf import FPDF

import dbhelper

logger = logging.getLogger(__name__)

SHOP_NAME = 'PJA Stick & 3D Studio'
EXPENSE_COLUMNS = ['date', 'description', 'category', 'type', 'quantity', 'amount']


# ==================================================
# BILL COMPUTATION
# ==================================================
def compute_bill(items: list, customer_name: str = None, date: str = None) -> dict:
    """Apply base + extra discount % to each row; final = discounted price x quantity."""
    lines = []
    for item in items:
        price = float(item.get('price') or 0)
        percent = min(float(item.get('discountPercent') or 0) + float(item.get('extraDiscountPercent') or 0), 100.0)
        quantity = int(item.get('quantity') or 0)
        discount = round(price * percent / 100, 2)
        discounted = round(price - discount, 2)
        lines.append({
            'name': item.get('name') or '',
            'price': price,
            'discountRupees': discount,
            'discountPercent': round(percent, 2),
            'discountedPrice': discounted,
            'quantity': quantity,
            'finalPrice': round(discounted * quantity, 2),
            'stockType': item.get('stockType'),
        })
    billed = [line for line in lines if line['quantity'] > 0]
    return {
        'customerName': customer_name or '',
        'date': date or dbhelper._now().isoformat(),
        'items': billed,
        'totalQuantity': sum(line['quantity'] for line in billed),
        'total': round(sum(line['finalPrice'] for line in billed), 2),
    }


# ==================================================
# SUMMARIES
# ==================================================
def billing_summary(expenses: list) -> dict:
    earned = sum(float(e.get('amount', 0)) for e in expenses
                 if e.get('category') == 'Sale' and e.get('type') in ('Earned', 'Paid'))
    invested = sum(float(e.get('amount', 0)) for e in expenses
                   if e.get('category') in ('Investment', 'Expense') and e.get('type') == 'Paid')
    due = sum(float(e.get('amount', 0)) for e in expenses if e.get('type') == 'Due')
    net = earned - invested
    return {
        'totalEarned': round(earned, 2),
        'totalInvested': round(invested, 2),
        'totalDue': round(due, 2),
        'netProfit': round(net, 2),
        'netProfitPercent': round(net / invested * 100, 2) if invested > 0 else 0,
    }


def _date_key(value) -> str:
    """YYYY-MM-DD for an ISO string or datetime; None when unparseable."""
    if hasattr(value, 'strftime'):
        return value.strftime('%Y-%m-%d')
    parsed = pd.to_datetime(str(value or ''), errors='coerce', utc=True)
    return None if pd.isna(parsed) else parsed.strftime('%Y-%m-%d')


def daily_summary(expenses: list, manual_entries: list) -> list:
    """Sale entries grouped by calendar date merged with manual entries, newest first."""
    days = {}
    for expense in expenses:
        if expense.get('category') != 'Sale':
            continue
        key = _date_key(expense.get('date'))
        if not key:
            continue
        day = days.setdefault(key, {'date': key, 'paperCount': 0, 'amount': 0.0, 'manualEntries': []})
        day['paperCount'] += int(expense.get('quantity') or 0)
        day['amount'] = round(day['amount'] + float(expense.get('amount') or 0), 2)

    for entry in manual_entries:
        key = _date_key(entry.get('date'))
        if not key:
            continue
        day = days.setdefault(key, {'date': key, 'paperCount': 0, 'amount': 0.0, 'manualEntries': []})
        day['paperCount'] += int(entry.get('paperCount') or 0)
        day['amount'] = round(day['amount'] + float(entry.get('amount') or 0), 2)
        day['manualEntries'].append(entry.get('id'))

    return sorted(days.values(), key=lambda d: d['date'], reverse=True)


# ==================================================
# EXPORTS (xlsx via pandas + xlsxwriter, csv, bill pdf via fpdf)
# ==================================================
def expenses_frame(expenses: list) -> pd.DataFrame:
    df = pd.DataFrame(expenses or [], columns=EXPENSE_COLUMNS)
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0)
    df['quantity'] = pd.to_numeric(df['quantity'], errors='coerce').fillna(0).astype(int)
    df.columns = [c.upper() for c in df.columns]
    return df


def export_expenses_csv(expenses: list) -> io.BytesIO:
    output = io.BytesIO(expenses_frame(expenses).to_csv(index=False).encode('utf-8'))
    output.seek(0)
    return output


def export_expenses_xlsx(expenses: list) -> io.BytesIO:
    df = expenses_frame(expenses)
    summary = billing_summary(expenses or [])
    output = io.BytesIO()
    sheet_name = 'Expenses'
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        data_start_row = 3
        df.to_excel(writer, sheet_name=sheet_name, index=False, startrow=data_start_row)

        workbook = writer.book
        worksheet = writer.sheets[sheet_name]
        title_fmt = workbook.add_format({
            'bold': True,
            'font_color': 'white',
            'bg_color': '#1F2937',
            'align': 'center',
            'valign': 'vcenter',
            'font_size': 14,
            'border': 1
        })
        header_fmt = workbook.add_format({
            'bold': True,
            'font_color': 'white',
            'bg_color': '#1F2937',
            'align': 'center',
            'border': 1
        })
        currency_fmt = workbook.add_format({'num_format': '"Rs." #,##0.00', 'border': 1})
        text_fmt = workbook.add_format({'text_wrap': True, 'border': 1})
        label_fmt = workbook.add_format({'bold': True, 'align': 'right'})
        total_fmt = workbook.add_format({'bold': True, 'num_format': '"Rs." #,##0.00'})

        last_col = len(df.columns) - 1
        worksheet.merge_range(0, 0, 0, last_col, f'{SHOP_NAME} - Expense Report', title_fmt)
        worksheet.merge_range(1, 0, 1, last_col, f"Generated {datetime.now().strftime('%B %d, %Y %I:%M %p')}")
        for col_num, value in enumerate(df.columns.values):
            worksheet.write(data_start_row, col_num, value, header_fmt)

        widths = {'DATE': 22, 'DESCRIPTION': 36, 'CATEGORY': 14, 'TYPE': 10, 'QUANTITY': 10, 'AMOUNT': 14}
        for idx, col in enumerate(df.columns):
            worksheet.set_column(idx, idx, widths.get(col, 12), currency_fmt if col == 'AMOUNT' else text_fmt)

        row = data_start_row + len(df) + 2
        for label, key in (('Total Earned:', 'totalEarned'), ('Total Invested:', 'totalInvested'),
                           ('Total Due:', 'totalDue'), ('Net Profit:', 'netProfit')):
            worksheet.write(row, last_col - 1, label, label_fmt)
            worksheet.write(row, last_col, summary[key], total_fmt)
            row += 1
        worksheet.freeze_panes(data_start_row + 1, 0)
    output.seek(0)
    return output


def _safe_text(value) -> str:
    # core PDF fonts are latin-1 only
    return str(value).replace('₹', 'Rs.').encode('latin-1', 'replace').decode('latin-1')


def bill_pdf(bill: dict) -> io.BytesIO:
    pdf = FPDF(orientation='P', unit='mm', format='A4')
    pdf.set_auto_page_break(auto=True, margin=12)
    pdf.add_page()

    pdf.set_fill_color(31, 41, 55)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font('Helvetica', 'B', 14)
    pdf.cell(0, 10, _safe_text(SHOP_NAME), align='C', fill=True)
    pdf.ln()
    pdf.set_text_color(0, 0, 0)
    pdf.set_font('Helvetica', '', 10)
    pdf.ln(2)
    pdf.cell(0, 6, _safe_text(f"Customer: {bill.get('customerName') or 'Walk-in'}"))
    pdf.ln()
    pdf.cell(0, 6, _safe_text(f"Date: {bill.get('date', '')}"))
    pdf.ln(8)

    headers = ['Item', 'Price', 'Disc %', 'Unit', 'Qty', 'Amount']
    widths = [70, 24, 20, 24, 16, 32]
    pdf.set_font('Helvetica', 'B', 9)
    pdf.set_fill_color(245, 247, 250)
    for header, width in zip(headers, widths):
        pdf.cell(width, 7, header, border=1, align='C', fill=True)
    pdf.ln()

    pdf.set_font('Helvetica', '', 9)
    for line in bill.get('items', []):
        row = [
            line['name'],
            f"{line['price']:.2f}",
            f"{line['discountPercent']:.2f}",
            f"{line['discountedPrice']:.2f}",
            str(line['quantity']),
            f"{line['finalPrice']:.2f}",
        ]
        for i, (text, width) in enumerate(zip(row, widths)):
            pdf.cell(width, 7, _safe_text(text), border=1, align='L' if i == 0 else 'R')
        pdf.ln()

    pdf.ln(4)
    pdf.set_font('Helvetica', 'B', 11)
    pdf.cell(0, 7, _safe_text(f"Total Items: {bill.get('totalQuantity', 0)}    Total: Rs. {bill.get('total', 0):,.2f}"), align='R')
    pdf.ln()
    pdf.set_font('Helvetica', '', 8)
    pdf.cell(0, 5, 'Thank you for your business!', align='C')

    output = io.BytesIO(bytes(pdf.output()))
    output.seek(0)
    return output
