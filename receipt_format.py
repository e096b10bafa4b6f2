"""
Fixed-width ticket layout for 70mm thermal printers.

The text layout is consumed by printer firmware as-is, so every column here
matters: 32 characters per line, centering pads on the left only, and
trailing spaces are never emitted by the centering helper.
"""
import datetime as dt
import html
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Union

from pos_money import ZERO, money_str, number_str, to_decimal

LINE_WIDTH = 32
LABEL_WIDTH = 15
NAME_MARGIN = 15


@dataclass
class BusinessIdentity:
    name: str = "NITRO STORE"
    address: str = "Av. Principal #123"
    phone: str = "+1 234 567 8900"
    tax_id: str = "TAX-123456789"


@dataclass
class ReceiptItem:
    name: str
    quantity: Decimal
    price: Decimal
    tax_rate: Decimal = ZERO  # percent

    @property
    def total(self) -> Decimal:
        return to_decimal(self.quantity) * to_decimal(self.price)

    @property
    def tax(self) -> Decimal:
        return self.total * (to_decimal(self.tax_rate) / Decimal(100))


@dataclass
class ReceiptData:
    code: str
    created_at: Union[dt.datetime, str]
    items: List[ReceiptItem] = field(default_factory=list)
    payment_method: str = "cash"
    cashier_name: Optional[str] = None
    client_name: Optional[str] = None
    cash_amount: Optional[Decimal] = None
    change: Optional[Decimal] = None


def center_text(text: str, width: int = LINE_WIDTH) -> str:
    padding = max(0, (width - len(text)) // 2)
    return " " * padding + text


def pad_left(text: str, width: int = LINE_WIDTH) -> str:
    return text.rjust(width)


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def format_line(label: str, value: str, width: int = LINE_WIDTH) -> str:
    return label.ljust(LABEL_WIDTH) + value.rjust(width - LABEL_WIDTH)


def _dollars(value) -> str:
    return f"${money_str(value)}"


def _format_date(value) -> str:
    if isinstance(value, dt.datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value or "")


def absolute_logo_url(base_url: Optional[str], path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    text = str(path).strip()
    if not text:
        return None
    if text.lower().startswith(("http://", "https://", "data:")):
        return text
    if not base_url:
        return None
    return base_url.rstrip("/") + "/" + text.lstrip("/")


class ReceiptFormatter:
    def __init__(self, business: Optional[BusinessIdentity] = None,
                 attribution: str = "Powered by RedFox POS",
                 width: int = LINE_WIDTH,
                 logo_url: Optional[str] = None):
        if width <= LABEL_WIDTH:
            raise ValueError(f"Receipt width must exceed {LABEL_WIDTH}")
        self.business = business or BusinessIdentity()
        self.attribution = attribution
        self.width = width
        self.logo_url = logo_url

    def render_text(self, data: ReceiptData, printed_on: Optional[dt.date] = None) -> str:
        width = self.width
        rule = "-" * width
        lines: List[str] = []

        lines.append(center_text(self.business.name, width))
        lines.append(center_text(self.business.address, width))
        lines.append(center_text(self.business.phone, width))
        lines.append(center_text(f"Tax ID: {self.business.tax_id}", width))
        lines.append("")
        lines.append(rule)

        lines.append(f"Ticket: {data.code}")
        lines.append(f"Date: {_format_date(data.created_at)}")
        lines.append(f"Cashier: {data.cashier_name or 'POS System'}")
        lines.append(f"Client: {data.client_name or 'Walk-in Customer'}")
        lines.append("")
        lines.append(rule)

        lines.append("PRODUCTS:")
        lines.append("")
        subtotal = ZERO
        total_tax = ZERO
        for item in data.items:
            subtotal += item.total
            total_tax += item.tax
            lines.append(truncate_text(item.name, width - NAME_MARGIN))
            qty_line = f"{number_str(item.quantity)} x {_dollars(item.price)} = {_dollars(item.total)}"
            lines.append(pad_left(qty_line, width))
            lines.append("")

        lines.append(rule)
        lines.append(format_line("Subtotal:", _dollars(subtotal), width))
        lines.append(format_line("Tax:", _dollars(total_tax), width))
        lines.append(format_line("TOTAL:", _dollars(subtotal + total_tax), width))
        lines.append("")

        method = (data.payment_method or "").lower()
        lines.append(f"Payment Method: {method.upper()}")
        if method == "cash" and data.cash_amount:
            lines.append(format_line("Cash Received:", _dollars(data.cash_amount), width))
            if data.change is not None:
                lines.append(format_line("Change:", _dollars(data.change), width))
        lines.append("")

        lines.append(rule)
        lines.append(center_text("Thank you for your purchase!", width))
        lines.append(center_text("Please come back soon", width))
        lines.append("")
        lines.append(center_text(self.attribution, width))
        lines.append("")
        lines.append(center_text((printed_on or dt.date.today()).strftime("%Y-%m-%d"), width))
        lines.append("")
        lines.append("")  # room for the cutter
        return "\n".join(lines)

    def render_html(self, data: ReceiptData, printed_on: Optional[dt.date] = None) -> str:
        text = html.escape(self.render_text(data, printed_on))
        title = html.escape(f"Ticket - {data.code}")
        logo = ""
        if self.logo_url:
            logo = (
                '<div class="ticket-logo" style="text-align: right;">'
                f'<img src="{html.escape(self.logo_url, quote=True)}" alt="logo" style="max-width: 30mm;"></div>'
            )
        return (
            "<!DOCTYPE html>\n"
            "<html>\n<head>\n"
            f"<title>{title}</title>\n"
            "<style>\n"
            "body { font-family: 'Courier New', monospace; font-size: 12px; line-height: 1.2;"
            " margin: 0; padding: 10px; width: 70mm; max-width: 70mm; }\n"
            ".ticket-content { white-space: pre; width: 100%; max-width: 70mm; margin: 0; }\n"
            "</style>\n</head>\n<body>\n"
            f"{logo}"
            f'<pre class="ticket-content">{text}</pre>\n'
            "</body>\n</html>\n"
        )

