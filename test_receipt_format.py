import datetime as dt
import unittest
from decimal import Decimal

from receipt_format import (
    LINE_WIDTH,
    BusinessIdentity,
    ReceiptData,
    ReceiptFormatter,
    ReceiptItem,
    absolute_logo_url,
    center_text,
    format_line,
    pad_left,
    truncate_text,
)

RULE = "-" * 32


class LayoutHelpersTest(unittest.TestCase):
    def test_center_pads_left_only(self):
        self.assertEqual(center_text("NITRO STORE"), " " * 10 + "NITRO STORE")
        self.assertEqual(center_text("x" * 40), "x" * 40)

    def test_pad_left(self):
        self.assertEqual(pad_left("abc"), " " * 29 + "abc")

    def test_truncate(self):
        name = "Organic whole bean coffee, 1kg dark roast"
        self.assertEqual(len(name), 41)
        self.assertEqual(truncate_text(name, 17), "Organic whole ...")
        self.assertEqual(len(truncate_text(name, 17)), 17)
        self.assertEqual(truncate_text("Short", 17), "Short")

    def test_format_line_is_exactly_one_row(self):
        line = format_line("TOTAL:", "$22.50")
        self.assertEqual(len(line), LINE_WIDTH)
        self.assertTrue(line.startswith("TOTAL:" + " " * 9))
        self.assertTrue(line.endswith("$22.50"))

    def test_absolute_logo_url(self):
        self.assertEqual(absolute_logo_url("http://shop.local/", "/media/logo.png"),
                         "http://shop.local/media/logo.png")
        self.assertEqual(absolute_logo_url(None, "https://cdn/logo.png"), "https://cdn/logo.png")
        self.assertIsNone(absolute_logo_url(None, "media/logo.png"))
        self.assertIsNone(absolute_logo_url("http://shop.local", "  "))


class ReceiptFormatterTest(unittest.TestCase):
    def setUp(self):
        self.formatter = ReceiptFormatter()
        self.data = ReceiptData(
            code="POS-1",
            created_at=dt.datetime(2024, 1, 15, 10, 30, 0),
            items=[
                ReceiptItem("Coffee beans", Decimal("2"), Decimal("10.00")),
                ReceiptItem("A very long product name over width", Decimal("1"), Decimal("2.5")),
            ],
            payment_method="cash",
            client_name="CLIENT-1",
            cash_amount=Decimal("30"),
            change=Decimal("7.50"),
        )

    def test_full_ticket(self):
        expected = [
            " " * 10 + "NITRO STORE",
            " " * 7 + "Av. Principal #123",
            " " * 8 + "+1 234 567 8900",
            " " * 5 + "Tax ID: TAX-123456789",
            "",
            RULE,
            "Ticket: POS-1",
            "Date: 2024-01-15 10:30:00",
            "Cashier: POS System",
            "Client: CLIENT-1",
            "",
            RULE,
            "PRODUCTS:",
            "",
            "Coffee beans",
            " " * 13 + "2 x $10.00 = $20.00",
            "",
            "A very long pr...",
            " " * 15 + "1 x $2.50 = $2.50",
            "",
            RULE,
            "Subtotal:" + " " * 6 + " " * 11 + "$22.50",
            "Tax:" + " " * 11 + " " * 12 + "$0.00",
            "TOTAL:" + " " * 9 + " " * 11 + "$22.50",
            "",
            "Payment Method: CASH",
            "Cash Received:" + " " + " " * 11 + "$30.00",
            "Change:" + " " * 8 + " " * 12 + "$7.50",
            "",
            RULE,
            " " * 2 + "Thank you for your purchase!",
            " " * 5 + "Please come back soon",
            "",
            " " * 5 + "Powered by RedFox POS",
            "",
            " " * 11 + "2024-01-15",
            "",
            "",
        ]
        text = self.formatter.render_text(self.data, printed_on=dt.date(2024, 1, 15))
        self.assertEqual(text.split("\n"), expected)
        self.assertTrue(all(len(line) <= LINE_WIDTH for line in text.split("\n")))

    def test_defaults_for_missing_cashier_and_client(self):
        self.data.client_name = None
        self.data.cashier_name = None
        text = self.formatter.render_text(self.data)
        self.assertIn("Cashier: POS System", text)
        self.assertIn("Client: Walk-in Customer", text)

    def test_card_payment_has_no_cash_lines(self):
        self.data.payment_method = "card"
        text = self.formatter.render_text(self.data)
        self.assertIn("Payment Method: CARD", text)
        self.assertNotIn("Cash Received:", text)
        self.assertNotIn("Change:", text)

    def test_tax_is_added_to_total(self):
        self.data.items = [ReceiptItem("Soda", Decimal("3"), Decimal("1.00"), tax_rate=Decimal("10"))]
        lines = self.formatter.render_text(self.data).split("\n")
        self.assertIn(format_line("Tax:", "$0.30"), lines)
        self.assertIn(format_line("TOTAL:", "$3.30"), lines)

    def test_custom_identity(self):
        formatter = ReceiptFormatter(BusinessIdentity("CORNER SHOP", "1 Main St", "555", "T-1"),
                                     attribution="Thanks")
        text = formatter.render_text(self.data)
        self.assertTrue(text.startswith(center_text("CORNER SHOP")))
        self.assertIn(center_text("Tax ID: T-1"), text)

    def test_html_wraps_escaped_text(self):
        formatter = ReceiptFormatter(BusinessIdentity(name="A&B"), logo_url="http://shop.local/logo.png")
        page = formatter.render_html(self.data)
        self.assertIn('<pre class="ticket-content">', page)
        self.assertIn("A&amp;B", page)
        self.assertIn('<img src="http://shop.local/logo.png"', page)
        self.assertIn("width: 70mm", page)
        self.assertNotIn("ticket-logo", self.formatter.render_html(self.data))


if __name__ == "__main__":
    unittest.main()
