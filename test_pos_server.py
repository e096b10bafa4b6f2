import unittest

from cart_storage import MemoryStorage, connect
from cart_store import CartStore
from cash_ledger import CashLedger
from pos_api import MockPosApi
from pos_errors import NetworkError
from pos_server import create_app

COFFEE = {"id": "A", "name": "Coffee", "price": "10"}


class RecordingPrinter:
    def __init__(self):
        self.printed = []

    def print_text(self, text, reference=""):
        self.printed.append(reference)


class PosServerTest(unittest.TestCase):
    def setUp(self):
        self.conn = connect(":memory:")
        self.api = MockPosApi()
        self.printer = RecordingPrinter()
        self.app = create_app(
            cart=CartStore(MemoryStorage()),
            ledger=CashLedger(self.conn, remote=self.api),
            api=self.api,
            printer=self.printer,
        )
        self.client = self.app.test_client()

    def tearDown(self):
        self.conn.close()

    def _open_register(self, amount="100"):
        resp = self.client.post("/api/cash-register/open", json={"initial_amount": amount, "name": "Front"})
        self.assertEqual(resp.status_code, 200)
        return resp.get_json()["cash_register"]

    def _fill_cart(self):
        self.client.post("/api/cart/lines", json={"product": COFFEE, "quantity": 2})
        self.client.put("/api/cart/client", json={"client": "CLIENT-1"})

    def test_cart_endpoints(self):
        resp = self.client.post("/api/cart/lines", json={"product": COFFEE, "quantity": 2})
        self.assertEqual(resp.status_code, 200)
        cart = resp.get_json()["cart"]
        self.assertEqual(cart["total"], "20.00")
        self.assertEqual(cart["lines"][0]["quantity"], "2")
        self.assertEqual(cart["lines"][0]["subtotal"], "20.00")

        cart = self.client.put("/api/cart/lines/A", json={"price": "7.5"}).get_json()["cart"]
        self.assertEqual(cart["total"], "15.00")
        cart = self.client.put("/api/cart/lines/A", json={"quantity": 0}).get_json()["cart"]
        self.assertEqual(cart["lines"], [])

        self.client.post("/api/cart/lines", json={"product_ref": "B", "price": "1"})
        cart = self.client.delete("/api/cart/lines/B").get_json()["cart"]
        self.assertEqual(cart["total_quantity"], "0")

    def test_bad_input_is_400(self):
        resp = self.client.post("/api/cart/lines", json={"product": COFFEE, "quantity": -1})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["status"], "error")
        resp = self.client.post("/api/cart/lines", data="nope", content_type="text/plain")
        self.assertEqual(resp.status_code, 400)
        resp = self.client.put("/api/cart/lines/A", json={})
        self.assertEqual(resp.status_code, 400)

    def test_register_lifecycle(self):
        register = self._open_register()
        self.assertEqual(register["current_amount"], "100.00")
        self.assertEqual(self._open_register_status(), 409)

        resp = self.client.post("/api/cash-register/transactions",
                                json={"type": "withdrawal", "amount": "20", "description": "Bank run"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["transaction"]["amount"], "20.00")

        balance = self.client.get(f"/api/cash-register/{register['id']}/balance").get_json()
        self.assertEqual(balance["current_amount"], "80.00")
        self.assertEqual(balance["total_transactions"], 1)

        closed = self.client.post("/api/cash-register/close", json={"final_amount": "80"}).get_json()
        self.assertEqual(closed["cash_register"]["status"], "closed")
        current = self.client.get("/api/cash-register/current").get_json()
        self.assertIsNone(current["cash_register"])

        report = self.client.get(f"/api/cash-register/{register['id']}/report").get_json()["report"]
        self.assertEqual(report["total_withdrawals"], "20.00")
        self.assertEqual(report["expected_cash"], "80.00")
        self.assertEqual(report["difference"], "0.00")
        self.assertEqual(len(report["transactions"]), 2)

    def _open_register_status(self):
        return self.client.post("/api/cash-register/open", json={"initial_amount": "5"}).status_code

    def test_transaction_without_register_is_409(self):
        resp = self.client.post("/api/cash-register/transactions", json={"type": "sale", "amount": "5"})
        self.assertEqual(resp.status_code, 409)

    def test_checkout(self):
        register = self._open_register()
        self._fill_cart()
        resp = self.client.post("/api/checkout", json={"payment_method": "cash", "cash_amount": "50"})
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertEqual(body["total"], "20.00")
        self.assertEqual(body["change"], "30.00")
        self.assertTrue(body["printed"])
        self.assertEqual(self.printer.printed, [body["sale_code"]])
        self.assertEqual(body["transaction"]["sale_id"], body["sale_id"])
        self.assertEqual(self.client.get("/api/cart").get_json()["cart"]["lines"], [])
        balance = self.client.get(f"/api/cash-register/{register['id']}/balance").get_json()
        self.assertEqual(balance["current_amount"], "120.00")

    def test_checkout_step_failure_is_reported(self):
        self._fill_cart()
        self.api.fail_on["close_sale"] = NetworkError("timeout")
        resp = self.client.post("/api/checkout", json={"payment_method": "card"})
        self.assertEqual(resp.status_code, 502)
        body = resp.get_json()
        self.assertEqual(body["step"], "close_sale")
        self.assertEqual(body["completed_steps"], ["create_sale", "add_lines"])
        self.assertTrue(body["sale_id"])
        self.assertEqual(len(self.client.get("/api/cart").get_json()["cart"]["lines"]), 1)

    def test_checkout_empty_cart_is_400(self):
        resp = self.client.post("/api/checkout", json={"payment_method": "card"})
        self.assertEqual(resp.status_code, 400)

    def test_receipt_preview_and_headers(self):
        self._fill_cart()
        resp = self.client.get("/api/receipt/preview")
        self.assertEqual(resp.status_code, 200)
        self.assertIn(b"ticket-content", resp.data)
        self.assertIn(b"Coffee", resp.data)
        self.assertIn("no-store", resp.headers["Cache-Control"])


if __name__ == "__main__":
    unittest.main()
