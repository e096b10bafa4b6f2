import json
import unittest
from decimal import Decimal
from unittest import mock

import requests

from pos_api import MockPosApi, PosApiClient
from pos_errors import NetworkError, ValidationError


def fake_response(status_code=200, body=None, text=None):
    resp = mock.Mock()
    resp.status_code = status_code
    if text is None:
        text = json.dumps(body) if body is not None else ""
    resp.text = text
    resp.content = text.encode("utf-8")
    if body is not None:
        resp.json.return_value = body
    else:
        resp.json.side_effect = ValueError("no json")
    return resp


class PosApiClientTest(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.client = PosApiClient("http://backoffice.local/api/", token="secret", timeout=5, session=self.session)

    def _call(self):
        args, kwargs = self.session.request.call_args
        return args[0], args[1], kwargs

    def test_create_sale_posts_withdrawal(self):
        self.session.request.return_value = fake_response(201, {"id": "S-1"})
        result = self.client.create_sale("POS-1", "CLIENT-1", Decimal("22.5"))
        self.assertEqual(result, {"id": "S-1"})
        method, url, kwargs = self._call()
        self.assertEqual(method, "POST")
        self.assertEqual(url, "http://backoffice.local/api/withdrawals")
        self.assertEqual(kwargs["json"], {
            "code": "POS-1",
            "destination": "Venta POS",
            "client_id": "CLIENT-1",
            "amount": 22.5,
            "status": True,
        })
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["timeout"], 5)

    def test_sale_lines_and_close_paths(self):
        self.session.request.return_value = fake_response(200, {"ok": True})
        self.client.add_sale_line("S-1", "A", Decimal("2"), Decimal("10.00"))
        method, url, kwargs = self._call()
        self.assertEqual(url, "http://backoffice.local/api/withdrawals/S-1/details")
        self.assertEqual(kwargs["json"], {"product_id": "A", "quantity": 2.0, "price": 10.0})
        self.client.close_sale("S-1")
        method, url, kwargs = self._call()
        self.assertEqual((method, url), ("POST", "http://backoffice.local/api/withdrawals/S-1/close"))

    def test_cash_transaction_amount_is_a_json_number(self):
        self.session.request.return_value = fake_response(201, {"id": "T-1"})
        self.client.create_cash_transaction({"cash_register_id": "R-1", "type": "sale", "amount": Decimal("7.505")})
        _, url, kwargs = self._call()
        self.assertEqual(url, "http://backoffice.local/api/cash-transactions")
        self.assertEqual(kwargs["json"]["amount"], 7.51)

    def test_list_transactions_sends_paging(self):
        self.session.request.return_value = fake_response(200, {"data": []})
        self.client.list_cash_transactions("R-1", page=2, limit=50)
        method, url, kwargs = self._call()
        self.assertEqual(method, "GET")
        self.assertEqual(url, "http://backoffice.local/api/cash-transactions/cash-registers/R-1/transactions")
        self.assertEqual(kwargs["params"], {"page": 2, "limit": 50})

    def test_empty_body_is_empty_dict(self):
        self.session.request.return_value = fake_response(204)
        self.assertEqual(self.client.close_sale("S-1"), {})

    def test_http_error_uses_server_message(self):
        self.session.request.return_value = fake_response(422, {"message": "Client not found"})
        with self.assertRaises(NetworkError) as ctx:
            self.client.create_sale("POS-1", "X", Decimal("1"))
        self.assertEqual(str(ctx.exception), "Client not found")
        self.assertEqual(ctx.exception.status_code, 422)

    def test_transport_error_becomes_network_error(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(NetworkError) as ctx:
            self.client.open_cash_register(Decimal("100"), "Main")
        self.assertIsNone(ctx.exception.status_code)
        self.assertIsInstance(ctx.exception.__cause__, requests.ConnectionError)

    def test_bad_json_is_network_error(self):
        self.session.request.return_value = fake_response(200, text="<html>")
        with self.assertRaises(NetworkError):
            self.client.close_cash_register("R-1", Decimal("10"))

    def test_current_register_not_found_is_none(self):
        self.session.request.return_value = fake_response(404, {"error": "No open register"})
        self.assertIsNone(self.client.current_cash_register())
        self.session.request.return_value = fake_response(500, {"error": "boom"})
        with self.assertRaises(NetworkError):
            self.client.current_cash_register()

    def test_out_of_range_amount_is_not_sent(self):
        with self.assertRaises(ValidationError):
            self.client.create_sale("POS-1", "C", Decimal("1E+40"))
        self.session.request.assert_not_called()

    def test_base_url_required(self):
        with self.assertRaises(ValueError):
            PosApiClient("")


class MockPosApiTest(unittest.TestCase):
    def test_failure_injection_is_one_shot(self):
        api = MockPosApi()
        api.fail_on["create_sale"] = NetworkError("down")
        with self.assertRaises(NetworkError):
            api.create_sale("POS-1", "C", Decimal("1"))
        sale = api.create_sale("POS-2", "C", Decimal("1"))
        self.assertIn(sale["id"], api.sales)
        self.assertEqual(api.calls, ["create_sale", "create_sale"])

    def test_current_register(self):
        api = MockPosApi()
        self.assertIsNone(api.current_cash_register())
        register = api.open_cash_register(Decimal("50"), "Main")
        self.assertEqual(api.current_cash_register()["id"], register["id"])
        api.close_cash_register(register["id"], Decimal("50"))
        self.assertIsNone(api.current_cash_register())


if __name__ == "__main__":
    unittest.main()
