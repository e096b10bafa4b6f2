"""
Till HTTP server: the composition root that owns one cart, one cash ledger,
the back-office client and the checkout coordinator, and exposes them as
JSON endpoints for the till UI.
"""
import functools
import logging
import sqlite3
import threading
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request

import pos_config
from cart_storage import JsonFileStorage, MemoryStorage, SqliteStorage, connect
from cart_store import CartLine, CartStore
from cash_ledger import CashLedger, CashRegisterSession, Transaction
from checkout import CheckoutCoordinator
from pos_api import MockPosApi, PosApiClient
from pos_errors import CheckoutStepError, LedgerError, NetworkError, PersistenceError, ValidationError
from pos_money import money_str, number_str
from receipt_format import BusinessIdentity, ReceiptData, ReceiptFormatter, ReceiptItem, absolute_logo_url
from receipt_printer import AgentPrinter, TextFilePrinter


def _money(value) -> Optional[str]:
    return money_str(value) if value is not None else None


def _line_payload(line: CartLine) -> Dict[str, Any]:
    return {
        'product_ref': line.product_ref,
        'name': line.name,
        'quantity': number_str(line.quantity),
        'price': _money(line.unit_price),
        'subtotal': _money(line.subtotal),
    }


def _cart_payload(cart: CartStore) -> Dict[str, Any]:
    return {
        'lines': [_line_payload(line) for line in cart.lines()],
        'selected_client': cart.selected_client,
        'total': _money(cart.total()),
        'total_quantity': number_str(cart.total_quantity()),
    }


def _session_payload(ledger: CashLedger, session: CashRegisterSession) -> Dict[str, Any]:
    payload = session.to_dict()
    payload['current_amount'] = _money(ledger.compute_balance(session.id))
    payload['cash_amount'] = _money(ledger.compute_cash_sub_balance(session.id))
    return payload


def _transaction_payload(txn: Optional[Transaction]) -> Optional[Dict[str, Any]]:
    if txn is None:
        return None
    payload = txn.to_dict()
    payload['amount'] = _money(txn.amount)
    return payload


def build_api():
    if pos_config.USE_MOCK or not pos_config.POS_API_URL:
        return MockPosApi()
    return PosApiClient(pos_config.POS_API_URL, pos_config.POS_API_TOKEN, pos_config.POS_API_TIMEOUT)


def build_cart_storage(conn: Optional[sqlite3.Connection]):
    backend = pos_config.POS_CART_BACKEND
    if backend == 'memory':
        return MemoryStorage()
    if backend == 'file':
        return JsonFileStorage(pos_config.POS_CART_DIR)
    return SqliteStorage(conn)


def build_formatter() -> ReceiptFormatter:
    business = BusinessIdentity(
        name=pos_config.RECEIPT_BUSINESS_NAME,
        address=pos_config.RECEIPT_BUSINESS_ADDRESS,
        phone=pos_config.RECEIPT_BUSINESS_PHONE,
        tax_id=pos_config.RECEIPT_BUSINESS_TAX_ID,
    )
    return ReceiptFormatter(
        business=business,
        attribution=pos_config.RECEIPT_ATTRIBUTION,
        logo_url=absolute_logo_url(pos_config.RECEIPT_LOGO_BASE_URL, pos_config.RECEIPT_LOGO_PATH),
    )


def build_printer():
    if not pos_config.RECEIPT_AGENT_URL:
        if pos_config.RECEIPT_OUTPUT_DIR:
            return TextFilePrinter(pos_config.RECEIPT_OUTPUT_DIR)
        return None
    return AgentPrinter(
        pos_config.RECEIPT_AGENT_URL,
        timeout=pos_config.RECEIPT_AGENT_TIMEOUT,
        cut=pos_config.RECEIPT_CUT_AFTER_PRINT,
        line_feeds=pos_config.RECEIPT_LINE_FEEDS,
    )


def create_app(cart: Optional[CartStore] = None, ledger: Optional[CashLedger] = None, api=None,
               printer=None, formatter: Optional[ReceiptFormatter] = None) -> Flask:
    app = Flask(__name__)
    app.logger.setLevel(getattr(logging, pos_config.POS_LOG_LEVEL, logging.INFO))

    api = api if api is not None else build_api()
    conn = None
    if cart is None or ledger is None:
        conn = connect(pos_config.POS_DB_PATH)
    if cart is None:
        cart = CartStore(build_cart_storage(conn))
    if ledger is None:
        ledger = CashLedger(conn, remote=api, operator=pos_config.POS_OPERATOR)
    formatter = formatter or build_formatter()
    if printer is None:
        printer = build_printer()
    coordinator = CheckoutCoordinator(cart, api, ledger=ledger, formatter=formatter, printer=printer)
    app.extensions['till'] = {'cart': cart, 'ledger': ledger, 'api': api, 'checkout': coordinator}

    # One till, one writer: requests are served on several threads.
    lock = threading.Lock()

    def locked(view):
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            with lock:
                return view(*args, **kwargs)
        return wrapper

    def _body() -> Dict[str, Any]:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError('Invalid JSON payload')
        return payload

    # ---------- errors ----------
    @app.errorhandler(ValidationError)
    def _validation_error(exc):
        return jsonify({'status': 'error', 'message': str(exc)}), 400

    @app.errorhandler(LedgerError)
    def _ledger_error(exc):
        return jsonify({'status': 'error', 'message': str(exc)}), 409

    @app.errorhandler(NetworkError)
    def _network_error(exc):
        app.logger.warning('Back office call failed: %s', exc)
        return jsonify({'status': 'error', 'message': str(exc)}), 502

    @app.errorhandler(PersistenceError)
    def _persistence_error(exc):
        app.logger.error('Local journal failure: %s', exc)
        return jsonify({'status': 'error', 'message': str(exc)}), 500

    @app.errorhandler(CheckoutStepError)
    def _checkout_error(exc):
        return jsonify({
            'status': 'error',
            'message': str(exc),
            'step': exc.step,
            'completed_steps': exc.completed_steps,
            'sale_id': exc.sale_id,
        }), 502

    # Disable caching for all responses; the till always shows live state
    @app.after_request
    def add_no_cache_headers(response):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        return response

    @app.get('/health')
    def health():
        return 'ok', 200

    # ---------- cart ----------
    @app.get('/api/cart')
    @locked
    def api_get_cart():
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    @app.post('/api/cart/lines')
    @locked
    def api_add_line():
        payload = _body()
        product = payload.get('product')
        if product is None:
            product = payload.get('product_ref')
        if not product:
            raise ValidationError('product is required')
        cart.add_line(product, payload.get('quantity', 1), payload.get('price'))
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    @app.put('/api/cart/lines/<product_ref>')
    @locked
    def api_update_line(product_ref: str):
        payload = _body()
        if 'quantity' not in payload and 'price' not in payload:
            raise ValidationError('quantity or price is required')
        if 'price' in payload:
            cart.update_price(product_ref, payload['price'])
        if 'quantity' in payload:
            cart.update_quantity(product_ref, payload['quantity'])
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    @app.delete('/api/cart/lines/<product_ref>')
    @locked
    def api_remove_line(product_ref: str):
        cart.remove_line(product_ref)
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    @app.put('/api/cart/client')
    @locked
    def api_set_client():
        payload = _body()
        cart.set_selected_client(payload.get('client'))
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    @app.post('/api/cart/clear')
    @locked
    def api_clear_cart():
        cart.clear()
        return jsonify({'status': 'success', 'cart': _cart_payload(cart)})

    # ---------- cash register ----------
    @app.get('/api/cash-register/current')
    @locked
    def api_current_register():
        session = ledger.current_session()
        return jsonify({
            'status': 'success',
            'cash_register': _session_payload(ledger, session) if session else None,
        })

    @app.post('/api/cash-register/open')
    @locked
    def api_open_register():
        payload = _body()
        session = ledger.open_session(
            payload.get('initial_amount'),
            payload.get('name') or 'Main cash register',
            payload.get('description'),
        )
        return jsonify({'status': 'success', 'cash_register': _session_payload(ledger, session)})

    @app.post('/api/cash-register/close')
    @locked
    def api_close_register():
        payload = _body()
        session = ledger.close_session(payload.get('final_amount'), payload.get('description') or 'Cash closing')
        return jsonify({'status': 'success', 'cash_register': _session_payload(ledger, session)})

    @app.post('/api/cash-register/transactions')
    @locked
    def api_record_transaction():
        payload = _body()
        txn = ledger.record_transaction(
            payload.get('type'),
            payload.get('amount'),
            payload.get('payment_method') or 'cash',
            description=payload.get('description') or '',
            reference=payload.get('reference') or '',
            linked_sale_ref=payload.get('sale_id'),
            session_id=payload.get('cash_register_id'),
        )
        return jsonify({'status': 'success', 'transaction': _transaction_payload(txn)})

    @app.get('/api/cash-register/<session_id>/balance')
    @locked
    def api_register_balance(session_id: str):
        txns = ledger.transactions(session_id)
        return jsonify({
            'status': 'success',
            'current_amount': _money(ledger.compute_balance(session_id)),
            'cash_amount': _money(ledger.compute_cash_sub_balance(session_id)),
            'total_transactions': len(txns),
            'last_transaction_at': txns[-1].timestamp if txns else None,
        })

    @app.get('/api/cash-register/<session_id>/report')
    @locked
    def api_register_report(session_id: str):
        report = ledger.report(session_id)
        body = {key: _money(value) for key, value in report.items() if key not in ('session', 'transactions')}
        body['cash_register'] = report['session'].to_dict()
        body['transactions'] = [_transaction_payload(t) for t in report['transactions']]
        return jsonify({'status': 'success', 'report': body})

    # ---------- checkout ----------
    @app.post('/api/checkout')
    @locked
    def api_checkout():
        payload = _body()
        result = coordinator.checkout(
            payload.get('payment_method') or 'cash',
            payload.get('cash_amount'),
            cashier=payload.get('cashier'),
            client_name=payload.get('client_name'),
        )
        return jsonify({
            'status': 'success',
            'message': 'Sale completed successfully',
            'sale_id': result.sale_id,
            'sale_code': result.sale_code,
            'total': _money(result.total),
            'payment_method': result.payment_method.value,
            'change': _money(result.change),
            'transaction': _transaction_payload(result.transaction),
            'receipt_text': result.receipt_text,
            'printed': result.printed,
            'print_error': result.print_error,
            'completed_steps': result.completed_steps,
        })

    @app.get('/api/receipt/preview')
    @locked
    def api_receipt_preview():
        data = ReceiptData(
            code='PREVIEW',
            created_at='',
            items=[ReceiptItem(l.name or l.product_ref, l.quantity, l.unit_price) for l in cart.lines()],
            payment_method=request.args.get('payment_method', 'cash'),
            cashier_name=request.args.get('cashier'),
            client_name=cart.selected_client,
        )
        return Response(formatter.render_html(data), mimetype='text/html')

    return app
