"""
Flask print agent that writes till tickets to a serial/USB ESC/POS printer.

Usage:
  RECEIPT_SERIAL_PORT=COM3 \
  RECEIPT_SERIAL_BAUD=9600 \
  python receipt_agent.py

The till POSTs JSON to /print with `text` (the 32-column ticket), and
optionally `line_feeds` and `cut`.
"""

import logging

from flask import Flask, jsonify, request
from serial import Serial, SerialException

import pos_config

app = Flask(__name__)

ESC_INIT = b"\x1B\x40"
CUT_FULL = b"\x1D\x56\x00"


@app.after_request
def allow_cors(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


def _ticket_bytes(text: str) -> bytes:
    # Thermal printers only take the ASCII code page here; keep the line grid intact.
    data = text.encode("ascii", errors="replace")
    if not data.endswith(b"\n"):
        data += b"\n"
    return data


def _write_ticket(ser: Serial, text: str, line_feeds: int, cut: bool) -> None:
    ser.write(ESC_INIT)
    ser.write(_ticket_bytes(text))
    if line_feeds > 0:
        ser.write(b"\n" * line_feeds)
    if cut:
        ser.write(CUT_FULL)


def _open_serial() -> Serial:
    return Serial(pos_config.RECEIPT_SERIAL_PORT, pos_config.RECEIPT_SERIAL_BAUD, timeout=1)


@app.route("/print", methods=["POST", "OPTIONS"])
def print_receipt():
    if request.method == "OPTIONS":
        return jsonify(ok=True)

    payload = request.get_json(silent=True) or {}
    text = payload.get("text") or ""
    if not isinstance(text, str) or not text.strip():
        return jsonify(ok=False, error="text is required"), 400
    try:
        line_feeds = int(payload.get("line_feeds", pos_config.RECEIPT_LINE_FEEDS))
    except (TypeError, ValueError):
        return jsonify(ok=False, error="line_feeds must be an integer"), 400
    cut = bool(payload.get("cut", pos_config.RECEIPT_CUT_AFTER_PRINT))

    logging.info(
        "Preparing receipt: text len=%d snippet=%s",
        len(text),
        text.strip().replace("\n", "\\n")[:120],
    )
    try:
        with _open_serial() as ser:
            _write_ticket(ser, text, line_feeds, cut)
    except SerialException as exc:
        logging.exception("Serial error")
        return jsonify(ok=False, error=str(exc)), 500

    logging.info("Printed receipt; text length=%d", len(text))
    return jsonify(ok=True)


@app.get("/health")
def health():
    return "ok", 200


if __name__ == "__main__":
    logging.basicConfig(level=pos_config.POS_LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
    host = pos_config.RECEIPT_AGENT_HOST or "127.0.0.1"
    port = int(pos_config.RECEIPT_AGENT_PORT or 5001)
    logging.info(
        "Starting receipt agent on http://%s:%d printing to %s@%d",
        host,
        port,
        pos_config.RECEIPT_SERIAL_PORT,
        pos_config.RECEIPT_SERIAL_BAUD,
    )
    # Avoid Flask reloader to keep serial port exclusive
    app.run(host=host, port=port, debug=False, use_reloader=False)
