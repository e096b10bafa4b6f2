"""
Print sinks for ticket text. Printing is a side effect of a sale, so every
failure is reported as PrintError and left to the caller to log.
"""
import logging
from pathlib import Path

import requests

from pos_errors import PrintError

log = logging.getLogger(__name__)


class AgentPrinter:
    """Send ticket text to the local receipt agent (see receipt_agent.py)."""

    def __init__(self, url: str, timeout: float = 10.0, cut: bool = True, line_feeds: int = 2):
        self.url = url
        self.timeout = timeout
        self.cut = cut
        self.line_feeds = line_feeds

    def print_text(self, text: str, reference: str = "") -> None:
        payload = {"text": text, "cut": self.cut, "line_feeds": self.line_feeds}
        try:
            resp = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise PrintError(f"Receipt agent unreachable: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.status_code != 200 or not body.get("ok"):
            raise PrintError(body.get("error") or f"Receipt agent returned status {resp.status_code}")
        log.info("Printed receipt %s via %s", reference, self.url)


class TextFilePrinter:
    """Write tickets as text files, e.g. for tills without a printer."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def print_text(self, text: str, reference: str = "") -> None:
        safe = "".join(c for c in str(reference) if c.isalnum() or c in ("-", "_")) or "ticket"
        path = self.directory / f"ticket-{safe}.txt"
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise PrintError(f"Cannot write {path}: {exc}") from exc
        log.info("Saved receipt %s to %s", reference, path)
