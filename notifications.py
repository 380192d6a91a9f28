"""
Order receipts.

A receipt goes out through the mail relay when it is configured. Whenever the
relay is unconfigured or the send fails, a plain-text receipt is written to
the receipts directory instead, where the customer can download it.
"""

import hashlib
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import httpx

from config import Settings
from schemas import Transaction

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class RelayNotConfigured(Exception):
    pass


def format_date(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp).strftime("%d/%m/%Y, %H:%M:%S")
    except ValueError:
        return timestamp


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def receipt_filename(reference: str) -> str:
    # The digest keeps references that sanitise to the same stem apart
    digest = hashlib.sha256(reference.encode("utf-8")).hexdigest()[:12]
    return f"Receipt-{_UNSAFE_FILENAME_CHARS.sub('_', reference)}-{digest}.txt"


class ReceiptDispatcher:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self.receipts_dir = Path(settings.receipts_dir)
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.settings.email_timeout_seconds)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def template_params(self, transaction: Transaction) -> Dict[str, str]:
        return {
            "to_name": transaction.customer_name,
            "to_email": transaction.payer_email,
            "transaction_id": transaction.transaction_id,
            "total_amount": format_amount(transaction.total_amount),
            "date": format_date(transaction.timestamp),
            "course_list": "\n".join(f"• {name}" for name in transaction.courses),
        }

    def send_receipt(self, transaction: Transaction) -> bool:
        """Email the receipt. Returns False when the local fallback was used instead."""
        try:
            self._relay(transaction)
        except Exception as e:
            # Relay failures must never affect the committed order
            logger.warning(
                "Receipt email for %s not sent, writing receipt file instead: %s",
                transaction.transaction_id, e,
            )
            try:
                self.write_receipt(transaction)
            except OSError as write_error:
                logger.error("Could not write receipt file for %s: %s", transaction.transaction_id, write_error)
            return False
        logger.info("Receipt emailed to %s for %s", transaction.payer_email, transaction.transaction_id)
        return True

    def _relay(self, transaction: Transaction) -> None:
        s = self.settings
        if not s.email_configured:
            raise RelayNotConfigured("Mail relay not configured")
        payload = {
            "service_id": s.email_service_id,
            "template_id": s.email_template_id,
            "user_id": s.email_public_key,
            "template_params": self.template_params(transaction),
        }
        if s.email_private_key:
            payload["accessToken"] = s.email_private_key
        response = self.client.post(s.email_api_url, json=payload)
        response.raise_for_status()

    def render_receipt(self, transaction: Transaction) -> str:
        s = self.settings
        items = "\n".join(f"  [x] {name}" for name in transaction.courses)
        return (
            f"  {s.store_name} - OFFICIAL RECEIPT\n"
            "  =========================================\n"
            f"  Order Status   : {transaction.status.value.upper()}\n"
            f"  Transaction ID : {transaction.transaction_id}\n"
            f"  Date           : {format_date(transaction.timestamp)}\n"
            f"  Customer       : {transaction.customer_name}\n"
            f"  Email          : {transaction.payer_email}\n"
            "  -----------------------------------------\n"
            "  PURCHASED ITEMS:\n"
            f"{items}\n"
            "  -----------------------------------------\n"
            f"  TOTAL PAID     : {s.currency_symbol}{format_amount(transaction.total_amount)}\n"
            "  =========================================\n"
            "\n"
            "  Thank you for your purchase!\n"
            "  Please keep this file for your records.\n"
        )

    def receipt_path(self, reference: str) -> Path:
        return self.receipts_dir / receipt_filename(reference)

    def write_receipt(self, transaction: Transaction) -> Path:
        path = self.receipt_path(transaction.transaction_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_receipt(transaction), encoding="utf-8")
        return path
