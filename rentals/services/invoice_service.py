"""Invoice number generation (PREFIX-YYYYMMDD-NNNN)."""
import logging
import random
import re
from datetime import datetime
from typing import Optional

from flask import current_app, has_app_context
from rentals.models import Order

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 10
DEFAULT_PREFIX = 'GLAORD'


def _prefix() -> str:
    if has_app_context():
        return current_app.config.get('INVOICE_PREFIX', DEFAULT_PREFIX)
    return DEFAULT_PREFIX


def generate_invoice_number(now: Optional[datetime] = None, prefix: Optional[str] = None) -> str:
    """Random 4-digit suffix for the current day, e.g. GLAORD-20241202-0042."""
    now = now or datetime.now()
    suffix = f"{random.randint(0, 9999):04d}"
    return f"{prefix or _prefix()}-{now:%Y%m%d}-{suffix}"


def is_valid_invoice_number(value: str, prefix: Optional[str] = None) -> bool:
    pattern = rf"^{re.escape(prefix or _prefix())}-\d{{8}}-\d{{4}}$"
    return bool(re.match(pattern, value or ''))


def invoice_number_exists(session, invoice_number: str, exclude_order_id: Optional[int] = None) -> bool:
    query = session.query(Order.id).filter(Order.invoice_number == invoice_number)
    if exclude_order_id:
        query = query.filter(Order.id != exclude_order_id)
    return query.first() is not None


def generate_unique_invoice_number(session, now: Optional[datetime] = None) -> str:
    """
    Draw random invoice numbers until one is free.

    After MAX_ATTEMPTS collisions the suffix is taken from the current
    millisecond timestamp instead.
    """
    now = now or datetime.now()
    prefix = _prefix()
    for attempt in range(1, MAX_ATTEMPTS + 1):
        candidate = generate_invoice_number(now, prefix)
        if not invoice_number_exists(session, candidate):
            return candidate
        logger.debug(f"Invoice number collision on attempt {attempt}: {candidate}")

    fallback_suffix = str(int(datetime.now().timestamp() * 1000))[-4:]
    fallback = f"{prefix}-{now:%Y%m%d}-{fallback_suffix}"
    logger.warning(f"Invoice number retries exhausted, using timestamp suffix: {fallback}")
    return fallback
