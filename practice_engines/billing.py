"""
Recurring Service Billing Engine.

Pure functions with deterministic behavior. No I/O.

Computes everything the invoice generator needs once the inputs have been
fetched: the price through its priority chain, tax and totals, the income
account through its mapping chain, the invoice and receipt numbers, and the
payment due date.

Usage:
    from practice_engines.billing import compute_invoice_amounts, resolve_price

    price = resolve_price(
        period_override=None,
        work_override=Decimal("5000"),
        customer_price=Decimal("4500"),
        service_default=Decimal("4000"),
    )
    amounts = compute_invoice_amounts(price=price.amount, tax_rate=Decimal("18"))
    # InvoiceAmounts(subtotal=5000.00, tax_amount=900.00, total=5900.00)
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID

from practice_kernel.domain.types import InvoiceAmounts, NumberingScheme, PriceResolution
from practice_kernel.logging_config import get_logger
from practice_engines.tracer import traced_engine

logger = get_logger("engines.billing")


# ============================================================================
# Constants
# ============================================================================

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal("100")

DEFAULT_PAYMENT_TERMS_DAYS = 30

PAYMENT_TERMS_DAYS: dict[str, int] = {
    "due_on_receipt": 0,
    "net_15": 15,
    "net_30": 30,
    "net_45": 45,
    "net_60": 60,
}


# ============================================================================
# Price and account chains
# ============================================================================


def resolve_price(
    period_override: Decimal | None = None,
    work_override: Decimal | None = None,
    customer_price: Decimal | None = None,
    service_default: Decimal | None = None,
) -> PriceResolution | None:
    """
    First configured price wins: period override, work override,
    customer-negotiated price, service default.

    Returns None when nothing is configured or the winning price is not
    positive (a zero override means "do not bill").
    """
    chain = (
        ("period_override", period_override),
        ("work_override", work_override),
        ("customer_price", customer_price),
        ("service_default", service_default),
    )
    for source, amount in chain:
        if amount is None:
            continue
        amount = Decimal(amount)
        if amount <= 0:
            logger.debug("price_not_positive", extra={"source": source, "amount": amount})
            return None
        return PriceResolution(amount=amount, source=source)
    return None


def resolve_income_account(
    service_account_id: UUID | None,
    tenant_default_account_id: UUID | None,
) -> UUID | None:
    """Service-level mapping wins over the tenant default."""
    return service_account_id or tenant_default_account_id


# ============================================================================
# Amounts
# ============================================================================


@traced_engine("invoice_amounts", "1.0", fingerprint_fields=("price", "tax_rate"))
def compute_invoice_amounts(*, price: Decimal, tax_rate: Decimal | None = None) -> InvoiceAmounts:
    """
    ``tax = round(price * rate / 100, 2)`` and ``total = price + tax``.

    A missing rate means 0; no percentage is ever assumed.
    """
    rate = Decimal(tax_rate) if tax_rate is not None else Decimal("0")
    if rate < 0:
        raise ValueError(f"tax_rate must be non-negative, got {rate}")
    subtotal = Decimal(price).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    tax_amount = (Decimal(price) * rate / _HUNDRED).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return InvoiceAmounts(
        subtotal=subtotal,
        tax_rate=rate,
        tax_amount=tax_amount,
        total=subtotal + tax_amount,
    )


# ============================================================================
# Numbering
# ============================================================================


def next_invoice_sequence(scheme: NumberingScheme, existing_count: int) -> int:
    """Configured starting number plus the tenant's invoice count."""
    return scheme.starting_number + existing_count


def format_invoice_number(scheme: NumberingScheme, sequence: int) -> str:
    """``{prefix}-{padded}`` plus ``-{suffix}`` when a suffix is configured."""
    digits = str(sequence).zfill(scheme.width) if scheme.zero_pad else str(sequence)
    number = f"{scheme.prefix}-{digits}"
    if scheme.suffix:
        number = f"{number}-{scheme.suffix}"
    return number


def format_receipt_number(prefix: str, sequence: int, width: int = 5) -> str:
    """``RV-00001`` style receipt voucher number."""
    return f"{prefix}{str(sequence).zfill(width)}"


# ============================================================================
# Payment terms
# ============================================================================


def payment_due_date(invoice_date: date, payment_terms: str | None) -> date:
    """Invoice date plus the days implied by the payment terms (default 30)."""
    key = (payment_terms or "").strip().lower()
    days = PAYMENT_TERMS_DAYS.get(key, DEFAULT_PAYMENT_TERMS_DAYS)
    return invoice_date + timedelta(days=days)
