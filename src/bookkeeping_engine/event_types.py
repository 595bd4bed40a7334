"""Domain event types and the payload fields posting formulas may read."""

from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    """Domain events raised by the surrounding application and the payroll core."""

    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    SESSION_INVOICED = "session.invoiced"
    APPOINTMENT_COMPLETED = "appointment.completed"
    PAYRUN_APPROVED = "payrun.approved"
    PAYRUN_PAID = "payrun.paid"


class PaymentMethod(str, Enum):
    """Suffixes used by invoice.paid.<method> events."""

    QR = "qr"
    CASH = "cash"
    CARD = "card"


_SALES_FIELDS = frozenset({"amount_total", "amount_net", "vat_amount", "vat_rate"})

PAYRUN_AMOUNT_FIELDS = (
    "gross",
    "net",
    "benefits_amount",
    "thirteenth_amount",
    "employer_cost",
    "employee_deductions",
    "employer_contributions",
    "avs_ai_apg_emp",
    "avs_ai_apg_er",
    "ac_emp",
    "ac_er",
    "aap_er",
    "aanp_emp",
    "aanp_er",
    "ijm_emp",
    "ijm_er",
    "af_er",
    "lpp_emp",
    "lpp_er",
)

# Whitelisted numeric payload fields per event family
EVENT_FIELDS: dict[str, frozenset[str]] = {
    EventType.INVOICE_CREATED.value: _SALES_FIELDS,
    EventType.INVOICE_PAID.value: _SALES_FIELDS | {"fee_amount", "amount_paid"},
    EventType.SESSION_INVOICED.value: _SALES_FIELDS,
    EventType.APPOINTMENT_COMPLETED.value: _SALES_FIELDS | {"duration_minutes"},
    EventType.PAYRUN_APPROVED.value: frozenset(PAYRUN_AMOUNT_FIELDS),
    EventType.PAYRUN_PAID.value: frozenset({"net"}),
}


def event_family(event_type: str) -> str | None:
    """Registered family of an event type: itself, or its prefix for suffixed types.

    invoice.paid.qr -> invoice.paid
    """
    candidate = event_type
    while candidate:
        if candidate in EVENT_FIELDS:
            return candidate
        if "." not in candidate:
            break
        candidate = candidate.rsplit(".", 1)[0]
    return None


def allowed_fields(event_type: str) -> frozenset[str]:
    """Fields a formula may reference for this event type (empty if unknown)."""
    family = event_family(event_type)
    return EVENT_FIELDS[family] if family else frozenset()
