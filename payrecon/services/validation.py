from __future__ import annotations

import logging
from decimal import Decimal

from payrecon.domain.models import PaymentData, ValidationResult
from payrecon.domain.statuses import PaymentEventStatus
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.repositories.pg_store import PgStore

# Differences below one naira are rounding noise
MISMATCH_THRESHOLD = Decimal("1.00")


def _naira(value: Decimal) -> str:
    return f"₦{value:,.2f}"


class AmountValidationGuard:
    """Rejects successful callbacks whose amount disagrees with the order total.

    Amounts reaching the guard are already in major units, so no unit
    guessing happens here.
    """

    def __init__(self, store: InMemoryStore | PgStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    def validate(
        self, reference: str, status: PaymentEventStatus, payment_data: PaymentData
    ) -> ValidationResult:
        # A zero amount is still compared; only a missing one is not
        if status != PaymentEventStatus.SUCCESS or payment_data.amount is None:
            return ValidationResult(success=True)
        try:
            with self.store.transaction() as session:
                payment = session.find_payment_by_transaction(reference)
                order = None
                if payment is not None and payment.order_id:
                    order = session.get_order(payment.order_id)
                if order is None:
                    order = session.find_order_by_reference(reference)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "amount validation errored",
                extra={"reference": reference, "gateway": payment_data.gateway, "error": str(exc)},
            )
            return ValidationResult(success=False, error="Validation process failed")

        if order is None:
            # Nothing to compare against; orphan handling decides later
            return ValidationResult(success=True)

        diff = abs(order.total - payment_data.amount)
        if diff >= MISMATCH_THRESHOLD:
            reason = f"Amount mismatch: order total {_naira(order.total)} vs gateway {_naira(payment_data.amount)}"
            self.logger.error(
                "payment blocked by amount validation",
                extra={
                    "reference": reference,
                    "gateway": payment_data.gateway,
                    "order_id": order.id,
                    "amount": payment_data.amount,
                    "currency": payment_data.currency,
                    "error": reason,
                },
            )
            return ValidationResult(success=False, error=f"Payment validation failed: {reason}")
        return ValidationResult(success=True)
