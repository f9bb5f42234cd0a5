from __future__ import annotations

import asyncio
import logging

from payrecon.domain.enums import InventoryCause
from payrecon.domain.models import (
    OrderItem,
    OrderTracking,
    Payment,
    PaymentData,
    ReconciliationResult,
    SideEffectResult,
)
from payrecon.domain.statuses import OrderPaymentStatus, PaymentEventStatus
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.repositories.pg_store import PgStore
from payrecon.services.inventory import InventoryService
from payrecon.services.validation import AmountValidationGuard

TRACKING_STATUS = "PROCESSING"


class ReconciliationEngine:
    """Applies one normalized payment event to order, payment and tracking state.

    The order/payment/item/tracking writes share a single transaction.
    Inventory effects run after commit and never fail the event.
    """

    def __init__(
        self,
        store: InMemoryStore | PgStore,
        guard: AmountValidationGuard,
        inventory: InventoryService,
        default_currency: str = "NGN",
    ):
        self.store = store
        self.guard = guard
        self.inventory = inventory
        self.default_currency = default_currency
        self.logger = logging.getLogger(__name__)

    async def reconcile(
        self, reference: str, status: PaymentEventStatus, payment_data: PaymentData
    ) -> ReconciliationResult:
        result = await asyncio.to_thread(self.apply, reference, status, payment_data)
        if result.success and result.order_id and not result.already_processed:
            await self._after_commit(result)
        return result

    def apply(
        self, reference: str, status: PaymentEventStatus, payment_data: PaymentData
    ) -> ReconciliationResult:
        validation = self.guard.validate(reference, status, payment_data)
        if not validation.success:
            return ReconciliationResult(success=False, error=validation.error or "Payment validation failed")

        db_status = status.to_db_status()
        gateway = payment_data.gateway.value
        try:
            with self.store.transaction() as session:
                order = session.find_order_by_reference(reference)
                if order is None:
                    return self._persist_orphan(session, reference, db_status, payment_data)

                if order.payment_status == OrderPaymentStatus.COMPLETED and status == PaymentEventStatus.SUCCESS:
                    self.logger.info(
                        "order already paid; skipping",
                        extra={"reference": reference, "order_id": order.id, "already_processed": True},
                    )
                    return ReconciliationResult(
                        success=True,
                        status=order.payment_status,
                        order_id=order.id,
                        already_processed=True,
                    )

                session.update_order_payment(order.id, db_status, gateway, reference)

                if payment_data.items and session.count_order_items(order.id) == 0:
                    rows = [
                        OrderItem(
                            order_id=order.id,
                            product_id=item.product_id,
                            quantity=item.quantity,
                            unit_price=item.unit_price,
                            subtotal=item.unit_price * item.quantity,
                            product_name=item.name,
                            product_sku=item.sku,
                        )
                        for item in payment_data.items
                    ]
                    inserted = session.insert_order_items(rows)
                    self.logger.info(
                        "order items backfilled from metadata",
                        extra={"reference": reference, "order_id": order.id, "event": f"{inserted} items"},
                    )

                payment = session.upsert_payment(
                    self._payment(reference, db_status, payment_data, order.customer_id, order.id)
                )

                if status == PaymentEventStatus.SUCCESS:
                    session.add_tracking(
                        OrderTracking(
                            order_id=order.id,
                            status=TRACKING_STATUS,
                            notes=f"Payment completed via {gateway} - {reference}",
                        )
                    )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "order status update failed",
                extra={"reference": reference, "gateway": gateway, "status": status, "error": str(exc)},
            )
            return ReconciliationResult(success=False, error=str(exc) or "Database error")

        self.logger.info(
            "order status updated",
            extra={
                "reference": reference,
                "order_id": order.id,
                "payment_id": payment.id,
                "status": db_status,
                "gateway": gateway,
                "amount": payment_data.amount,
            },
        )
        return ReconciliationResult(
            success=True, status=db_status, order_id=order.id, payment_id=payment.id
        )

    def _payment(
        self,
        reference: str,
        db_status: OrderPaymentStatus,
        payment_data: PaymentData,
        customer_id: str,
        order_id: str | None,
    ) -> Payment:
        return Payment(
            transaction_id=reference,
            customer_id=customer_id,
            order_id=order_id,
            amount=payment_data.amount,
            currency=payment_data.currency or self.default_currency,
            method=payment_data.gateway.value,
            status=db_status,
            gateway_reference=payment_data.gateway_reference,
            gateway_response=payment_data.to_dict(),
        )

    def _persist_orphan(
        self, session, reference: str, db_status: OrderPaymentStatus, payment_data: PaymentData
    ) -> ReconciliationResult:
        """Keep the financial record when no order matches the reference."""
        self.logger.warning("order not found for payment reference", extra={"reference": reference})
        customer = session.find_customer_by_email(payment_data.customer_email)
        if customer is None:
            self.logger.warning(
                "orphan payment not persisted; customer unresolved",
                extra={"reference": reference, "customer_email": payment_data.customer_email},
            )
            return ReconciliationResult(success=False, error="Order not found and customer unresolved")
        payment = session.upsert_payment(self._payment(reference, db_status, payment_data, customer.id, None))
        self.logger.info(
            "payment persisted without order",
            extra={
                "reference": reference,
                "customer_id": customer.id,
                "payment_id": payment.id,
                "gateway": payment_data.gateway,
                "status": db_status,
            },
        )
        return ReconciliationResult(success=True, status=db_status, payment_id=payment.id, orphan=True)

    async def _after_commit(self, result: ReconciliationResult) -> None:
        if result.status == OrderPaymentStatus.COMPLETED:
            outcome = await asyncio.to_thread(self.inventory.create_out_movements_for_order, result.order_id)
        elif result.status is not None and result.status.reverses_stock:
            cause = InventoryCause.REFUND if result.status == OrderPaymentStatus.REFUNDED else InventoryCause.CANCELLED
            outcome = await asyncio.to_thread(
                self.inventory.rollback_out_movements_for_order, result.order_id, cause
            )
        else:
            return
        self._log_side_effect(result, outcome)

    def _log_side_effect(self, result: ReconciliationResult, outcome: SideEffectResult) -> None:
        if outcome.ok:
            return
        # Payment state stays committed; stock needs manual reconciliation
        self.logger.error(
            "inventory side effect failed",
            extra={"order_id": result.order_id, "status": result.status, "error": outcome.error},
        )
