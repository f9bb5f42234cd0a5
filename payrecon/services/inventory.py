from __future__ import annotations

import logging

from payrecon.domain.enums import InventoryCause, MovementReason, MovementType
from payrecon.domain.models import InventoryMovement, SideEffectResult
from payrecon.repositories.memory_store import InMemoryStore
from payrecon.repositories.pg_store import PgStore

REVERSAL_REASONS = {
    InventoryCause.REFUND: MovementReason.ORDER_REFUND,
    InventoryCause.CANCELLED: MovementReason.ORDER_CANCELLATION,
}


class InsufficientStock(RuntimeError):
    pass


def _open_fulfillment(session, order_id: str) -> list[InventoryMovement]:
    """OUT movements of the order that no reversal has returned yet."""
    return [
        m
        for m in session.list_movements(order_id, MovementReason.ORDER_FULFILLMENT)
        if m.type == MovementType.OUT and not session.has_reversal(m.id)
    ]


class InventoryService:
    """Stock movements driven by payment transitions.

    Both operations are safe to call repeatedly for the same order and
    report their outcome as a SideEffectResult instead of raising.
    """

    def __init__(self, store: InMemoryStore | PgStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    def create_out_movements_for_order(self, order_id: str) -> SideEffectResult:
        """Deduct stock for every order item, allocating expiring batches first (FEFO)."""
        self.logger.info("inventory fulfillment started", extra={"order_id": order_id})
        try:
            with self.store.transaction() as session:
                if _open_fulfillment(session, order_id):
                    self.logger.info(
                        "inventory fulfillment skipped",
                        extra={"order_id": order_id, "cause": "stock already deducted"},
                    )
                    return SideEffectResult(ok=True, skipped=True)
                order = session.get_order(order_id)
                if order is None:
                    raise LookupError(f"Order {order_id} not found")
                created = 0
                for item in session.list_order_items(order_id):
                    product = session.get_product(item.product_id)
                    if product is None:
                        raise LookupError(f"Product {item.product_id} not found")
                    if product.stock_quantity < item.quantity:
                        raise InsufficientStock(f"Insufficient stock for product {item.product_id}")

                    stock = product.stock_quantity
                    remaining = item.quantity
                    notes = f"ORDER:{order.order_number}"
                    if product.has_expiry:
                        for batch in session.list_available_batches(product.id):
                            if remaining <= 0:
                                break
                            take = min(batch.qty, remaining)
                            if take <= 0:
                                continue
                            session.adjust_batch_qty(batch.id, -take)
                            session.add_movement(
                                InventoryMovement(
                                    product_id=product.id,
                                    type=MovementType.OUT,
                                    quantity=-take,
                                    reason=MovementReason.ORDER_FULFILLMENT,
                                    reference=order_id,
                                    previous_stock=stock,
                                    new_stock=stock - take,
                                    batch_id=batch.id,
                                    notes=notes,
                                )
                            )
                            stock -= take
                            remaining -= take
                            created += 1
                    # Stock not covered by batches leaves without a batch id
                    if remaining > 0:
                        session.add_movement(
                            InventoryMovement(
                                product_id=product.id,
                                type=MovementType.OUT,
                                quantity=-remaining,
                                reason=MovementReason.ORDER_FULFILLMENT,
                                reference=order_id,
                                previous_stock=stock,
                                new_stock=stock - remaining,
                                notes=notes,
                            )
                        )
                        stock -= remaining
                        created += 1
                    session.set_product_stock(product.id, stock)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "inventory fulfillment failed", extra={"order_id": order_id, "error": str(exc)}
            )
            return SideEffectResult.failed(exc)
        self.logger.info("inventory fulfillment completed", extra={"order_id": order_id})
        return SideEffectResult(ok=True, movements=created)

    def rollback_out_movements_for_order(self, order_id: str, cause: InventoryCause) -> SideEffectResult:
        """Return fulfilled stock with compensating IN movements tagged `REVERSAL_OF:<id>`."""
        reversal_reason = REVERSAL_REASONS[cause]
        self.logger.info("inventory rollback started", extra={"order_id": order_id, "cause": cause})
        try:
            with self.store.transaction() as session:
                outs = _open_fulfillment(session, order_id)
                if not outs:
                    self.logger.info("inventory rollback found nothing", extra={"order_id": order_id})
                    return SideEffectResult(ok=True, skipped=True)

                by_product: dict[str, list[InventoryMovement]] = {}
                for movement in outs:
                    by_product.setdefault(movement.product_id, []).append(movement)

                reversed_count = 0
                for product_id, moves in by_product.items():
                    product = session.get_product(product_id)
                    if product is None:
                        continue
                    stock = product.stock_quantity
                    for movement in moves:
                        qty = -movement.quantity
                        if movement.batch_id:
                            session.adjust_batch_qty(movement.batch_id, qty)
                        new_stock = stock + qty
                        session.set_product_stock(product_id, new_stock)
                        session.add_movement(
                            InventoryMovement(
                                product_id=product_id,
                                type=MovementType.IN,
                                quantity=qty,
                                reason=reversal_reason,
                                reference=order_id,
                                previous_stock=stock,
                                new_stock=new_stock,
                                batch_id=movement.batch_id,
                                notes=f"REVERSAL_OF:{movement.id}",
                            )
                        )
                        stock = new_stock
                        reversed_count += 1
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "inventory rollback failed",
                extra={"order_id": order_id, "cause": cause, "error": str(exc)},
            )
            return SideEffectResult.failed(exc)
        self.logger.info(
            "inventory rollback completed", extra={"order_id": order_id, "cause": cause}
        )
        return SideEffectResult(ok=True, movements=reversed_count)
