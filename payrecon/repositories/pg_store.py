from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, Optional

from psycopg2.extras import Json

from payrecon.db.client import get_conn
from payrecon.domain.enums import MovementReason, MovementType
from payrecon.domain.models import (
    Customer,
    InventoryMovement,
    Order,
    OrderItem,
    OrderTracking,
    Payment,
    Product,
    ProductBatch,
)
from payrecon.domain.statuses import OrderPaymentStatus

_ORDER_COLUMNS = (
    "id, order_number, customer_id, total, payment_status, payment_method, payment_reference, updated_at"
)


def _order_from_row(row: tuple[Any, ...]) -> Order:
    return Order(
        id=str(row[0]),
        order_number=str(row[1]),
        customer_id=str(row[2]),
        total=Decimal(row[3]),
        payment_status=OrderPaymentStatus(str(row[4])),
        payment_method=row[5],
        payment_reference=row[6],
        updated_at=row[7],
    )


class PgSession:
    """Repository operations bound to one open transaction cursor."""

    def __init__(self, cursor: Any):
        self.cur = cursor

    # Orders
    def find_order_by_reference(self, reference: str) -> Optional[Order]:
        self.cur.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
              FROM orders
             WHERE payment_reference = %s OR order_number = %s
             ORDER BY created_at
             LIMIT 1
               FOR UPDATE
            """,
            (reference, reference),
        )
        row = self.cur.fetchone()
        return _order_from_row(row) if row else None

    def get_order(self, order_id: str) -> Optional[Order]:
        self.cur.execute(f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = %s", (order_id,))
        row = self.cur.fetchone()
        return _order_from_row(row) if row else None

    def update_order_payment(
        self, order_id: str, status: OrderPaymentStatus, method: str, reference: str
    ) -> None:
        self.cur.execute(
            """
            UPDATE orders
               SET payment_status = %s, payment_method = %s, payment_reference = %s, updated_at = NOW()
             WHERE id = %s
            """,
            (status.value, method, reference, order_id),
        )

    def count_order_items(self, order_id: str) -> int:
        self.cur.execute("SELECT COUNT(*) FROM order_item WHERE order_id = %s", (order_id,))
        row = self.cur.fetchone()
        return int(row[0]) if row else 0

    def list_order_items(self, order_id: str) -> list[OrderItem]:
        self.cur.execute(
            """
            SELECT id, order_id, product_id, quantity, unit_price, subtotal, product_name, product_sku
              FROM order_item
             WHERE order_id = %s
             ORDER BY id
            """,
            (order_id,),
        )
        return [
            OrderItem(
                id=str(r[0]),
                order_id=str(r[1]),
                product_id=str(r[2]),
                quantity=int(r[3]),
                unit_price=Decimal(r[4]),
                subtotal=Decimal(r[5]),
                product_name=r[6],
                product_sku=r[7],
            )
            for r in self.cur.fetchall() or []
        ]

    def insert_order_items(self, items: list[OrderItem]) -> int:
        for item in items:
            self.cur.execute(
                """
                INSERT INTO order_item (order_id, product_id, quantity, unit_price, subtotal, product_name, product_sku)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    item.order_id,
                    item.product_id,
                    item.quantity,
                    item.unit_price,
                    item.subtotal,
                    item.product_name,
                    item.product_sku,
                ),
            )
        return len(items)

    def add_tracking(self, entry: OrderTracking) -> OrderTracking:
        self.cur.execute(
            "INSERT INTO order_tracking (order_id, status, notes) VALUES (%s, %s, %s) RETURNING id, created_at",
            (entry.order_id, entry.status, entry.notes),
        )
        row = self.cur.fetchone()
        if row:
            entry.id, entry.created_at = str(row[0]), row[1]
        return entry

    # Customers
    def find_customer_by_email(self, email: str | None) -> Optional[Customer]:
        if not email:
            return None
        self.cur.execute(
            """
            SELECT c.id, c.user_id, u.email
              FROM app_user u
              JOIN customer c ON c.user_id = u.id
             WHERE lower(u.email) = lower(%s)
             LIMIT 1
            """,
            (email,),
        )
        row = self.cur.fetchone()
        if not row:
            return None
        return Customer(id=str(row[0]), user_id=str(row[1]), email=str(row[2]))

    # Payments
    def find_payment_by_transaction(self, transaction_id: str) -> Optional[Payment]:
        self.cur.execute(
            """
            SELECT id, transaction_id, order_id, customer_id, amount, currency, method, status,
                   gateway_reference, completed_at, created_at, updated_at
              FROM payment
             WHERE transaction_id = %s
             LIMIT 1
            """,
            (transaction_id,),
        )
        r = self.cur.fetchone()
        if not r:
            return None
        return Payment(
            id=str(r[0]),
            transaction_id=str(r[1]),
            order_id=r[2],
            customer_id=str(r[3]),
            amount=Decimal(r[4]),
            currency=str(r[5]),
            method=str(r[6]),
            status=OrderPaymentStatus(str(r[7])),
            gateway_reference=r[8],
            completed_at=r[9],
            created_at=r[10],
            updated_at=r[11],
        )

    def upsert_payment(self, payment: Payment) -> Payment:
        """Atomic insert-or-update keyed by the unique transaction id.

        The conflict branch never touches amount, order or customer.
        """
        self.cur.execute(
            """
            INSERT INTO payment (
                transaction_id, order_id, customer_id, amount, currency, method, status,
                gateway_reference, gateway_response, gateway_fee, app_fee, completed_at,
                created_at, updated_at
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, 0, 0,
                CASE WHEN %s = 'COMPLETED' THEN NOW() END, NOW(), NOW()
            )
            ON CONFLICT (transaction_id) DO UPDATE
                SET status = EXCLUDED.status,
                    gateway_reference = EXCLUDED.gateway_reference,
                    gateway_response = EXCLUDED.gateway_response,
                    completed_at = COALESCE(payment.completed_at, EXCLUDED.completed_at),
                    updated_at = NOW()
            RETURNING id, order_id, customer_id, amount, created_at, updated_at, completed_at
            """,
            (
                payment.transaction_id,
                payment.order_id,
                payment.customer_id,
                payment.amount,
                payment.currency,
                payment.method,
                payment.status.value,
                payment.gateway_reference,
                Json(payment.gateway_response or {}),
                payment.status.value,
            ),
        )
        row = self.cur.fetchone()
        if row:
            payment.id = str(row[0])
            payment.order_id = row[1]
            payment.customer_id = str(row[2])
            payment.amount = Decimal(row[3])
            payment.created_at, payment.updated_at, payment.completed_at = row[4], row[5], row[6]
        return payment

    # Inventory
    def get_product(self, product_id: str) -> Optional[Product]:
        self.cur.execute(
            "SELECT id, stock_quantity, has_expiry FROM product WHERE id = %s FOR UPDATE",
            (product_id,),
        )
        row = self.cur.fetchone()
        if not row:
            return None
        return Product(id=str(row[0]), stock_quantity=int(row[1]), has_expiry=bool(row[2]))

    def set_product_stock(self, product_id: str, quantity: int) -> None:
        self.cur.execute("UPDATE product SET stock_quantity = %s WHERE id = %s", (quantity, product_id))

    def list_available_batches(self, product_id: str) -> list[ProductBatch]:
        self.cur.execute(
            """
            SELECT id, product_id, qty, expiry_date, created_at
              FROM product_batch
             WHERE product_id = %s AND qty > 0
             ORDER BY expiry_date ASC NULLS LAST, created_at ASC
               FOR UPDATE
            """,
            (product_id,),
        )
        return [
            ProductBatch(id=str(r[0]), product_id=str(r[1]), qty=int(r[2]), expiry_date=r[3], created_at=r[4])
            for r in self.cur.fetchall() or []
        ]

    def adjust_batch_qty(self, batch_id: str, delta: int) -> None:
        self.cur.execute("UPDATE product_batch SET qty = qty + %s WHERE id = %s", (delta, batch_id))

    def add_movement(self, movement: InventoryMovement) -> InventoryMovement:
        self.cur.execute(
            """
            INSERT INTO inventory_movement (
                product_id, batch_id, type, quantity, reason, reference, previous_stock, new_stock, notes
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, created_at
            """,
            (
                movement.product_id,
                movement.batch_id,
                movement.type.value,
                movement.quantity,
                movement.reason.value,
                movement.reference,
                movement.previous_stock,
                movement.new_stock,
                movement.notes,
            ),
        )
        row = self.cur.fetchone()
        if row:
            movement.id, movement.created_at = str(row[0]), row[1]
        return movement

    def list_movements(self, reference: str, reason: MovementReason) -> list[InventoryMovement]:
        self.cur.execute(
            """
            SELECT id, product_id, batch_id, type, quantity, reason, reference,
                   previous_stock, new_stock, notes, created_at
              FROM inventory_movement
             WHERE reference = %s AND reason = %s
             ORDER BY created_at, id
            """,
            (reference, reason.value),
        )
        return [
            InventoryMovement(
                id=str(r[0]),
                product_id=str(r[1]),
                batch_id=r[2],
                type=MovementType(r[3]),
                quantity=int(r[4]),
                reason=MovementReason(r[5]),
                reference=str(r[6]),
                previous_stock=int(r[7]),
                new_stock=int(r[8]),
                notes=r[9],
                created_at=r[10],
            )
            for r in self.cur.fetchall() or []
        ]

    def has_reversal(self, movement_id: str) -> bool:
        self.cur.execute(
            "SELECT 1 FROM inventory_movement WHERE notes = %s LIMIT 1",
            (f"REVERSAL_OF:{movement_id}",),
        )
        return self.cur.fetchone() is not None


class PgStore:
    """PostgreSQL-backed store using raw psycopg2 and the pooled `get_conn()`."""

    @contextmanager
    def transaction(self) -> Iterator[PgSession]:
        with get_conn() as conn:
            if conn is None:
                raise RuntimeError("Database not configured")
            with conn.cursor() as cur:
                yield PgSession(cur)

    def record_webhook(
        self,
        *,
        gateway: str,
        event_id: str,
        event_type: str | None,
        reference: str | None,
        signature_valid: bool,
        payload: Any,
    ) -> bool:
        with get_conn() as conn:
            if conn is None:
                return False
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO webhook_inbox (gateway, event_id, event_type, reference, verification_status, payload, received_at)
                    VALUES (%s, %s, %s, %s, %s, %s, NOW())
                    ON CONFLICT (gateway, event_id) DO NOTHING
                    """,
                    (
                        gateway,
                        event_id,
                        event_type,
                        reference,
                        "VALID" if signature_valid else "INVALID",
                        Json(payload if isinstance(payload, dict) else {"raw": payload}),
                    ),
                )
                return cur.rowcount == 1
