"""
Order workflow

Keeps ``product.quantity`` in step with outstanding orders. Every order
reserves stock from exactly one product; updating an order puts the old
reservation back before taking the new one, deleting an order puts its
reservation back.

The order document and the product document are written separately, with
no transaction around them. When a later step fails, the earlier writes of
the same call are undone by a compensating write. A failed compensation is
logged and the original error is raised; nothing retries.

Stock is only ever taken through ``reserve_stock``, whose filter matches
only while enough units remain, so two concurrent orders cannot both take
the last units of a product.
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import ORDERS, PRODUCTS, USERS, create_document, serialize_doc, utcnow
from errors import InsufficientStock, NotFound, ValidationError
from schemas import Order, OrderStatus
from security import TokenClaims, ensure_owner_or_admin

logger = logging.getLogger(__name__)


def reserve_stock(db: Database, product_id: ObjectId, quantity: int) -> bool:
    """Take ``quantity`` units from a product if that many are available."""
    res = db[PRODUCTS].update_one(
        {"_id": product_id, "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}, "$set": {"updated_at": utcnow()}},
    )
    logger.debug("reserve %s x%d -> %s", product_id, quantity, bool(res.matched_count))
    return res.matched_count == 1


def restore_stock(db: Database, product_id: ObjectId, quantity: int) -> bool:
    """Give ``quantity`` units back to a product.

    Returns False when the product no longer exists; that is not an error.
    """
    res = db[PRODUCTS].update_one(
        {"_id": product_id},
        {"$inc": {"quantity": quantity}, "$set": {"updated_at": utcnow()}},
    )
    logger.debug("restore %s x%d -> %s", product_id, quantity, bool(res.matched_count))
    return res.matched_count == 1


def _take_back(db: Database, product_id: ObjectId, quantity: int) -> None:
    # Undo a restore we just made; unguarded, the units were ours a moment ago.
    db[PRODUCTS].update_one({"_id": product_id}, {"$inc": {"quantity": -quantity}})


def _compensate(description: str, action: Callable[[], Any]) -> None:
    logger.warning("Compensating: %s", description)
    try:
        action()
    except PyMongoError:
        logger.exception("Compensation failed: %s", description)


def expand_orders(db: Database, orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace customer/product references with the referenced documents."""
    customer_ids = {o.get("customer") for o in orders if o.get("customer") is not None}
    product_ids = {o.get("product") for o in orders if o.get("product") is not None}

    customers = {}
    if customer_ids:
        cursor = db[USERS].find({"_id": {"$in": list(customer_ids)}}, {"password_hash": 0})
        customers = {c["_id"]: serialize_doc(c) for c in cursor}
    products = {}
    if product_ids:
        cursor = db[PRODUCTS].find({"_id": {"$in": list(product_ids)}})
        products = {p["_id"]: serialize_doc(p) for p in cursor}

    expanded = []
    for order in orders:
        item = serialize_doc(order)
        item["customer"] = customers.get(order.get("customer"))
        item["product"] = products.get(order.get("product"))
        expanded.append(item)
    return expanded


def expand_order(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    return expand_orders(db, [order])[0]


def order_total(price: float, quantity: int) -> float:
    total = price * quantity
    if not math.isfinite(total):
        raise ValidationError("Order total is out of range")
    return total


def get_order_or_404(db: Database, order_id: ObjectId) -> Dict[str, Any]:
    order = db[ORDERS].find_one({"_id": order_id})
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders(db: Database) -> List[Dict[str, Any]]:
    docs = list(db[ORDERS].find({}).sort("created_at", -1))
    return expand_orders(db, docs)


def list_orders_for_customer(db: Database, customer_id: ObjectId) -> List[Dict[str, Any]]:
    docs = list(db[ORDERS].find({"customer": customer_id}).sort("created_at", -1))
    return expand_orders(db, docs)


def place_order(db: Database, customer_id: ObjectId, product_id: ObjectId, quantity: int) -> Dict[str, Any]:
    product = db[PRODUCTS].find_one({"_id": product_id})
    if not product:
        raise NotFound("Product not found")
    if product.get("quantity", 0) < quantity:
        raise InsufficientStock()

    order = Order(
        customer=customer_id,
        product=product_id,
        quantity=quantity,
        total_price=order_total(product["price"], quantity),
    )
    order_id = ObjectId(create_document(db, ORDERS, order))

    def drop_order():
        db[ORDERS].delete_one({"_id": order_id})

    try:
        reserved = reserve_stock(db, product_id, quantity)
    except PyMongoError:
        _compensate(f"drop order {order_id} after failed reservation", drop_order)
        raise
    if not reserved:
        # Stock was taken by someone else between the read and the write.
        _compensate(f"drop order {order_id}, stock ran out", drop_order)
        raise InsufficientStock()

    logger.info("Order %s placed: product %s x%d", order_id, product_id, quantity)
    return expand_order(db, get_order_or_404(db, order_id))


def update_order(
    db: Database,
    order_id: ObjectId,
    current_user: TokenClaims,
    status: Optional[OrderStatus] = None,
    quantity: Optional[int] = None,
    product_id: Optional[ObjectId] = None,
) -> Dict[str, Any]:
    order = get_order_or_404(db, order_id)
    ensure_owner_or_admin(current_user, order.get("customer"))

    changes: Dict[str, Any] = {}
    if status is not None:
        # Any status may follow any other.
        changes["status"] = OrderStatus(status).value

    undo: List[Callable[[], None]] = []

    def rollback():
        for action in reversed(undo):
            _compensate(f"restore stock state of order {order_id}", action)

    if quantity is not None or product_id is not None:
        old_product_id = order["product"]
        old_qty = order["quantity"]
        final_qty = quantity if quantity is not None else old_qty
        target_id = product_id if product_id is not None else old_product_id

        # The old reservation goes back first: it may be what makes the new one fit.
        if restore_stock(db, old_product_id, old_qty):
            undo.append(lambda: _take_back(db, old_product_id, old_qty))

        try:
            target = db[PRODUCTS].find_one({"_id": target_id})
            reserved = target is not None and reserve_stock(db, target_id, final_qty)
        except PyMongoError:
            rollback()
            raise
        if target is None:
            rollback()
            raise NotFound("New product not found")
        if not reserved:
            rollback()
            raise InsufficientStock()
        undo.append(lambda: restore_stock(db, target_id, final_qty))
        try:
            total_price = order_total(target["price"], final_qty)
        except ValidationError:
            rollback()
            raise

        changes["product"] = target_id
        changes["quantity"] = final_qty
        changes["total_price"] = total_price

    if changes:
        changes["updated_at"] = utcnow()
        try:
            db[ORDERS].update_one({"_id": order_id}, {"$set": changes})
        except PyMongoError:
            rollback()
            raise

    return expand_order(db, get_order_or_404(db, order_id))


def delete_order(db: Database, order_id: ObjectId, current_user: TokenClaims) -> None:
    order = get_order_or_404(db, order_id)
    ensure_owner_or_admin(current_user, order.get("customer"))

    product_id = order.get("product")
    qty = order.get("quantity", 0)
    # Cancelled orders still hold their reservation until deleted.
    restored = product_id is not None and restore_stock(db, product_id, qty)
    if not restored:
        logger.info("Order %s: product %s is gone, nothing to restock", order_id, product_id)

    try:
        db[ORDERS].delete_one({"_id": order_id})
    except PyMongoError:
        if restored:
            _compensate(f"re-reserve stock of undeleted order {order_id}", lambda: _take_back(db, product_id, qty))
        raise
    logger.info("Order %s deleted", order_id)
