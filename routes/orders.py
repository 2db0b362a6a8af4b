"""Order routes."""

from flask import Blueprint, jsonify, request

from errors import NotFound
from extensions import db, limiter
from models import Order
from services.auth import get_current_user
from services.membership import serialize_member
from services.orders import OrderRequest, create_order, serialize_order

orders_bp = Blueprint("orders", __name__)


@orders_bp.route("/orders", methods=["POST"])
@limiter.limit("30 per minute")
def create():
    """Place an order on a collective (optionally for a tier)."""
    payload = request.get_json(silent=True) or {}
    actor = get_current_user()
    result = create_order(actor, OrderRequest.from_payload(payload))

    body = serialize_order(result.order)
    body["state"] = result.state.value
    body["member"] = serialize_member(result.member, actor) if result.member else None
    body["warnings"] = result.warnings
    return jsonify(body), 201


@orders_bp.route("/orders/<int:order_id>")
def detail(order_id: int):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"No order found with id: {order_id}")
    return jsonify(serialize_order(order))
