"""
Payment: hosted checkout and provider callbacks

start_checkout
    Opens a provider session for a Pending order. If the provider refuses,
    answers with an unreadable body or cannot be reached, the order is
    settled to Failed (stock released) before GatewayError is raised, so
    no orphaned reservation survives.

on_success / on_fail / on_cancel
    Called by the provider, possibly more than once. They never raise for
    business states (unknown transaction, already settled): they log and
    hand back the frontend URL to redirect to. Infrastructure errors do
    propagate so the provider retries.
"""

import logging
from urllib.parse import urlencode

import httpx
import redis.asyncio as aioredis
from sqlalchemy.orm import sessionmaker

from ..auth import Identity, Role
from ..config import CURRENCY, FRONTEND_URL, PUBLIC_BASE_URL
from ..errors import GatewayError, InvalidOrderState, OrderNotFound
from ..order import queries as order_queries
from ..order.aggregate import FailureReason, PaymentStatus
from .gateway import get_gateway
from .gateway.port import CheckoutRequest
from .reconciliation import settle

logger = logging.getLogger(__name__)


def callback_urls(transaction_id: str) -> dict[str, str]:
    return {
        "success_url": f"{PUBLIC_BASE_URL}/payments/success/{transaction_id}",
        "fail_url": f"{PUBLIC_BASE_URL}/payments/fail/{transaction_id}",
        "cancel_url": f"{PUBLIC_BASE_URL}/payments/cancel/{transaction_id}",
    }


def frontend_url(outcome: str, transaction_id: str | None = None) -> str:
    url = f"{FRONTEND_URL}/payment/{outcome}"
    if transaction_id:
        url += "?" + urlencode({"tranId": transaction_id})
    return url


async def start_checkout(
    session_factory: sessionmaker,
    redis: aioredis.Redis | None,
    order_id: str,
    customer: Identity,
) -> str:
    """Return the provider URL the customer must be redirected to."""
    async with session_factory() as session:
        order = await order_queries.get_order(session, order_id)

    if order is None or (
        customer.role is not Role.ADMIN and order["customer_id"] != customer.user_id
    ):
        raise OrderNotFound(order_id)
    if order["payment_status"] != PaymentStatus.PENDING.value:
        raise InvalidOrderState(
            "Order already " + order["payment_status"].lower(),
            order_id=order_id,
            payment_status=order["payment_status"],
        )

    tx = order["transaction_id"]
    request = CheckoutRequest(
        transaction_id=tx,
        amount=order["total_amount"],
        currency=CURRENCY,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=order["phone"] or "",
        shipping_address=order["shipping_address"],
        product_name=f"Order {order_id}",
        **callback_urls(tx),
    )

    try:
        checkout = await get_gateway().create_session(request)
    except (httpx.HTTPError, ValueError) as exc:
        failure = f"{type(exc).__name__}: {exc}"
    else:
        if checkout.success and checkout.redirect_url:
            logger.info("Checkout session opened for order %s (tx %s)", order_id, tx)
            return checkout.redirect_url
        failure = checkout.failure_reason or "Session rejected"

    logger.warning("Checkout session failed for order %s: %s", order_id, failure)
    async with session_factory() as session:
        await settle(session, redis, tx, PaymentStatus.FAILED, FailureReason.GATEWAY_ERROR)
    raise GatewayError("Payment Session Failed", order_id=order_id, reason=failure)


async def on_success(
    session_factory: sessionmaker,
    redis: aioredis.Redis | None,
    transaction_id: str,
    payload: dict | None = None,
) -> str:
    async with session_factory() as session:
        order = await order_queries.get_order_by_transaction(session, transaction_id)
    if order is None:
        logger.warning("Success callback for unknown transaction %s", transaction_id)
        return frontend_url("fail")

    status = PaymentStatus(order["payment_status"])
    if status is PaymentStatus.PENDING:
        verified = await get_gateway().verify_callback(
            transaction_id, payload or {}, order["total_amount"], CURRENCY
        )
        if not verified:
            logger.warning("Success callback for %s failed provider validation", transaction_id)
            return frontend_url("fail", transaction_id)
        try:
            async with session_factory() as session:
                settlement = await settle(session, redis, transaction_id, PaymentStatus.SUCCESS)
        except OrderNotFound:
            logger.warning("Order for %s vanished before settlement", transaction_id)
            return frontend_url("fail")
        status = settlement.payment_status
    else:
        logger.warning("Duplicate success callback for %s (%s)", transaction_id, status.value)

    if status is PaymentStatus.SUCCESS:
        return frontend_url("success", transaction_id)

    logger.error(
        "Provider reports payment for %s but the order is %s, manual refund required",
        transaction_id, status.value,
    )
    return frontend_url("fail", transaction_id)


async def _settle_failure(
    session_factory: sessionmaker,
    redis: aioredis.Redis | None,
    transaction_id: str,
    reason: FailureReason,
) -> str:
    try:
        async with session_factory() as session:
            settlement = await settle(session, redis, transaction_id, PaymentStatus.FAILED, reason)
    except OrderNotFound:
        logger.warning("%s callback for unknown transaction %s", reason.value, transaction_id)
        return frontend_url("fail")

    if not settlement.applied:
        logger.info(
            "Duplicate %s callback for %s (%s)",
            reason.value, transaction_id, settlement.payment_status.value,
        )
    return frontend_url("fail", transaction_id)


async def on_fail(session_factory: sessionmaker, redis: aioredis.Redis | None, transaction_id: str) -> str:
    return await _settle_failure(session_factory, redis, transaction_id, FailureReason.PAYMENT_FAILED)


async def on_cancel(session_factory: sessionmaker, redis: aioredis.Redis | None, transaction_id: str) -> str:
    return await _settle_failure(session_factory, redis, transaction_id, FailureReason.PAYMENT_CANCELLED)
