"""
Marketplace Order Service: FastAPI entry point

Customers place orders (stock is reserved immediately), pay through a
hosted checkout, and the provider's success/fail/cancel callbacks settle
the order. Vendors maintain price and stock of their products; staff move
paid orders through fulfillment.

┌──────────┐  POST /orders   ┌─────────────────┐  session   ┌──────────┐
│ Frontend │ ──────────────▶ │ Order Service   │ ─────────▶ │ Payment  │
│ (BFF)    │ ◀── redirect ── │                 │ ◀───────── │ provider │
└──────────┘                 └───────┬─────────┘  callbacks └──────────┘
                                     │ order_events / inventory_events
                                     ▼
                                Redis Pub/Sub
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from decimal import Decimal

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from . import db, event_store
from .auth import Identity, Role, current_user
from .config import LOG_LEVEL, REDIS_URL
from .errors import Forbidden, MarketplaceError, OrderNotFound, ProductNotFound, ValidationError
from .inventory import commands as inventory_commands
from .inventory import queries as inventory_queries
from .order import commands as order_commands
from .order import queries as order_queries
from .order.aggregate import OrderStatus
from .order.validation import LineItemInput
from .payment import checkout
from .sweeper import run_sweeper

logger = logging.getLogger(__name__)

redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    await db.init_schema(db.engine)

    shutdown_event = asyncio.Event()
    sweeper_task = asyncio.create_task(
        run_sweeper(db.async_session, redis_pool, shutdown_event)
    )
    yield
    shutdown_event.set()
    await sweeper_task
    await redis_pool.aclose()
    await db.engine.dispose()


app = FastAPI(title="Marketplace Order Service", lifespan=lifespan)


# ── Error mapping ────────────────────────────────


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": jsonable_encoder(exc.details),
        },
    )


def _field_path(loc) -> str:
    path = ""
    for part in loc[1:]:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "body"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get the same 400 shape as business validation."""
    fields = {_field_path(err["loc"]): err["msg"] for err in exc.errors()}
    return JSONResponse(
        status_code=400,
        content={
            "error": "ValidationError",
            "message": "Invalid fields: " + ", ".join(sorted(fields)),
            "details": {"fields": fields},
        },
    )


# ── Request Models ───────────────────────────────


class PlaceOrderRequest(BaseModel):
    products: list[LineItemInput]
    shipping_address: str
    phone: str | None = None
    # Accepted for compatibility with older clients, never trusted
    total_amount: float | None = None


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")


class UpdateStatusRequest(BaseModel):
    status: OrderStatus
    note: str = ""


class RegisterProductRequest(BaseModel):
    name: str
    price: Decimal
    stock: int = 0


class ChangePriceRequest(BaseModel):
    price: Decimal


class RestockRequest(BaseModel):
    quantity: int


# ── Orders ───────────────────────────────────────


@app.post("/orders", status_code=201)
async def place_order(req: PlaceOrderRequest, user: Identity = Depends(current_user)):
    """Reserve stock and create a Pending order. The total is computed here."""
    async with db.async_session() as session:
        result = await order_commands.place_order(
            session, redis_pool,
            user.user_id, req.products,
            req.shipping_address, req.phone,
        )
    return {
        "orderId": result["order_id"],
        "transactionId": result["transaction_id"],
        "amount": result["total_amount"],
    }


@app.post("/orders/checkout-session")
async def create_checkout_session(
    req: CheckoutSessionRequest,
    user: Identity = Depends(current_user),
):
    """Open (or re-open) the hosted payment page for a Pending order."""
    url = await checkout.start_checkout(db.async_session, redis_pool, req.order_id, user)
    return {"redirectUrl": url}


@app.get("/orders")
async def list_my_orders(user: Identity = Depends(current_user)):
    async with db.async_session() as session:
        return await order_queries.list_orders_for_customer(session, user.user_id)


@app.get("/orders/track/{transaction_id}")
async def track_order(transaction_id: str):
    """Public tracking by transaction id, no login required"""
    async with db.async_session() as session:
        order = await order_queries.track_order(session, transaction_id)
    if order is None:
        raise OrderNotFound(transaction_id)
    return order


async def _visible_order(session, order_id: str, user: Identity) -> dict:
    order = await order_queries.get_order(session, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    if user.role is not Role.ADMIN and order["customer_id"] != user.user_id:
        raise Forbidden("Unauthorized", order_id=order_id)
    return order


@app.get("/orders/{order_id}")
async def get_order(order_id: str, user: Identity = Depends(current_user)):
    async with db.async_session() as session:
        return await _visible_order(session, order_id, user)


@app.get("/orders/{order_id}/events")
async def get_order_events(order_id: str, user: Identity = Depends(current_user)):
    """Audit trail of one order"""
    async with db.async_session() as session:
        await _visible_order(session, order_id, user)
        return await event_store.load_events(session, order_id)


@app.post("/orders/{order_id}/cancel")
async def cancel_order(order_id: str, user: Identity = Depends(current_user)):
    async with db.async_session() as session:
        return await order_commands.cancel_order(session, redis_pool, order_id, user.user_id)


@app.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    req: UpdateStatusRequest,
    user: Identity = Depends(current_user),
):
    async with db.async_session() as session:
        return await order_commands.update_order_status(
            session, redis_pool,
            order_id, req.status,
            user.user_id, user.role.value, req.note,
        )


# ── Payment provider callbacks ───────────────────


async def _callback_payload(request: Request) -> dict:
    form = await request.form()
    return dict(form)


@app.post("/payments/success/{transaction_id}")
async def payment_success(transaction_id: str, request: Request):
    payload = await _callback_payload(request)
    url = await checkout.on_success(db.async_session, redis_pool, transaction_id, payload)
    return RedirectResponse(url, status_code=303)


@app.post("/payments/fail/{transaction_id}")
async def payment_fail(transaction_id: str):
    url = await checkout.on_fail(db.async_session, redis_pool, transaction_id)
    return RedirectResponse(url, status_code=303)


@app.post("/payments/cancel/{transaction_id}")
async def payment_cancel(transaction_id: str):
    url = await checkout.on_cancel(db.async_session, redis_pool, transaction_id)
    return RedirectResponse(url, status_code=303)


# ── Products (vendor side) ───────────────────────


def _acting_vendor(user: Identity) -> str | None:
    user.require(Role.VENDOR, Role.ADMIN)
    return None if user.role is Role.ADMIN else user.user_id


@app.get("/products")
async def list_products(vendor_id: str | None = None):
    async with db.async_session() as session:
        return await inventory_queries.list_products(session, vendor_id)


@app.get("/products/{product_id}")
async def get_product(product_id: str):
    async with db.async_session() as session:
        product = await inventory_queries.get_product(session, product_id)
    if not product:
        raise ProductNotFound(product_id)
    return product


@app.post("/products", status_code=201)
async def register_product(req: RegisterProductRequest, user: Identity = Depends(current_user)):
    user.require(Role.VENDOR, Role.ADMIN)
    async with db.async_session() as session:
        return await inventory_commands.register_product(
            session, redis_pool, user.user_id, req.name, req.price, req.stock
        )


@app.patch("/products/{product_id}/price")
async def change_price(
    product_id: str,
    req: ChangePriceRequest,
    user: Identity = Depends(current_user),
):
    vendor_id = _acting_vendor(user)
    async with db.async_session() as session:
        price = await inventory_commands.change_price(
            session, redis_pool, product_id, req.price, vendor_id
        )
    return {"id": product_id, "price": price}


@app.post("/products/{product_id}/restock")
async def restock(product_id: str, req: RestockRequest, user: Identity = Depends(current_user)):
    vendor_id = _acting_vendor(user)
    async with db.async_session() as session:
        await inventory_commands.restock(session, redis_pool, product_id, req.quantity, vendor_id)
        return await inventory_queries.get_product(session, product_id)


@app.delete("/products/{product_id}")
async def delete_product(product_id: str, user: Identity = Depends(current_user)):
    vendor_id = _acting_vendor(user)
    async with db.async_session() as session:
        await inventory_commands.delete_product(session, redis_pool, product_id, vendor_id)
    return {"id": product_id, "deleted": True}


@app.get("/vendor/orders")
async def list_vendor_orders(vendor_id: str | None = None, user: Identity = Depends(current_user)):
    """Orders containing the caller's products. Admins pass ``vendor_id``."""
    acting = _acting_vendor(user) or vendor_id
    if acting is None:
        raise ValidationError({"vendor_id": "required for admins"})
    async with db.async_session() as session:
        return await order_queries.list_orders_for_vendor(session, acting)


# ── Event Store ──────────────────────────────────


@app.get("/events")
async def get_all_events(user: Identity = Depends(current_user)):
    user.require(Role.ADMIN)
    async with db.async_session() as session:
        return await event_store.load_all_events(session)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "marketplace-order-service"}
