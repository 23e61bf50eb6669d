"""
HTTP API
========
FastAPI surface over OrderService.

The caller's identity is supplied by the upstream identity provider in
the X-User-Id / X-User-Name / X-User-Role headers.

Error mapping:
    400  ValidationError, VoucherRejected, ScheduleViolation
    403  PermissionDeniedError
    404  OrderNotFoundError
    409  InvalidTransition, ConcurrentModificationError
    500  anything else ("Failed to update order, please try again")
"""

import logging
from typing import Optional, Dict, Any
from datetime import datetime, timezone

from fastapi import FastAPI, Depends, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import uvicorn

from config import get_config, validate_configuration
from db import create_store
from errors import (
    OrderEngineError,
    ValidationError,
    InvalidTransition,
    VoucherRejected,
    ScheduleViolation,
    OrderNotFoundError,
    PermissionDeniedError,
    ConcurrentModificationError,
)
from models import Actor, Role, ModificationType, Order, PaymentPlan, RemainingPaymentMethod
from order_state import OrderStatus, OrderType, Fulfillment
from orders import OrderService, payment_status
from schemas import (
    CreateOrderIn,
    TransitionIn,
    AcceptIn,
    DenyIn,
    EditItemsIn,
    AddItemIn,
    QuantityIn,
    PriceIn,
    PaymentProofIn,
    VoucherCheckIn,
    VoucherIn,
    ScheduleEntryIn,
    ScheduleIn,
    SettingsIn,
    DeliveryFeeIn,
    DeliveryFeesIn,
)


logger = logging.getLogger(__name__)


GENERIC_FAILURE = "Failed to update order, please try again"

ERROR_STATUS = (
    (ValidationError, 400),
    (VoucherRejected, 400),
    (ScheduleViolation, 400),
    (PermissionDeniedError, 403),
    (OrderNotFoundError, 404),
    (InvalidTransition, 409),
    (ConcurrentModificationError, 409),
)


def order_response(order: Order) -> Dict[str, Any]:
    data = order.to_dict()
    data["status_label"] = order.status.label
    data["payment_status"] = payment_status(order)
    return data


def _enum(enum_cls, value):
    return enum_cls(value) if value is not None else None


async def current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Actor:
    """Actor from identity headers."""
    if not x_user_id or not x_user_role:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_user_role}")

    return Actor(user_id=x_user_id, name=x_user_name or "", role=role)


def create_app(service: Optional[OrderService] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        service: OrderService to serve; built from configuration when omitted
    """
    config = get_config()

    if service is None:
        service = OrderService(create_store(config), config)

    app = FastAPI(title="Order Lifecycle & Pricing Engine")
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(OrderEngineError)
    async def engine_error_handler(request: Request, exc: OrderEngineError):
        status_code = 400
        for error_cls, code in ERROR_STATUS:
            if isinstance(exc, error_cls):
                status_code = code
                break

        body = {"error": type(exc).__name__, "detail": str(exc)}
        if isinstance(exc, VoucherRejected):
            body["reason"] = exc.reason.value

        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "StoreError", "detail": GENERIC_FAILURE})

    # ========================================================================
    # HEALTH & METRICS
    # ========================================================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "store_backend": config.store.backend,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # ========================================================================
    # ORDERS
    # ========================================================================

    @app.post("/orders", status_code=201)
    async def create_order(body: CreateOrderIn, actor: Actor = Depends(current_actor)):
        order = await service.create_order(
            actor,
            customer=body.customer.to_snapshot(),
            items=[item.to_selection() for item in body.items],
            order_type=OrderType(body.order_type),
            fulfillment=_enum(Fulfillment, body.pre_order_fulfillment),
            scheduled_at=body.pre_order_scheduled_at,
            voucher_code=body.voucher_code,
            promotion_id=body.promotion_id,
            distance_km=body.distance_km,
            payment_plan=_enum(PaymentPlan, body.payment_plan),
            downpayment_amount=body.downpayment_amount,
            downpayment_proof_url=body.downpayment_proof_url,
            remaining_payment_method=_enum(RemainingPaymentMethod, body.remaining_payment_method),
            payment_screenshot=body.payment_screenshot,
            special_instructions=body.special_instructions,
        )
        return order_response(order)

    @app.get("/orders")
    async def list_orders(status: Optional[str] = None, actor: Actor = Depends(current_actor)):
        try:
            status_filter = _enum(OrderStatus, status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
        orders = await service.list_orders(actor, status_filter)
        return [order_response(order) for order in orders]

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, actor: Actor = Depends(current_actor)):
        return order_response(await service.get_order(actor, order_id))

    @app.post("/orders/{order_id}/status")
    async def transition_status(order_id: str, body: TransitionIn, actor: Actor = Depends(current_actor)):
        order = await service.transition_status(
            actor,
            order_id,
            OrderStatus(body.status),
            {"reason": body.reason, "estimated_prep_time": body.estimated_prep_time}
        )
        return order_response(order)

    @app.post("/orders/{order_id}/accept")
    async def accept_order(order_id: str, body: AcceptIn, actor: Actor = Depends(current_actor)):
        return order_response(await service.accept_order(actor, order_id, body.estimated_prep_time))

    @app.post("/orders/{order_id}/deny")
    async def deny_order(order_id: str, body: DenyIn, actor: Actor = Depends(current_actor)):
        return order_response(await service.deny_order(actor, order_id, body.reason))

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, actor: Actor = Depends(current_actor)):
        return order_response(await service.cancel_order(actor, order_id))

    @app.put("/orders/{order_id}/remaining-payment-proof")
    async def update_remaining_payment_proof(
        order_id: str,
        body: PaymentProofIn,
        actor: Actor = Depends(current_actor)
    ):
        order = await service.update_remaining_payment_proof(actor, order_id, body.proof_url)
        return order_response(order)

    # ========================================================================
    # ITEM EDITS
    # ========================================================================

    @app.put("/orders/{order_id}/items")
    async def edit_order_items(order_id: str, body: EditItemsIn, actor: Actor = Depends(current_actor)):
        order = await service.edit_order_items(
            actor,
            order_id,
            [item.to_selection() for item in body.items],
            ModificationType.ORDER_EDITED,
            body.note
        )
        return order_response(order)

    @app.post("/orders/{order_id}/items")
    async def add_order_item(order_id: str, body: AddItemIn, actor: Actor = Depends(current_actor)):
        order = await service.add_order_item(actor, order_id, body.item.to_selection(), body.note)
        return order_response(order)

    @app.delete("/orders/{order_id}/items/{line_index}")
    async def remove_order_item(
        order_id: str,
        line_index: int,
        note: Optional[str] = None,
        actor: Actor = Depends(current_actor)
    ):
        return order_response(await service.remove_order_item(actor, order_id, line_index, note))

    @app.patch("/orders/{order_id}/items/{line_index}/quantity")
    async def change_item_quantity(
        order_id: str,
        line_index: int,
        body: QuantityIn,
        actor: Actor = Depends(current_actor)
    ):
        order = await service.change_item_quantity(actor, order_id, line_index, body.quantity, body.note)
        return order_response(order)

    @app.patch("/orders/{order_id}/items/{line_index}/price")
    async def change_item_price(
        order_id: str,
        line_index: int,
        body: PriceIn,
        actor: Actor = Depends(current_actor)
    ):
        order = await service.change_item_price(actor, order_id, line_index, body.unit_price, body.note)
        return order_response(order)

    @app.get("/orders/{order_id}/modifications")
    async def get_order_modifications(order_id: str, actor: Actor = Depends(current_actor)):
        records = await service.get_order_modifications(actor, order_id)
        return [record.to_dict() for record in records]

    # ========================================================================
    # VOUCHERS
    # ========================================================================

    @app.post("/vouchers/validate")
    async def validate_voucher(body: VoucherCheckIn, actor: Actor = Depends(current_actor)):
        check = await service.validate_voucher(body.code, body.amount)
        return check.to_dict()

    @app.get("/promotions")
    async def list_active_promotions(actor: Actor = Depends(current_actor)):
        return [promotion.to_dict() for promotion in await service.list_active_promotions()]

    @app.put("/vouchers")
    async def save_voucher(body: VoucherIn, actor: Actor = Depends(current_actor)):
        voucher = await service.save_voucher(actor, body.to_voucher())
        return voucher.to_dict()

    # ========================================================================
    # SETTINGS & SCHEDULE
    # ========================================================================

    @app.get("/settings")
    async def get_settings(actor: Actor = Depends(current_actor)):
        return (await service.get_settings()).to_dict()

    @app.patch("/settings")
    async def update_settings(body: SettingsIn, actor: Actor = Depends(current_actor)):
        settings = await service.update_settings(
            actor,
            platform_fee_enabled=body.platform_fee_enabled,
            platform_fee=body.platform_fee,
            fee_per_kilometer=body.fee_per_kilometer,
            average_prep_time=body.average_prep_time,
            average_delivery_time=body.average_delivery_time,
        )
        return settings.to_dict()

    @app.put("/settings/schedule")
    async def save_schedule(body: ScheduleIn, actor: Actor = Depends(current_actor)):
        schedule = await service.save_schedule(
            actor,
            body.restrictions_enabled,
            [entry.to_entry() for entry in body.dates]
        )
        return schedule.to_dict()

    @app.post("/settings/schedule/dates")
    async def add_schedule_entry(body: ScheduleEntryIn, actor: Actor = Depends(current_actor)):
        return (await service.add_schedule_entry(actor, body.to_entry())).to_dict()

    @app.delete("/settings/schedule/dates/{date}")
    async def remove_schedule_entry(date: str, actor: Actor = Depends(current_actor)):
        return (await service.remove_schedule_entry(actor, date)).to_dict()

    @app.get("/settings/schedule/check")
    async def validate_schedule_slot(date: str, time: str, actor: Actor = Depends(current_actor)):
        return {"date": date, "time": time, "allowed": await service.validate_schedule_slot(date, time)}

    # ========================================================================
    # DELIVERY FEES & DENIAL REASONS
    # ========================================================================

    @app.get("/delivery-fees")
    async def list_delivery_fees(actor: Actor = Depends(current_actor)):
        return [fee.to_dict() for fee in await service.list_delivery_fees()]

    @app.put("/delivery-fees")
    async def upsert_delivery_fees(body: DeliveryFeesIn, actor: Actor = Depends(current_actor)):
        fees = await service.upsert_delivery_fees(actor, [(f.barangay, f.fee) for f in body.fees])
        return [fee.to_dict() for fee in fees]

    @app.put("/delivery-fees/{barangay}")
    async def upsert_delivery_fee(barangay: str, body: DeliveryFeeIn, actor: Actor = Depends(current_actor)):
        fee = await service.upsert_delivery_fee(actor, barangay, body.fee)
        return fee.to_dict()

    @app.delete("/delivery-fees/{barangay}")
    async def remove_delivery_fee(barangay: str, actor: Actor = Depends(current_actor)):
        removed = await service.remove_delivery_fee(actor, barangay)
        if not removed:
            raise HTTPException(status_code=404, detail=f"No delivery fee for {barangay}")
        return {"removed": barangay}

    @app.get("/denial-reasons")
    async def list_denial_reasons(actor: Actor = Depends(current_actor)):
        return [reason.to_dict() for reason in await service.list_denial_reasons()]

    return app


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

def main():
    """Run the API server."""
    config = get_config()

    logging.basicConfig(
        level=getattr(logging, config.server.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    validate_configuration()

    logger.info(f"Starting server on {config.server.host}:{config.server.port}")

    uvicorn.run(
        create_app(),
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
