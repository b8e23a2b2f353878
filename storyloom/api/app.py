"""
FastAPI application exposing generation state, triggering and payment checks.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from storyloom.common import Settings, load_settings
from storyloom.pipeline.trigger_guard import NOT_FOUND
from storyloom.services import PipelineServices, build_services

from .schemas import (
    CancelOrderResponse,
    GenerationStateResponse,
    HealthResponse,
    StartGenerationRequest,
    StartGenerationResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

logger = logging.getLogger(__name__)

PAYMENT_ERROR_MESSAGE = "Payment verification failed."
SESSION_MISMATCH = "Session mismatch"


def create_app(
    services: PipelineServices | None = None,
    *,
    settings: Settings | None = None,
) -> FastAPI:
    """
    Build the API around ``services``; by default they are wired from settings.
    """
    if services is None:
        services = build_services(settings or load_settings())

    app = FastAPI(title="Storyloom Generation API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.services = services

    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse()

    @app.get("/api/generate/state", response_model=GenerationStateResponse)
    def generation_state(order_id: Optional[str] = Query(None, alias="orderId")):
        if not order_id:
            raise HTTPException(status_code=400, detail="Order ID required")
        report = services.tracker.read(order_id)
        if report is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return GenerationStateResponse(success=True, **report.as_dict())

    @app.post("/api/generate/start", response_model=StartGenerationResponse)
    def start_generation(
        body: StartGenerationRequest,
        background_tasks: BackgroundTasks,
        response: Response,
    ):
        result = services.launcher.launch(
            body.order_id,
            retry=body.retry,
            schedule=background_tasks.add_task,
        )
        if result.reason == NOT_FOUND:
            raise HTTPException(status_code=404, detail="Order not found")
        response.status_code = 202 if result.started else 200
        return StartGenerationResponse(**result.as_dict())

    @app.post("/api/orders/{order_id}/verify-payment", response_model=VerifyPaymentResponse)
    def verify_payment(order_id: str, body: VerifyPaymentRequest):
        if services.store.find_order(order_id) is None:
            raise HTTPException(status_code=404, detail="Order not found")
        if services.payment_verifier is None:
            raise HTTPException(status_code=503, detail="Payment verification unavailable")

        result = services.payment_verifier.verify(order_id, body.session_id)
        error = None
        if result.error:
            error = SESSION_MISMATCH if result.error == SESSION_MISMATCH else PAYMENT_ERROR_MESSAGE
        return VerifyPaymentResponse(success=result.success, paid=result.paid, error=error)

    @app.post("/api/orders/{order_id}/cancel", response_model=CancelOrderResponse)
    def cancel_order(order_id: str):
        if services.store.find_order(order_id) is None:
            raise HTTPException(status_code=404, detail="Order not found")
        if not services.store.cancel_order(order_id):
            raise HTTPException(status_code=409, detail="Only pending orders can be cancelled")
        order = services.store.get_order(order_id)
        return CancelOrderResponse(order_id=order_id, cancelled=True, status=order.status)

    return app
