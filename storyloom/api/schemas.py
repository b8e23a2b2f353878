"""
Request and response bodies for the HTTP API.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StartGenerationRequest(_CamelModel):
    order_id: str = Field(..., alias="orderId", min_length=1)
    retry: bool = Field(False, description="Allow restarting a failed order")


class StartGenerationResponse(_CamelModel):
    order_id: str = Field(..., alias="orderId")
    started: bool
    reason: str


class VerifyPaymentRequest(_CamelModel):
    session_id: str = Field(..., alias="sessionId", min_length=1)


class VerifyPaymentResponse(_CamelModel):
    success: bool
    paid: bool
    error: Optional[str] = None


class StorybookSummary(_CamelModel):
    id: Optional[str] = None
    title: Optional[str] = None
    cover_url: Optional[str] = Field(None, alias="coverUrl")


class GenerationStateResponse(_CamelModel):
    success: bool = True
    order_id: str = Field(..., alias="orderId")
    status: str
    progress: Optional[Dict[str, Any]] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    storybook: StorybookSummary


class HealthResponse(BaseModel):
    status: str = "ok"


class CancelOrderResponse(_CamelModel):
    order_id: str = Field(..., alias="orderId")
    cancelled: bool
    status: str
