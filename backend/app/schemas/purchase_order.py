from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import DeliveryCondition, POStatus, Priority


class POLineCreate(BaseModel):
    product_sku: str = Field(min_length=1, max_length=64)
    product_name: str = Field(min_length=1, max_length=255)
    qty_ordered: int = Field(ge=0)
    unit_price: Decimal = Field(ge=0, max_digits=14, decimal_places=2)


class POCreate(BaseModel):
    po_number: str = Field(min_length=1, max_length=64)
    supplier_id: int
    priority: Priority = Priority.normal
    invoice_required: bool = True
    created_by: str | None = Field(default=None, max_length=200)
    lines: list[POLineCreate] = Field(default_factory=list)


class POLineRead(BaseModel):
    id: int
    product_sku: str
    product_name: str
    qty_ordered: int
    qty_received: int
    unit_price: Decimal
    # Dérivés, recalculés à la lecture
    discrepancy: int
    has_discrepancy: bool


class PORead(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    status: POStatus
    priority: Priority
    total_amount: Decimal
    approval_required: bool  # READ ONLY : dérivé de total_amount
    dispatch_blocked: bool
    invoice_required: bool
    invoice_created: bool
    needs_invoice: bool
    next_valid_statuses: list[POStatus]
    created_at: datetime
    approved_at: datetime | None = None
    approved_by: str | None = None
    lines: list[POLineRead] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    to_status: POStatus
    actor: str | None = Field(default=None, max_length=200)


class ActorRequest(BaseModel):
    actor: str | None = Field(default=None, max_length=200)


class ReceiptLineIn(BaseModel):
    line_id: int
    # validé côté service (négatif -> 400)
    qty_to_receive: int
    notes: str | None = None


class ReceiptPreviewRequest(BaseModel):
    lines: list[ReceiptLineIn] = Field(default_factory=list)


class ReceiptCreate(ReceiptPreviewRequest):
    received_by: str = Field(max_length=200)
    received_at: datetime | None = None
    delivery_condition: DeliveryCondition = DeliveryCondition.good
    notes: str | None = None
    acknowledged: bool = False


class ReceiptCloseRequest(BaseModel):
    actor: str = Field(max_length=200)
    reason: str | None = None


class LineReceiptRead(BaseModel):
    line_id: int
    qty_ordered: int
    qty_received: int
    qty_to_receive: int
    new_qty_received: int
    discrepancy: int
    has_discrepancy: bool
    is_fully_received: bool
    is_over_received: bool


class ReceiptSummaryRead(BaseModel):
    total_items: int
    fully_received: int
    partially_received: int
    items_with_discrepancies: int
    is_complete_receipt: bool


class ReceiptPreviewRead(BaseModel):
    lines: list[LineReceiptRead]
    summary: ReceiptSummaryRead
    discrepancies: list[LineReceiptRead]


class ReceiptOutcomeRead(ReceiptPreviewRead):
    decision: str
    target_status: POStatus | None = None
    committed: bool
    goods_receipt_id: int | None = None
    status: POStatus
