from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_lifecycle, get_reconciler
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.app.schemas.purchase_order import (
    ActorRequest,
    LineReceiptRead,
    POCreate,
    PORead,
    POLineRead,
    ReceiptCloseRequest,
    ReceiptCreate,
    ReceiptOutcomeRead,
    ReceiptPreviewRead,
    ReceiptPreviewRequest,
    ReceiptSummaryRead,
    TransitionRequest,
)
from backend.services import procurement
from backend.services.errors import (
    DuplicatePurchaseOrderError,
    IllegalTransitionError,
    ProcurementError,
    PurchaseOrderNotFoundError,
)
from backend.services.lifecycle import OrderLifecycle
from backend.services.receiving import LineReceipt, ReceiptReconciler, ReceiptResult

router = APIRouter(prefix="/purchase-orders")


# ---------- Helpers ----------
def _http_error(exc: ProcurementError) -> HTTPException:
    if isinstance(exc, PurchaseOrderNotFoundError):
        status_code = 404
    elif isinstance(exc, (IllegalTransitionError, DuplicatePurchaseOrderError)):
        status_code = 409
    else:
        status_code = 400
    return HTTPException(
        status_code=status_code,
        detail={"code": exc.code.value, "message": exc.message},
    )


def _sorted_statuses(statuses) -> list:
    return sorted(statuses, key=lambda s: s.value)


def _po_read(po: PurchaseOrder, lifecycle: OrderLifecycle) -> PORead:
    # quantité entrante nulle : écart courant de chaque ligne
    current = {it.line_id: LineReceipt(it, 0) for it in procurement.to_line_items(po.lines)}
    return PORead(
        id=po.id,
        po_number=po.po_number,
        supplier_id=po.supplier_id,
        status=po.status,
        priority=po.priority,
        total_amount=po.total_amount,
        approval_required=po.approval_required,
        dispatch_blocked=po.dispatch_blocked,
        invoice_required=po.invoice_required,
        invoice_created=po.invoice_created,
        needs_invoice=procurement.needs_invoice(po),
        next_valid_statuses=_sorted_statuses(lifecycle.next_valid_states(po.status)),
        created_at=po.created_at,
        approved_at=po.approved_at,
        approved_by=po.approved_by,
        lines=[
            POLineRead(
                id=l.id,
                product_sku=l.product_sku,
                product_name=l.product_name,
                qty_ordered=l.qty_ordered,
                qty_received=l.qty_received,
                unit_price=l.unit_price,
                discrepancy=current[l.id].discrepancy,
                has_discrepancy=current[l.id].has_discrepancy,
            )
            for l in po.lines
        ],
    )


def _line_read(ln: LineReceipt) -> LineReceiptRead:
    return LineReceiptRead(
        line_id=ln.line_id,
        qty_ordered=ln.item.qty_ordered,
        qty_received=ln.item.qty_received,
        qty_to_receive=ln.qty_to_receive,
        new_qty_received=ln.new_qty_received,
        discrepancy=ln.discrepancy,
        has_discrepancy=ln.has_discrepancy,
        is_fully_received=ln.is_fully_received,
        is_over_received=ln.is_over_received,
    )


def _preview_fields(result: ReceiptResult) -> dict:
    s = result.summary
    return {
        "lines": [_line_read(ln) for ln in result.lines],
        "discrepancies": [_line_read(ln) for ln in result.discrepancies],
        "summary": ReceiptSummaryRead(
            total_items=s.total_items,
            fully_received=s.fully_received,
            partially_received=s.partially_received,
            items_with_discrepancies=s.items_with_discrepancies,
            is_complete_receipt=s.is_complete_receipt,
        ),
    }


# ---------- Endpoints ----------
@router.get("")
def list_pos(db: Session = Depends(get_db)):
    rows = db.execute(select(PurchaseOrder).order_by(PurchaseOrder.id.desc())).scalars().all()
    return [
        {
            "id": po.id,
            "po_number": po.po_number,
            "supplier_id": po.supplier_id,
            "status": po.status,
            "priority": po.priority,
            "total_amount": po.total_amount,
            "approval_required": po.approval_required,
            "needs_invoice": procurement.needs_invoice(po),
            "created_at": po.created_at,
        }
        for po in rows
    ]


@router.post("", status_code=201, response_model=PORead)
def create_po(
    payload: POCreate,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    try:
        po = procurement.create_purchase_order(
            db,
            po_number=payload.po_number,
            supplier_id=payload.supplier_id,
            priority=payload.priority,
            invoice_required=payload.invoice_required,
            actor=payload.created_by,
            lines=[
                procurement.NewLine(
                    product_sku=ln.product_sku,
                    product_name=ln.product_name,
                    qty_ordered=ln.qty_ordered,
                    unit_price=ln.unit_price,
                )
                for ln in payload.lines
            ],
        )
    except ProcurementError as e:
        db.rollback()
        raise _http_error(e)
    return _po_read(po, lifecycle)


@router.get("/{po_id}", response_model=PORead)
def get_po(
    po_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise HTTPException(status_code=404, detail="PO not found")
    return _po_read(po, lifecycle)


@router.get("/{po_id}/next-statuses")
def next_statuses(
    po_id: int,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    po = db.get(PurchaseOrder, po_id)
    if not po:
        raise HTTPException(status_code=404, detail="PO not found")
    return {
        "status": po.status,
        "next_valid_statuses": _sorted_statuses(lifecycle.next_valid_states(po.status)),
    }


@router.post("/{po_id}/submit", response_model=PORead)
def submit_po(
    po_id: int,
    payload: ActorRequest | None = None,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    actor = payload.actor if payload else None
    try:
        po = procurement.submit_purchase_order(db, po_id, actor=actor, lifecycle=lifecycle)
    except ProcurementError as e:
        raise _http_error(e)
    return _po_read(po, lifecycle)


@router.post("/{po_id}/transition", response_model=PORead)
def transition_po(
    po_id: int,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    try:
        po = procurement.transition_status(
            db, po_id, payload.to_status, actor=payload.actor, lifecycle=lifecycle
        )
    except ProcurementError as e:
        raise _http_error(e)
    return _po_read(po, lifecycle)


@router.post("/{po_id}/receipts/preview", response_model=ReceiptPreviewRead)
def preview_receipt(
    po_id: int,
    payload: ReceiptPreviewRequest,
    db: Session = Depends(get_db),
    reconciler: ReceiptReconciler = Depends(get_reconciler),
):
    try:
        incoming = procurement.incoming_quantities(
            (ln.line_id, ln.qty_to_receive) for ln in payload.lines
        )
        result = procurement.preview_receipt(db, po_id, incoming, reconciler=reconciler)
    except ProcurementError as e:
        raise _http_error(e)
    return ReceiptPreviewRead(**_preview_fields(result))


@router.post("/{po_id}/receipts", response_model=ReceiptOutcomeRead)
def create_receipt(
    po_id: int,
    payload: ReceiptCreate,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    reconciler: ReceiptReconciler = Depends(get_reconciler),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    line_notes = {ln.line_id: ln.notes for ln in payload.lines if ln.notes}
    try:
        incoming = procurement.incoming_quantities(
            (ln.line_id, ln.qty_to_receive) for ln in payload.lines
        )
        outcome = procurement.receive_goods(
            db,
            po_id,
            incoming,
            received_by=payload.received_by,
            acknowledged=payload.acknowledged,
            delivery_condition=payload.delivery_condition,
            notes=payload.notes,
            line_notes=line_notes,
            received_at=payload.received_at,
            idempotency_key=idempotency_key,
            lifecycle=lifecycle,
            reconciler=reconciler,
        )
    except ProcurementError as e:
        raise _http_error(e)

    return ReceiptOutcomeRead(
        **_preview_fields(outcome.receipt),
        decision=outcome.completion.decision.value,
        target_status=outcome.completion.target_status,
        committed=outcome.committed,
        goods_receipt_id=outcome.goods_receipt_id,
        status=outcome.order.status,
    )


@router.post("/{po_id}/receipts/close", response_model=PORead)
def close_receipt(
    po_id: int,
    payload: ReceiptCloseRequest,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    try:
        po = procurement.close_receipt(
            db, po_id, actor=payload.actor, reason=payload.reason, lifecycle=lifecycle
        )
    except ProcurementError as e:
        raise _http_error(e)
    return _po_read(po, lifecycle)


@router.post("/{po_id}/invoice", response_model=PORead)
def invoice_po(
    po_id: int,
    payload: ActorRequest | None = None,
    db: Session = Depends(get_db),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    actor = payload.actor if payload else None
    try:
        po = procurement.record_invoice(db, po_id, actor=actor, lifecycle=lifecycle)
    except ProcurementError as e:
        raise _http_error(e)
    return _po_read(po, lifecycle)
