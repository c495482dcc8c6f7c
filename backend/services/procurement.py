"""
Procurement service.

Ce module orchestre les flux d'achat (création, approbation, réception,
facturation) autour des deux composants purs :
    backend.services.lifecycle  (transitions légales)
    backend.services.receiving  (rapprochement commandé / reçu)

C'est ici que vit le contrat "appelant" :
    - règle d'approbation (montant > seuil) appliquée à la soumission
    - refus de persister une transition illégale
    - sérialisation par PO (verrou SQL FOR UPDATE sur la ligne du PO)
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import (
    AuditLog,
    GoodsReceipt,
    GoodsReceiptLine,
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
)
from backend.app.db.models.core_types import DeliveryCondition, POStatus, Priority
from backend.services.errors import (
    ApprovalRequiredError,
    DuplicatePurchaseOrderError,
    IllegalTransitionError,
    ProcurementErrorCode,
    PurchaseOrderNotFoundError,
    ReceiptValidationError,
)
from backend.services.lifecycle import OrderLifecycle, initial_transition_target
from backend.services.receiving import (
    CompletionResult,
    Decision,
    LineItem,
    LineReceipt,
    ReceiptReconciler,
    ReceiptResult,
)

logger = logging.getLogger(__name__)

# Statuts depuis lesquels une réception est possible
RECEIVABLE_STATUSES = {
    POStatus.supplier_confirmed,
    POStatus.partially_received,
}

# Statuts atteignables uniquement via leur opération dédiée
# (receive_goods / close_receipt / record_invoice), jamais via transition_status.
GUARDED_STATUSES = {
    POStatus.partially_received,
    POStatus.fully_received,
    POStatus.invoiced,
}


@dataclass(frozen=True)
class NewLine:
    product_sku: str
    product_name: str
    qty_ordered: int
    unit_price: Decimal


@dataclass(frozen=True)
class ReceiveOutcome:
    order: PurchaseOrder
    receipt: ReceiptResult
    completion: CompletionResult
    committed: bool
    goods_receipt_id: int | None = None
    previous_status: POStatus | None = None


# ---------- Helpers ----------
def _now() -> datetime:
    return datetime.now(timezone.utc)


def _audit(db: Session, *, actor: str | None, action: str, po: PurchaseOrder, **meta) -> None:
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity_type="purchase_order",
            entity_id=str(po.id),
            meta=json.dumps(meta, default=str, sort_keys=True),
        )
    )


def get_purchase_order(db: Session, po_id: int, *, for_update: bool = False) -> PurchaseOrder:
    stmt = select(PurchaseOrder).where(PurchaseOrder.id == po_id)
    if for_update:
        stmt = stmt.with_for_update()
    po = db.execute(stmt).scalar_one_or_none()
    if not po:
        raise PurchaseOrderNotFoundError(f"PO {po_id} not found")
    return po


def to_line_items(lines: Iterable[PurchaseOrderLine]) -> list[LineItem]:
    return [
        LineItem(
            line_id=int(ln.id),
            qty_ordered=int(ln.qty_ordered),
            qty_received=int(ln.qty_received),
            unit_price=Decimal(ln.unit_price),
        )
        for ln in lines
    ]


def needs_invoice(po: PurchaseOrder) -> bool:
    return (
        po.status == POStatus.fully_received
        and po.invoice_required
        and not po.invoice_created
    )


def _apply_transition(
    db: Session,
    po: PurchaseOrder,
    to_status: POStatus,
    *,
    actor: str | None,
    lifecycle: OrderLifecycle,
    **meta,
) -> None:
    if not lifecycle.can_transition(po.status, to_status):
        logger.warning(
            "Refused transition po=%s %s -> %s", po.po_number, po.status.value, to_status.value
        )
        raise IllegalTransitionError(po.status, to_status)

    previous = po.status
    po.status = to_status
    if to_status == POStatus.approved:
        po.approved_at = _now()
        po.approved_by = actor

    _audit(
        db,
        actor=actor,
        action="status_transition",
        po=po,
        from_status=previous.value,
        to_status=to_status.value,
        **meta,
    )
    logger.info("PO %s: %s -> %s", po.po_number, previous.value, to_status.value)


# ---------- Création ----------
def create_purchase_order(
    db: Session,
    *,
    po_number: str,
    supplier_id: int,
    lines: Iterable[NewLine],
    priority: Priority = Priority.normal,
    invoice_required: bool = True,
    actor: str | None = None,
) -> PurchaseOrder:
    exists = db.execute(
        select(PurchaseOrder).where(PurchaseOrder.po_number == po_number)
    ).scalar_one_or_none()
    if exists:
        raise DuplicatePurchaseOrderError(f"PO number {po_number} already exists")

    if not db.get(Supplier, supplier_id):
        raise PurchaseOrderNotFoundError(
            f"Supplier {supplier_id} not found", code=ProcurementErrorCode.NOT_FOUND
        )

    lines = list(lines)
    total = sum(
        (Decimal(ln.qty_ordered) * Decimal(str(ln.unit_price)) for ln in lines),
        Decimal("0"),
    )

    po = PurchaseOrder(
        po_number=po_number,
        supplier_id=supplier_id,
        status=POStatus.draft,
        priority=priority,
        total_amount=total,
        dispatch_blocked=True,
        invoice_required=invoice_required,
        invoice_created=False,
    )
    for ln in lines:
        po.lines.append(
            PurchaseOrderLine(
                product_sku=ln.product_sku,
                product_name=ln.product_name,
                qty_ordered=ln.qty_ordered,
                qty_received=0,
                unit_price=ln.unit_price,
            )
        )
    db.add(po)
    db.flush()  # get po.id

    _audit(
        db,
        actor=actor,
        action="purchase_order_created",
        po=po,
        total_amount=total,
        approval_required=po.approval_required,
    )
    db.commit()
    db.refresh(po)
    logger.info("PO %s created (total=%s)", po.po_number, total)
    return po


# ---------- Transitions ----------
def submit_purchase_order(
    db: Session,
    po_id: int,
    *,
    actor: str | None = None,
    lifecycle: OrderLifecycle | None = None,
) -> PurchaseOrder:
    """draft -> pending_approval (montant > seuil) ou draft -> approved."""
    lifecycle = lifecycle or OrderLifecycle()
    try:
        po = get_purchase_order(db, po_id, for_update=True)
        target = initial_transition_target(po.total_amount)
        _apply_transition(db, po, target, actor=actor, lifecycle=lifecycle)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    return po


def transition_status(
    db: Session,
    po_id: int,
    to_status: POStatus | str,
    *,
    actor: str | None = None,
    lifecycle: OrderLifecycle | None = None,
) -> PurchaseOrder:
    lifecycle = lifecycle or OrderLifecycle()
    try:
        po = get_purchase_order(db, po_id, for_update=True)

        try:
            target = POStatus(to_status)
        except ValueError:
            raise IllegalTransitionError(po.status, to_status) from None

        if target in GUARDED_STATUSES:
            raise IllegalTransitionError(
                po.status,
                target,
                f"Status {target.value} can only be reached through its dedicated operation",
            )

        # Règle d'approbation : elle vit chez l'appelant, pas dans la machine à états
        if (
            po.status == POStatus.draft
            and target == POStatus.approved
            and po.approval_required
        ):
            raise ApprovalRequiredError(
                po.status,
                target,
                f"PO {po.po_number} requires approval (total {po.total_amount})",
            )

        _apply_transition(db, po, target, actor=actor, lifecycle=lifecycle)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    return po


def record_invoice(
    db: Session,
    po_id: int,
    *,
    actor: str | None = None,
    lifecycle: OrderLifecycle | None = None,
) -> PurchaseOrder:
    """fully_received -> invoiced ; la facture débloque l'expédition."""
    lifecycle = lifecycle or OrderLifecycle()
    try:
        po = get_purchase_order(db, po_id, for_update=True)
        _apply_transition(db, po, POStatus.invoiced, actor=actor, lifecycle=lifecycle)
        po.invoice_created = True
        po.dispatch_blocked = False
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    return po


# ---------- Réception ----------
def incoming_quantities(pairs: Iterable[tuple[int, int]]) -> dict[int, int]:
    """(line_id, qty) -> {line_id: qty} ; une ligne citée deux fois est refusée."""
    incoming: dict[int, int] = {}
    for line_id, qty in pairs:
        if line_id in incoming:
            raise ReceiptValidationError(f"Line {line_id} appears more than once in receipt")
        incoming[line_id] = qty
    return incoming


def _make_receipt_idempotency_key(po_id: int, provided: str) -> str:
    raw = f"GR-IDEMP:{po_id}:{provided.strip()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def preview_receipt(
    db: Session,
    po_id: int,
    incoming: Mapping[int, int],
    *,
    reconciler: ReceiptReconciler | None = None,
) -> ReceiptResult:
    """Rapport d'écarts pour l'écran de réception. N'écrit rien."""
    reconciler = reconciler or ReceiptReconciler()
    po = get_purchase_order(db, po_id)
    return reconciler.record_receipt(to_line_items(po.lines), incoming)


def receive_goods(
    db: Session,
    po_id: int,
    incoming: Mapping[int, int],
    *,
    received_by: str,
    acknowledged: bool = False,
    delivery_condition: DeliveryCondition = DeliveryCondition.good,
    notes: str | None = None,
    line_notes: Mapping[int, str] | None = None,
    received_at: datetime | None = None,
    idempotency_key: str | None = None,
    lifecycle: OrderLifecycle | None = None,
    reconciler: ReceiptReconciler | None = None,
) -> ReceiveOutcome:
    """
    Enregistre une réception sur un PO.

    - verrouille la ligne du PO (une seule mutation en vol par PO)
    - écarts non acquittés -> rien n'est écrit, decision=require_acknowledgement
    - sinon : cumul reçu, journal de réception, statut, audit, commit
    """
    lifecycle = lifecycle or OrderLifecycle()
    reconciler = reconciler or ReceiptReconciler()
    line_notes = line_notes or {}

    if not received_by or not received_by.strip():
        raise ReceiptValidationError(
            "received_by is required", code=ProcurementErrorCode.REQUIRED
        )

    receipt_key = (
        _make_receipt_idempotency_key(po_id, idempotency_key)
        if idempotency_key and idempotency_key.strip()
        else None
    )

    try:
        po = get_purchase_order(db, po_id, for_update=True)

        # Fast path : réception déjà enregistrée -> pas de double comptage
        if receipt_key:
            existing = db.execute(
                select(GoodsReceipt).where(GoodsReceipt.idempotency_key == receipt_key)
            ).scalar_one_or_none()
            if existing:
                db.rollback()
                return _replay_outcome(db, po_id, existing, reconciler=reconciler)

        if po.status not in RECEIVABLE_STATUSES:
            raise IllegalTransitionError(
                po.status,
                POStatus.partially_received,
                f"PO {po.po_number} cannot receive goods in status {po.status.value}",
            )

        # Verrou explicite des lignes (baseline committée)
        db.execute(
            select(PurchaseOrderLine)
            .where(PurchaseOrderLine.po_id == po.id)
            .with_for_update()
        ).all()

        result = reconciler.record_receipt(to_line_items(po.lines), incoming)
        if not any(ln.qty_to_receive for ln in result.lines):
            raise ReceiptValidationError(
                "Nothing to receive", code=ProcurementErrorCode.NOTHING_TO_RECEIVE
            )

        completion = reconciler.evaluate_completion(
            result.summary,
            acknowledged=acknowledged,
            discrepancies=result.discrepancies,
        )

        if completion.decision == Decision.require_acknowledgement:
            db.rollback()
            logger.info(
                "PO %s: receipt pending acknowledgement (%d discrepancies)",
                po.po_number,
                result.summary.items_with_discrepancies,
            )
            return ReceiveOutcome(
                order=po,
                receipt=result,
                completion=completion,
                committed=False,
                previous_status=po.status,
            )

        previous = po.status
        gr = GoodsReceipt(
            po_id=po.id,
            received_at=received_at or _now(),
            received_by=received_by.strip(),
            delivery_condition=delivery_condition,
            notes=notes,
            idempotency_key=receipt_key,
        )
        db.add(gr)

        rows = {int(ln.id): ln for ln in po.lines}
        for ln in result.lines:
            if not ln.qty_to_receive:
                continue
            rows[ln.line_id].qty_received = ln.new_qty_received
            gr.lines.append(
                GoodsReceiptLine(
                    line_id=ln.line_id,
                    qty_received=ln.qty_to_receive,
                    notes=line_notes.get(ln.line_id),
                )
            )
        db.flush()

        # Deuxième réception partielle : partially_received reste partially_received
        if completion.target_status != po.status:
            _apply_transition(
                db,
                po,
                completion.target_status,
                actor=received_by,
                lifecycle=lifecycle,
                goods_receipt_id=gr.id,
            )

        _audit(
            db,
            actor=received_by,
            action="goods_receipt",
            po=po,
            goods_receipt_id=gr.id,
            acknowledged=acknowledged,
            items_with_discrepancies=result.summary.items_with_discrepancies,
            is_complete_receipt=result.summary.is_complete_receipt,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(po)
    logger.info(
        "PO %s: goods receipt %s recorded (status=%s)", po.po_number, gr.id, po.status.value
    )
    return ReceiveOutcome(
        order=po,
        receipt=result,
        completion=completion,
        committed=True,
        goods_receipt_id=int(gr.id),
        previous_status=previous,
    )


def close_receipt(
    db: Session,
    po_id: int,
    *,
    actor: str,
    reason: str | None = None,
    lifecycle: OrderLifecycle | None = None,
) -> PurchaseOrder:
    """
    Clôture de réception : partially_received -> fully_received.

    Décision humaine (reliquat abandonné, sur-livraison acceptée) ; les
    quantités reçues ne sont pas modifiées, seuls les écarts restants sont
    tracés dans l'audit.
    """
    lifecycle = lifecycle or OrderLifecycle()

    if not actor or not actor.strip():
        raise ReceiptValidationError("actor is required", code=ProcurementErrorCode.REQUIRED)

    try:
        po = get_purchase_order(db, po_id, for_update=True)
        if po.status != POStatus.partially_received:
            raise IllegalTransitionError(
                po.status,
                POStatus.fully_received,
                f"PO {po.po_number} has no open receipt to close (status {po.status.value})",
            )

        open_lines = {
            ln.line_id: ln.discrepancy
            for ln in (LineReceipt(it, 0) for it in to_line_items(po.lines))
            if ln.has_discrepancy
        }
        _apply_transition(
            db,
            po,
            POStatus.fully_received,
            actor=actor.strip(),
            lifecycle=lifecycle,
            closed_short=True,
            reason=reason,
            open_discrepancies=open_lines,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(po)
    return po


def _replay_outcome(
    db: Session,
    po_id: int,
    existing: GoodsReceipt,
    *,
    reconciler: ReceiptReconciler,
) -> ReceiveOutcome:
    # Résumé recalculé sur l'état committé (réception à zéro)
    po = get_purchase_order(db, po_id)
    result = reconciler.record_receipt(to_line_items(po.lines), {})
    completion = CompletionResult(decision=Decision.proceed, target_status=po.status)
    logger.info("PO %s: idempotent replay of goods receipt %s", po.po_number, existing.id)
    return ReceiveOutcome(
        order=po,
        receipt=result,
        completion=completion,
        committed=False,
        goods_receipt_id=int(existing.id),
        previous_status=po.status,
    )
