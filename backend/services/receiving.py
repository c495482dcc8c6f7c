"""
Rapprochement commandé / reçu.

Deux phases :
    1) record_receipt : calcule, ligne par ligne, le nouveau cumul reçu,
       l'écart (discrepancy) et le résumé de la réception.
    2) evaluate_completion : décide si le changement de statut peut être
       appliqué, ou si le rapport d'écarts doit d'abord être acquitté.

Règles :
    discrepancy = |qty_ordered - (qty_received + qty_to_receive)|
    Une sur-réception est un écart (signalée, jamais écrêtée).
    Le cumul reçu ne diminue jamais.

Aucun état interne, aucune I/O. L'appelant garantit la sérialisation
par PO (une seule mutation en vol) et fournit les quantités committées.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Hashable, Iterable, Mapping

from backend.app.db.models.core_types import POStatus
from backend.services.errors import ProcurementErrorCode, ReceiptValidationError


class Decision(str, enum.Enum):
    proceed = "proceed"
    require_acknowledgement = "require_acknowledgement"


@dataclass(frozen=True)
class LineItem:
    line_id: Hashable
    qty_ordered: int
    qty_received: int = 0
    unit_price: Decimal = Decimal("0")


@dataclass(frozen=True)
class LineReceipt:
    item: LineItem
    qty_to_receive: int

    @property
    def line_id(self) -> Hashable:
        return self.item.line_id

    @property
    def new_qty_received(self) -> int:
        return self.item.qty_received + self.qty_to_receive

    @property
    def discrepancy(self) -> int:
        return abs(self.item.qty_ordered - self.new_qty_received)

    @property
    def has_discrepancy(self) -> bool:
        return self.discrepancy != 0

    @property
    def is_fully_received(self) -> bool:
        return self.new_qty_received >= self.item.qty_ordered

    @property
    def is_over_received(self) -> bool:
        return self.new_qty_received > self.item.qty_ordered

    @property
    def is_short(self) -> bool:
        return self.new_qty_received < self.item.qty_ordered


@dataclass(frozen=True)
class ReceiptSummary:
    total_items: int
    fully_received: int
    items_with_discrepancies: int

    @property
    def partially_received(self) -> int:
        return self.total_items - self.fully_received

    @property
    def is_complete_receipt(self) -> bool:
        return (
            self.fully_received == self.total_items
            and self.items_with_discrepancies == 0
        )

    @classmethod
    def from_lines(cls, lines: Iterable[LineReceipt]) -> "ReceiptSummary":
        lines = list(lines)
        return cls(
            total_items=len(lines),
            fully_received=sum(1 for ln in lines if ln.is_fully_received),
            items_with_discrepancies=sum(1 for ln in lines if ln.has_discrepancy),
        )


@dataclass(frozen=True)
class ReceiptResult:
    updated_line_items: list[LineItem]
    lines: list[LineReceipt]
    summary: ReceiptSummary

    @property
    def discrepancies(self) -> list[LineReceipt]:
        return [ln for ln in self.lines if ln.has_discrepancy]


@dataclass(frozen=True)
class CompletionResult:
    decision: Decision
    target_status: POStatus | None = None
    discrepancies: list[LineReceipt] = field(default_factory=list)


def _validate_quantity(line_id: Hashable, qty) -> int:
    # bool est un int en Python : on le refuse explicitement
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ReceiptValidationError(
            f"Quantity to receive for line {line_id} must be an integer (got {qty!r})",
            code=ProcurementErrorCode.INVALID,
        )
    if qty < 0:
        raise ReceiptValidationError(
            f"Quantity to receive for line {line_id} cannot be negative (got {qty})",
            code=ProcurementErrorCode.INVALID,
        )
    return qty


class ReceiptReconciler:
    def record_receipt(
        self,
        line_items: Iterable[LineItem],
        incoming_quantities: Mapping[Hashable, int],
    ) -> ReceiptResult:
        """
        Applique une réception (partielle ou complète) aux lignes du PO.

        - les lignes absentes de incoming_quantities reçoivent 0
        - toute quantité est validée AVANT le moindre calcul
        - ne modifie pas les objets reçus : renvoie de nouvelles lignes
        """
        items = list(line_items)
        known_ids = {it.line_id for it in items}

        unknown = [lid for lid in incoming_quantities if lid not in known_ids]
        if unknown:
            raise ReceiptValidationError(
                f"Unknown line item(s) in receipt: {unknown}",
                code=ProcurementErrorCode.NOT_FOUND,
            )

        quantities = {
            lid: _validate_quantity(lid, qty) for lid, qty in incoming_quantities.items()
        }

        lines = [LineReceipt(item=it, qty_to_receive=quantities.get(it.line_id, 0)) for it in items]
        updated = [replace(ln.item, qty_received=ln.new_qty_received) for ln in lines]

        return ReceiptResult(
            updated_line_items=updated,
            lines=lines,
            summary=ReceiptSummary.from_lines(lines),
        )

    def evaluate_completion(
        self,
        summary: ReceiptSummary,
        acknowledged: bool = False,
        discrepancies: list[LineReceipt] | None = None,
    ) -> CompletionResult:
        """
        Porte d'acquittement : tant qu'un écart existe et n'a pas été
        explicitement accepté, aucun changement de statut n'est recommandé.
        """
        if summary.total_items == 0:
            raise ReceiptValidationError(
                "Nothing to receive",
                code=ProcurementErrorCode.NOTHING_TO_RECEIVE,
            )

        if summary.items_with_discrepancies > 0 and not acknowledged:
            return CompletionResult(
                decision=Decision.require_acknowledgement,
                target_status=None,
                discrepancies=list(discrepancies or []),
            )

        target = (
            POStatus.fully_received
            if summary.is_complete_receipt
            else POStatus.partially_received
        )
        return CompletionResult(
            decision=Decision.proceed,
            target_status=target,
            discrepancies=list(discrepancies or []),
        )
