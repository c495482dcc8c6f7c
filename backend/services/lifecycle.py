"""
Cycle de vie d'un bon de commande (PO).

Source de vérité unique pour : "le PO peut-il passer du statut A au statut B ?"

Le graphe est une table de données (statut -> statuts suivants autorisés).
Aucune exception n'est levée ici ; une transition illégale renvoie False,
c'est à l'appelant de refuser la mise à jour.
"""

from __future__ import annotations

from decimal import Decimal

from backend.app.db.models.core_types import POStatus


TRANSITIONS: dict[POStatus, frozenset[POStatus]] = {
    POStatus.draft: frozenset({POStatus.pending_approval, POStatus.approved}),
    POStatus.pending_approval: frozenset({POStatus.approved, POStatus.cancelled}),
    POStatus.approved: frozenset({POStatus.sent_to_supplier}),
    POStatus.sent_to_supplier: frozenset({POStatus.supplier_confirmed}),
    POStatus.supplier_confirmed: frozenset(
        {POStatus.partially_received, POStatus.fully_received}
    ),
    POStatus.partially_received: frozenset({POStatus.fully_received}),
    POStatus.fully_received: frozenset({POStatus.invoiced}),
    POStatus.invoiced: frozenset({POStatus.completed}),
    POStatus.completed: frozenset(),
    POStatus.cancelled: frozenset(),
}

# Règle métier de création (hors machine à états) :
# au-delà de ce montant, le PO passe par pending_approval.
APPROVAL_THRESHOLD = Decimal("2000")


def _coerce(status: POStatus | str | None) -> POStatus | None:
    if isinstance(status, POStatus):
        return status
    try:
        return POStatus(status)
    except ValueError:
        return None


def requires_approval(total_amount) -> bool:
    return Decimal(str(total_amount or 0)) > APPROVAL_THRESHOLD


def initial_transition_target(total_amount) -> POStatus:
    """Premier statut après draft, selon le montant de la commande."""
    if requires_approval(total_amount):
        return POStatus.pending_approval
    return POStatus.approved


class OrderLifecycle:
    """
    Machine à états des PO. Sans état : une instance partagée ou une
    instance par appel sont équivalentes, on l'injecte explicitement.
    """

    def __init__(self, transitions: dict[POStatus, frozenset[POStatus]] | None = None):
        self._transitions = transitions if transitions is not None else TRANSITIONS

    @property
    def statuses(self) -> frozenset[POStatus]:
        return frozenset(self._transitions)

    def can_transition(self, from_status: POStatus | str, to_status: POStatus | str) -> bool:
        src = _coerce(from_status)
        dst = _coerce(to_status)
        if src is None or dst is None:
            return False
        return dst in self._transitions.get(src, frozenset())

    def next_valid_states(self, status: POStatus | str) -> frozenset[POStatus]:
        src = _coerce(status)
        if src is None:
            return frozenset()
        return self._transitions.get(src, frozenset())

    def is_terminal(self, status: POStatus | str) -> bool:
        src = _coerce(status)
        return src is not None and not self._transitions.get(src)
