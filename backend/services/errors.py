from __future__ import annotations

from enum import Enum


class ProcurementErrorCode(str, Enum):
    ALREADY_EXISTS = "already_exists"
    APPROVAL_REQUIRED = "approval_required"
    ILLEGAL_TRANSITION = "illegal_transition"
    INVALID = "invalid"
    NOT_FOUND = "not_found"
    NOTHING_TO_RECEIVE = "nothing_to_receive"
    REQUIRED = "required"


class ProcurementError(Exception):
    code = ProcurementErrorCode.INVALID

    def __init__(self, message: str, *, code: ProcurementErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class PurchaseOrderNotFoundError(ProcurementError):
    code = ProcurementErrorCode.NOT_FOUND


class DuplicatePurchaseOrderError(ProcurementError):
    code = ProcurementErrorCode.ALREADY_EXISTS


class IllegalTransitionError(ProcurementError):
    code = ProcurementErrorCode.ILLEGAL_TRANSITION

    def __init__(self, from_status, to_status, message: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Illegal status transition {_label(from_status)} -> {_label(to_status)}"
        )


class ApprovalRequiredError(IllegalTransitionError):
    code = ProcurementErrorCode.APPROVAL_REQUIRED


class ReceiptValidationError(ProcurementError):
    """Réception invalide (quantité négative / non entière, réception vide...)."""


def _label(status) -> str:
    return getattr(status, "value", status)
