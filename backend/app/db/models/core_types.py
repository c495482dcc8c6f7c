import enum


class POStatus(str, enum.Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    sent_to_supplier = "sent_to_supplier"
    supplier_confirmed = "supplier_confirmed"
    partially_received = "partially_received"
    fully_received = "fully_received"
    invoiced = "invoiced"
    completed = "completed"
    cancelled = "cancelled"


class Priority(str, enum.Enum):
    normal = "normal"
    high = "high"
    urgent = "urgent"


class DeliveryCondition(str, enum.Enum):
    good = "GOOD"
    damaged = "DAMAGED"
    partial = "PARTIAL"
