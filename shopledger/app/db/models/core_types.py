import enum


class POStatus(str, enum.Enum):
    pending = "PENDING"
    partially_received = "PARTIALLY_RECEIVED"
    received = "RECEIVED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class MovementType(str, enum.Enum):
    purchase = "PURCHASE"
    sale = "SALE"
    adjustment = "ADJUSTMENT"
    transfer = "TRANSFER"
    service_use = "SERVICE_USE"
    ret = "RETURN"
    damage = "DAMAGE"
    opening_stock = "OPENING_STOCK"


class ReturnReason(str, enum.Enum):
    damaged = "DAMAGED"
    wrong_item = "WRONG_ITEM"
    quality_issue = "QUALITY_ISSUE"
    excess_stock = "EXCESS_STOCK"
    expired = "EXPIRED"
    defective = "DEFECTIVE"
    other = "OTHER"


class ReturnType(str, enum.Enum):
    refund = "REFUND"
    replacement = "REPLACEMENT"


class ReturnStatus(str, enum.Enum):
    pending = "PENDING"
    confirmed = "CONFIRMED"
    rejected = "REJECTED"


class ReferenceType(str, enum.Enum):
    purchase_order = "PURCHASE_ORDER"
    purchase_return = "PURCHASE_RETURN"
    manual = "MANUAL"
