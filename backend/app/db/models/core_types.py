import enum


class OrderStatus(str, enum.Enum):
    pending_review = "pending_review"
    sent = "sent"
    cancelled = "cancelled"
    completed = "completed"


# Statuts qui "couvrent" un produit pour la fenêtre de génération
OPEN_ORDER_STATUSES = frozenset({OrderStatus.pending_review, OrderStatus.sent})

# pending_review -> sent -> completed, pending_review -> cancelled
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending_review: frozenset({OrderStatus.sent, OrderStatus.cancelled}),
    OrderStatus.sent: frozenset({OrderStatus.completed}),
    OrderStatus.cancelled: frozenset(),
    OrderStatus.completed: frozenset(),
}


class MovementType(str, enum.Enum):
    sale = "SALE"
    adjustment = "ADJUSTMENT"
    receipt = "RECEIPT"
