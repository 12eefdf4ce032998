from __future__ import annotations

from typing import Any


class ReplenishmentError(Exception):
    """Base des erreurs métier du moteur et des opérations sur les commandes."""

    status_code = 500
    default_message = "Replenishment error"

    def __init__(self, message: str | None = None, code: str | None = None, details: Any = None):
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        error_dict: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.code:
            error_dict["code"] = self.code
        if self.details:
            error_dict["details"] = self.details
        return error_dict


class AuthorizationError(ReplenishmentError):
    """Trigger sans credentials valides : rejeté avant toute lecture."""

    status_code = 401
    default_message = "Unauthorized"


class ReadFailure(ReplenishmentError):
    """StockSnapshot / RuleCatalog / claims indisponibles : fatal pour le run."""

    default_message = "Could not read replenishment inputs"


class DuplicateConflict(ReplenishmentError):
    """Contrainte d'unicité touchée à l'écriture : attendu, non fatal."""

    status_code = 409
    default_message = "Order already generated for this window"


class PersistenceFailure(ReplenishmentError):
    """Échec d'écriture d'un brouillon (hors contrainte d'unicité)."""

    default_message = "Could not persist generated order"


class OrderNotFound(ReplenishmentError):
    status_code = 404
    default_message = "Generated order not found"


class InvalidTransition(ReplenishmentError):
    status_code = 409
    default_message = "Invalid order status transition"


class ProductNotFound(ReplenishmentError):
    status_code = 404
    default_message = "Product not found"


class InsufficientStock(ReplenishmentError):
    status_code = 400
    default_message = "Insufficient stock"
