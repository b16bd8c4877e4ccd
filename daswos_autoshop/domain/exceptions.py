"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


# Validation errors: rejected at the boundary, never partially applied


class InvalidAmountError(DomainException):
    """Ledger amount is zero, negative or not an integer"""

    pass


class InvalidKindError(DomainException):
    """Ledger transaction kind is not one of the allowed kinds"""

    pass


class ProductNotFoundError(DomainException):
    """Catalog has no product with the requested id"""

    pass


class RecommendationNotFoundError(DomainException):
    """No recommendation with the requested id"""

    pass


class InvalidStatusTransitionError(DomainException):
    """Recommendation is not in a status that allows the requested transition"""

    def __init__(self, recommendation_id: str, current: str | None, target: str):
        self.recommendation_id = recommendation_id
        self.current = current
        self.target = target
        super().__init__(f"Recommendation {recommendation_id} cannot move from {current} to {target}")


# Resource errors: the operation fails, the owning session continues


class InsufficientBalanceError(DomainException):
    """Spend would drive the balance below zero"""

    def __init__(self, user_id: str, requested: int, available: int):
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient balance for {user_id}: requested {requested}, available {available}")


class LedgerConflictError(DomainException):
    """Concurrent append changed the account between the balance check and the write"""

    pass


class StorageError(DomainException):
    """Persistence backend failed or is unreachable"""

    pass


class SettlementNotRecordedError(StorageError):
    """Card payment went through but the ledger could not record it"""

    def __init__(self, message: str, reference: str | None, refunded: bool):
        self.reference = reference
        self.refunded = refunded
        super().__init__(message)


class CatalogUnavailableError(DomainException):
    """Catalog service returned an error or is unavailable"""

    pass


class PaymentSettlementError(DomainException):
    """Payment provider declined or could not be reached"""

    pass


class NoMatchError(DomainException):
    """No catalog candidate survived filtering"""

    pass


# Session failures: fatal to the owning session only


class SessionPersistenceError(DomainException):
    """AutoShop session state could not be saved"""

    pass


class SessionAlreadyActiveError(DomainException):
    """User already has a running AutoShop session"""

    pass
