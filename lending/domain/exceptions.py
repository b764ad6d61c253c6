"""
Domain Exceptions
================

Domain-specific exceptions that represent business rule violations
and error conditions within the lending domain.

The hierarchy is deliberately flat: one class per error kind, with
business rule failures distinguished by a ``BusinessRule`` tag.
"""

from enum import Enum
from typing import Optional, Dict, Any


class DomainException(Exception):
    """Base exception for all domain-related errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(DomainException):
    """Raised when a copy, borrowing, reservation, fine or member does not exist"""

    def __init__(self, entity: str, identifier: Any):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}", {"entity": entity, "identifier": identifier})


class Conflict(DomainException):
    """Raised when an optimistic-concurrency expectation does not hold.

    The caller should re-read the current state and retry the whole operation.
    """

    def __init__(self, entity: str, identifier: Any, expected: Dict[str, Any], actual: Dict[str, Any]):
        self.entity = entity
        self.identifier = identifier
        self.expected = expected
        self.actual = actual
        details = {"entity": entity, "identifier": identifier, "expected": expected, "actual": actual}
        super().__init__(f"Concurrent modification of {entity} {identifier}", details)


class InvalidTransition(DomainException):
    """Raised for an edge that the copy state machine does not allow"""

    def __init__(self, entity: str, identifier: Any, from_state: str, to_state: str):
        self.entity = entity
        self.identifier = identifier
        self.from_state = from_state
        self.to_state = to_state
        details = {"entity": entity, "identifier": identifier, "from": from_state, "to": to_state}
        super().__init__(f"Illegal transition for {entity} {identifier}: {from_state} -> {to_state}", details)


class BusinessRule(str, Enum):
    """Identifiers of the lending rules a request can violate"""
    BOOK_NOT_AVAILABLE = "BOOK_NOT_AVAILABLE"
    BORROWING_LIMIT_EXCEEDED = "BORROWING_LIMIT_EXCEEDED"
    OUTSTANDING_FINES = "OUTSTANDING_FINES"
    USER_NOT_ELIGIBLE = "USER_NOT_ELIGIBLE"
    ALREADY_RETURNED = "ALREADY_RETURNED"
    INVALID_STATUS = "INVALID_STATUS"
    CANNOT_RENEW_OVERDUE = "CANNOT_RENEW_OVERDUE"
    RENEWAL_LIMIT_EXCEEDED = "RENEWAL_LIMIT_EXCEEDED"
    INVALID_DUE_DATE = "INVALID_DUE_DATE"
    ALREADY_RESERVED = "ALREADY_RESERVED"
    RESERVATION_NOT_CANCELLABLE = "RESERVATION_NOT_CANCELLABLE"
    FINE_PENDING = "FINE_PENDING"
    FINE_ALREADY_SETTLED = "FINE_ALREADY_SETTLED"
    DUPLICATE_COPY_NUMBER = "DUPLICATE_COPY_NUMBER"
    COPY_IN_CIRCULATION = "COPY_IN_CIRCULATION"


class BusinessRuleViolation(DomainException):
    """Raised when business rules are violated"""

    def __init__(self, rule: BusinessRule, message: str, context: Optional[Dict[str, Any]] = None):
        self.rule = rule
        self.context = context or {}
        details = {"rule": rule.value, "context": self.context}
        super().__init__(f"Business rule violation ({rule.value}): {message}", details)


class InvalidInput(DomainException):
    """Raised when a request carries malformed values"""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        details = {"field": field, "value": value}
        super().__init__(f"Invalid input for {field}: {message}", details)


class Unavailable(DomainException):
    """Raised when storage or another required resource cannot be reached"""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Service unavailable during {operation}: {reason}",
                         {"operation": operation, "reason": reason})
