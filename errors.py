"""Error kinds raised by the ticketing core.

Every expected failure is a ``TicketingError``; ``main.py`` renders them as
``{"success": false, "message": ..., "error": kind}`` with ``status_code``.
"""


class TicketingError(Exception):
    kind = "error"
    status_code = 400
    message = "Request failed"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "message": self.message, "error": self.kind}


class ValidationFailed(TicketingError):
    kind = "validation_failed"
    status_code = 422
    message = "Validation failed"

    def __init__(self, errors: dict, message=None):
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class NotAuthenticated(TicketingError):
    kind = "not_authenticated"
    status_code = 401
    message = "User not authenticated"


class Forbidden(TicketingError):
    kind = "forbidden"
    status_code = 403
    message = "Forbidden"


class NotFound(TicketingError):
    kind = "not_found"
    status_code = 404
    message = "Not found"


class TicketTypeNotFound(NotFound):
    kind = "ticket_type_not_found"
    message = "Ticket type not found or not available"


class BusinessRuleViolation(TicketingError):
    kind = "business_rule_violation"
    status_code = 409


class InsufficientInventory(BusinessRuleViolation):
    kind = "insufficient_inventory"
    message = "Not enough tickets available"


class PerUserLimitExceeded(BusinessRuleViolation):
    kind = "per_user_limit_exceeded"

    def __init__(self, max_per_user: int):
        self.max_per_user = max_per_user
        super().__init__(f"You can only purchase up to {max_per_user} tickets of this type")


class InvalidDiscount(BusinessRuleViolation):
    kind = "invalid_discount"

    MESSAGES = {
        "not_found": "Invalid discount code",
        "inactive": "Discount code is no longer active",
        "not_started": "Discount code is not valid yet",
        "expired": "Discount code has expired",
        "wrong_ticket_type": "Discount code not applicable to this ticket type",
        "wrong_event": "Discount code not applicable to this event",
        "usage_exhausted": "Discount code usage limit reached",
    }

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self.MESSAGES.get(reason, "Invalid discount code"))

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class InvalidTransaction(BusinessRuleViolation):
    kind = "invalid_transaction"

    MESSAGES = {
        "already_used": "Transaction has already been used for a purchase",
        "insufficient_amount": "Transaction amount does not cover this purchase",
    }

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self.MESSAGES[reason])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class InvalidOrUsedTicket(BusinessRuleViolation):
    kind = "invalid_or_used_ticket"
    message = "Invalid or used ticket"


class AlreadyCheckedIn(BusinessRuleViolation):
    kind = "already_checked_in"
    message = "Attendee already checked in"


class InvalidTicket(BusinessRuleViolation):
    kind = "invalid_ticket"
    message = "Invalid ticket"


class InvalidOrExpiredAccessCode(BusinessRuleViolation):
    kind = "invalid_or_expired_access_code"

    MESSAGES = {
        "invalid": "Invalid access code",
        "expired": "Access code has expired",
    }

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self.MESSAGES[reason])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason
        return body


class RefundExceedsOriginal(BusinessRuleViolation):
    kind = "refund_exceeds_original"
    message = "Refund amount cannot be greater than transaction amount"


class InfrastructureFailure(TicketingError):
    kind = "infrastructure_failure"
    status_code = 500
    message = "Something went wrong, please try again"
