"""
Domain errors raised by the budget engine and the mutation coordinator.
Each carries the HTTP status it maps to; main.py registers the handler.
"""


class BudgetError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class EntityNotFound(BudgetError):
    status_code = 404


class BudgetSettingsNotFound(EntityNotFound):
    """No budget settings exist for the user. Never treated as zero income."""

    def __init__(self, detail: str = "Budget settings not found"):
        super().__init__(detail)


class OwnershipViolation(BudgetError):
    status_code = 403


class ValidationFailed(BudgetError):
    status_code = 400
