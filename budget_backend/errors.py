class BudgetError(RuntimeError):
    """Base class for failures of the budget services."""


class UserNotFound(BudgetError):
    """Raised when a user has no budget settings."""


class RecordNotFound(BudgetError):
    """Raised when a user-owned record does not exist."""


class ProjectBudgetNotFound(RecordNotFound):
    pass


class BalanceCalculationFailed(BudgetError):
    pass


class AdjustmentFailed(BudgetError):
    pass


class ProjectionFailed(BudgetError):
    pass


class ResetFailed(BudgetError):
    pass


class ReportFailed(BudgetError):
    pass


class InvalidBudgetInput(ValueError):
    """Raised for client input that breaks a budget rule."""


class PlannedExpenseInPast(InvalidBudgetInput):
    pass


class AllocationRejected(InvalidBudgetInput):
    pass


class UnexpectedExpenseInFuture(InvalidBudgetInput):
    pass
