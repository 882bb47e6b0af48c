"""
Budget - Versioned budgets and the spending drawn against them

A budget is the entity under approval. Every change to it is a new
immutable version; once approved it is funded from the ledger and drawn
down by obligations and expenditures.
"""

from fund_control.budget.commands import (
    ActivateBudget,
    AddLineItem,
    AnalyzeVariance,
    ChangeExpenditureStatus,
    ChangeObligationStatus,
    CloseBudget,
    CreateBudget,
    CreateExpenditure,
    CreateObligation,
    RollbackBudget,
    SubmitBudget,
    UpdateBudget,
)
from fund_control.budget.handlers import BudgetCommandHandlers
from fund_control.budget.models import (
    BudgetApprovalStatus,
    BudgetSnapshot,
    BudgetStatus,
    ExpenditureStatus,
    ObligationStatus,
    VarianceResult,
    VarianceStatus,
)
from fund_control.budget.projections import BudgetRegistry, SpendingLedger, VarianceLog
from fund_control.budget.variance import calculate_variance

__all__ = [
    "BudgetApprovalStatus",
    "BudgetSnapshot",
    "BudgetStatus",
    "ObligationStatus",
    "ExpenditureStatus",
    "VarianceResult",
    "VarianceStatus",
    "CreateBudget",
    "UpdateBudget",
    "RollbackBudget",
    "SubmitBudget",
    "ActivateBudget",
    "CloseBudget",
    "AddLineItem",
    "CreateObligation",
    "ChangeObligationStatus",
    "CreateExpenditure",
    "ChangeExpenditureStatus",
    "AnalyzeVariance",
    "BudgetCommandHandlers",
    "BudgetRegistry",
    "SpendingLedger",
    "VarianceLog",
    "calculate_variance",
]
