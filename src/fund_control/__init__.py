"""
Fund Control - Approval workflows and an anti-deficiency fund ledger

Routes budgets through multi-step approval chains, keeps every budget
version, and refuses any allocation, obligation or payment the available
funds cannot cover. Every fact is an event in an append-only log.

Fun fact: "anti-deficiency" sounds like a vitamin supplement, but it is the
law that can end a federal career for spending a dollar that was never there.
"""

from fund_control.control import FundControl

__version__ = "0.1.0"
__all__ = ["FundControl", "__version__"]
