"""Ledger-side components for confidential eligibility matching."""
from cloak.server.registry import EncryptedRegistry
from cloak.server.applications import ApplicationStore
from cloak.server.results import ApplicationResultStore
from cloak.server.evaluator import EligibilityEvaluator
from cloak.server.ledger import (
    EligibilityLedger,
    LedgerState,
    Register,
    CreateApplication,
    CloseApplication,
    SubmitApplication,
    transition,
)

__all__ = [
    "EncryptedRegistry",
    "ApplicationStore",
    "ApplicationResultStore",
    "EligibilityEvaluator",
    "EligibilityLedger",
    "LedgerState",
    "Register",
    "CreateApplication",
    "CloseApplication",
    "SubmitApplication",
    "transition",
]
