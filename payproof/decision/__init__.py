"""
Decision Module for Payment Proof Matching.

This module provides:
    - The run state machine
    - The PaymentDecision record
    - The rule-based DecisionEngine

Author: ML Engineering Team
"""

from .engine import DecisionEngine
from .payment_decision import DecisionOutcome, PaymentDecision
from .state_machine import DecisionRun, RunState, TERMINAL_STATES

__all__ = [
    'DecisionEngine',
    'DecisionOutcome',
    'PaymentDecision',
    'DecisionRun',
    'RunState',
    'TERMINAL_STATES',
]
