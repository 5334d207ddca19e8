"""
Output Handler Module for Payment Proof Matching.

This module provides functionality for:
    - SQLite submission storage and conditional approval
    - Idempotent decision storage with re-run history
    - Manual review tickets
    - Decision notifications (log or webhook)

Author: ML Engineering Team
"""

from .database_handler import SQLiteDatabase, SQLiteSubmissionStore
from .decision_store import DecisionStore
from .notifier import LoggingNotifier, WebhookNotifier, build_notifier
from .review_queue import ReviewQueue, ReviewTicket

__all__ = [
    'SQLiteDatabase',
    'SQLiteSubmissionStore',
    'DecisionStore',
    'ReviewQueue',
    'ReviewTicket',
    'LoggingNotifier',
    'WebhookNotifier',
    'build_notifier',
]
