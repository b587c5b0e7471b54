"""File watching and reconciliation of open tabs with disk changes."""

from .reconcile import FileWatchReconciler
from .watch import FileChangeEvent, FileWatchBridge, Subscription

__all__ = ["FileWatchBridge", "FileChangeEvent", "Subscription", "FileWatchReconciler"]
