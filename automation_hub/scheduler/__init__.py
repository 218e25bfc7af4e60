"""Scheduler package"""
from .notifier import Notifier, EXECUTION_CHANGED, TESTCASE_CHANGED, NOTICE
from .queue import ExecutionQueue
from .reconciler import ExecutionReconciler, RecordSink
from .scheduler import Scheduler

__all__ = [
    "Notifier",
    "EXECUTION_CHANGED",
    "TESTCASE_CHANGED",
    "NOTICE",
    "ExecutionQueue",
    "ExecutionReconciler",
    "RecordSink",
    "Scheduler",
]
