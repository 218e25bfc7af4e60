"""Runners package"""
from .base_runner import BaseRunner, ExecutionSink, NullSink
from .local_runner import LocalRunner
from .remote_runner import RemoteRunner
from .performer import StepPerformer, BrowserStepPerformer

__all__ = [
    "BaseRunner",
    "ExecutionSink",
    "NullSink",
    "LocalRunner",
    "RemoteRunner",
    "StepPerformer",
    "BrowserStepPerformer",
]
