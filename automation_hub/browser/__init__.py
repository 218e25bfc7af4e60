"""Browser package"""
from .controller import BrowserController

__all__ = ["BrowserController"]
