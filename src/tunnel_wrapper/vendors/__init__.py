"""Vendor strategies and default configurations."""

from .browserstack import BrowserStackConfig
from .testingbot import TestingBotConfig

__all__ = ["BrowserStackConfig", "TestingBotConfig"]
