"""
Logging module for the application.
This module provides functionality to set up logging, keep a bounded history of
supervised process output and forward that output to the application log.
"""

from .setup import setup_logging
from .buffer import LogBuffer
from .forwarder import ProcessLogForwarder

__all__ = ["setup_logging", "LogBuffer", "ProcessLogForwarder"]
