"""
Global error handler for the discipline catalog sync engine.

This module provides centralized handling of unhandled exceptions, both in
the main thread and in the background threads a synchronization run uses.
"""

import sys
import threading

from .logger import setup_logging

logger = setup_logging()


def handle_exception(exc_type, exc_value, exc_traceback):
    """
    Global exception handler that logs unhandled exceptions.

    Args:
        exc_type: Exception type
        exc_value: Exception value
        exc_traceback: Exception traceback
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logger.error(
        "Unhandled exception",
        exc_info=(exc_type, exc_value, exc_traceback)
    )


def handle_thread_exception(args):
    """
    Log exceptions escaping from background threads.

    Args:
        args: threading.ExceptHookArgs
    """
    if args.exc_type is SystemExit:
        return

    thread_name = args.thread.name if args.thread else 'unknown'
    logger.error(
        f"Unhandled exception in thread {thread_name}",
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback)
    )


def setup_global_exception_handler():
    """Set up the global exception handlers for the process and its threads."""
    sys.excepthook = handle_exception
    threading.excepthook = handle_thread_exception
    logger.info("Global exception handler installed")
