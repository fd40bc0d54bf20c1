"""CLI module for TagPipe.

This package provides command-line access to the event pipeline for
inspecting consent and queue state and for submitting test events.
"""

from .main import ExitCode, app, cli_main

__all__ = [
    'ExitCode',
    'app',
    'cli_main',
]
