"""
ccbridge hook port

Entry points the agent runtime calls (`ccbridge hook <name>`) plus the
blocking client calls a session makes itself.
"""

from .client import ask_question, request_approval
from .main import HOOKS, run_hook

__all__ = ["HOOKS", "ask_question", "request_approval", "run_hook"]
