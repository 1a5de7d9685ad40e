"""Completion dispatch: work items and the downstream call service."""

from .call_client import ICallClient, VapiCallClient, build_assistant_prompt
from .dispatcher import CompletionDispatcher, ICompletionDispatcher

__all__ = [
    "ICallClient",
    "VapiCallClient",
    "build_assistant_prompt",
    "CompletionDispatcher",
    "ICompletionDispatcher",
]
