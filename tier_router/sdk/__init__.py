"""
SDK for Tier Router.

Provides a routed, usage-recording client for OpenAI-compatible backends.
"""

from .openai_client import CompletionResult, RoutedOpenAI

__all__ = ["CompletionResult", "RoutedOpenAI"]
