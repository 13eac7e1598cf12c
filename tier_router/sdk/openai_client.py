"""
Routed OpenAI-compatible client.

Sends each request to the model of the tier the dispatcher routes it to
and records usage in the ledger. Provider failures feed error escalation
and are re-raised; nothing is retried here.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from openai import OpenAI, OpenAIError

from ..core.dispatcher import Dispatcher
from ..core.pricing import calculate_cost
from ..core.token_counter import TokenUsage

logger = structlog.get_logger()

TASK_SUMMARY_MAX_LENGTH = 100


@dataclass(frozen=True)
class CompletionResult:
    """Response content plus the usage and routing behind it."""
    content: str
    input_tokens: int
    output_tokens: int
    stop_reason: Optional[str]
    tier: str
    model_ref: str
    cost_usd: float
    response_id: Optional[str] = None


class RoutedOpenAI:
    """OpenAI client wrapper that routes by tier and records usage.

    One OpenAI client is created per provider, using the provider's
    `base_url` and the API key named by `api_key_env`. All failures are
    loud to ensure no silent data loss.
    """

    def __init__(self, dispatcher: Dispatcher):
        """Initialize routed client.

        Args:
            dispatcher: Dispatcher that owns tier state, ledger and memory
        """
        self.dispatcher = dispatcher
        self._clients: Dict[str, OpenAI] = {}

    def _client_for(self, provider: str) -> OpenAI:
        if provider not in self._clients:
            provider_config = self.dispatcher.config.providers[provider]
            api_key = os.environ.get(provider_config.api_key_env)
            if not api_key:
                raise ValueError(
                    f"API key not found in environment variable: {provider_config.api_key_env}"
                )
            self._clients[provider] = OpenAI(api_key=api_key, base_url=provider_config.base_url)
        return self._clients[provider]

    def complete(
        self,
        messages: List[Dict[str, str]],
        task: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        **kwargs: Any
    ) -> CompletionResult:
        """Create a chat completion on the model of the routed tier.

        When `task` is given the dispatcher orchestrates it first and the
        call runs on the resulting target tier, even when auto mode keeps
        the current tier unchanged. Exactly one outcome is then written to
        session memory. Without a task the call runs on the current tier,
        or on the lowest tier when the budget blocks the current one.

        Args:
            messages: List of message dictionaries (required)
            task: Task description used for routing (optional)
            max_tokens: Maximum tokens to generate; defaults to the model limit
            temperature: Sampling temperature (optional)
            **kwargs: Additional chat completion parameters

        Returns:
            CompletionResult for the call

        Raises:
            ValueError: If messages is empty or the response has no usage
            UnknownModelReferenceError: If the tier maps to no configured model
            OpenAIError: Propagated after being recorded for escalation
            PersistenceError: If usage could not be written to the ledger
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        # The outcome of this call is recorded below, once per call
        if task:
            tier = self.dispatcher.orchestrate(task, record_outcome=False).target_tier
        else:
            tier = self.dispatcher.serving_tier()
        selection = self.dispatcher.model_for(tier)
        _, _, model_config = self.dispatcher.config.resolve_model(selection.model_ref)
        client = self._client_for(selection.provider)

        params: Dict[str, Any] = dict(kwargs)
        params["max_tokens"] = max_tokens or model_config.max_tokens
        if temperature is not None:
            params["temperature"] = temperature

        try:
            response = client.chat.completions.create(
                model=selection.model_id,
                messages=messages,
                **params
            )
        except OpenAIError as e:
            logger.warning(
                "provider_call_failed",
                provider=selection.provider,
                model=selection.model,
                tier=tier,
                error=str(e),
            )
            self.dispatcher.record_error()
            if task:
                self.dispatcher.record_outcome(task, tier, False, {"error": str(e)})
            raise

        usage = response.usage
        if not usage:
            raise ValueError("Provider response missing usage information")

        token_usage = TokenUsage(
            input_tokens=usage.prompt_tokens,
            output_tokens=usage.completion_tokens,
        )
        cost = calculate_cost(model_config, token_usage)

        self.dispatcher.ledger.record(
            provider=selection.provider,
            model=selection.model,
            tier=tier,
            input_tokens=token_usage.input_tokens,
            output_tokens=token_usage.output_tokens,
            cost_usd=cost,
            task_summary=task[:TASK_SUMMARY_MAX_LENGTH] if task else None,
        )
        if task:
            self.dispatcher.record_outcome(task, tier, True)

        choice = response.choices[0]
        return CompletionResult(
            content=choice.message.content or "",
            input_tokens=token_usage.input_tokens,
            output_tokens=token_usage.output_tokens,
            stop_reason=choice.finish_reason,
            tier=tier,
            model_ref=selection.model_ref,
            cost_usd=cost,
            response_id=response.id,
        )
