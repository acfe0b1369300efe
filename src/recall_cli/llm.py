"""Text-in/text-out completion client (Anthropic API or AWS Bedrock)."""

from __future__ import annotations

import os

import structlog
from anthropic import Anthropic, AnthropicBedrock, AnthropicError
from botocore.exceptions import BotoCoreError

from .config import LLMConfig
from .errors import LLMError


logger = structlog.get_logger(__name__)

DEFAULT_MAX_TOKENS = 1024
DEFAULT_AWS_REGION = "us-east-1"

MISSING_KEY_HELP = (
    "No Anthropic API key found. Either:\n"
    "  - Set ANTHROPIC_API_KEY in ~/.recall/env\n"
    "  - Set llm.api_key in ~/.recall/config.toml\n"
    '  - Or switch to Bedrock: set llm.provider = "bedrock" in config.toml'
)


def _client(config: LLMConfig) -> Anthropic | AnthropicBedrock:
    if config.provider == "bedrock":
        return AnthropicBedrock(aws_region=config.aws_region or DEFAULT_AWS_REGION)

    api_key = config.api_key or os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise LLMError(MISSING_KEY_HELP)
    return Anthropic(api_key=api_key, base_url=config.base_url)


def complete(config: LLMConfig, context: str, prompt: str) -> str:
    """Send ``context`` and ``prompt`` as one user message and return the reply text."""
    logger.debug("llm.request", provider=config.provider, model=config.model)
    # Bedrock signs requests with botocore; unresolved AWS credentials surface
    # as RuntimeError from the SDK rather than an API error.
    try:
        client = _client(config)
        message = client.messages.create(
            model=config.model,
            max_tokens=DEFAULT_MAX_TOKENS,
            messages=[{"role": "user", "content": f"{context}\n\n{prompt}"}],
        )
    except (AnthropicError, BotoCoreError, RuntimeError) as exc:
        logger.warning("llm.failed", provider=config.provider, error=str(exc))
        raise LLMError(f"{config.provider} API error: {exc}") from exc

    text = "".join(
        block.text for block in message.content if getattr(block, "type", None) == "text"
    )
    if not text:
        raise LLMError(f"Empty response from {config.provider}")
    return text
