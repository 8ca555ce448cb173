from __future__ import annotations

from rosterbot_core.providers.base import BaseAssistant


class AnthropicAssistant(BaseAssistant):
    MODEL = "claude-sonnet-4-20250514"
    TEMPERATURE = 0.0

    def __init__(self, api_key: str, timeout: float = 30):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'rosterbot[anthropic]'"
            )
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        from anthropic import APITimeoutError
        from anthropic.types import TextBlock

        try:
            response = self.client.messages.create(
                model=self.MODEL,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                temperature=self.TEMPERATURE,
                max_tokens=self.MAX_TOKENS,
            )
        except APITimeoutError as e:
            raise TimeoutError(str(e)) from e
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
