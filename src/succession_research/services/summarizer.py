"""LLM summarization via the Anthropic Messages API.

Summaries are optional enrichment: without an API key no request is made and
the caller gets None, and API failures are logged and also yield None.
"""

from __future__ import annotations

from typing import Any

import anthropic
import structlog

from succession_research.config import Config
from succession_research.models import ServiceStatus, SummaryOutcome

logger = structlog.get_logger()


class Summarizer:
    def __init__(self, config: Config, client: Any | None = None):
        self.api_key = config.anthropic_api_key
        self.model = config.llm_model
        self.max_tokens = config.llm_max_tokens
        self.temperature = config.llm_temperature
        self._client = client
        if self._client is None and self.api_key:
            self._client = anthropic.Anthropic(
                api_key=self.api_key,
                max_retries=config.max_retry_attempts,
            )

    @property
    def available(self) -> bool:
        return bool(self.api_key) and self._client is not None

    def summarize(self, content: str, system_prompt: str) -> str | None:
        return self.summarize_with_status(content, system_prompt).text

    def summarize_with_status(self, content: str, system_prompt: str) -> SummaryOutcome:
        if not self.available:
            logger.warning("llm_not_configured")
            return SummaryOutcome(status=ServiceStatus.unavailable)

        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.AuthenticationError as exc:
            logger.error("llm_authentication_failed", error=str(exc))
            return SummaryOutcome(status=ServiceStatus.unavailable, error=str(exc))
        except anthropic.APIError as exc:
            logger.warning("llm_request_failed", error=str(exc))
            return SummaryOutcome(status=ServiceStatus.transient_error, error=str(exc))

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()
        logger.debug("llm_response_received", length=len(text))
        if not text:
            return SummaryOutcome(status=ServiceStatus.no_results)
        return SummaryOutcome(status=ServiceStatus.ok, text=text)

    def diagnose(self) -> dict[str, Any]:
        """Report whether the LLM credential is set and whether a test call works."""
        report: dict[str, Any] = {
            "llm_key_set": bool(self.api_key),
            "llm_key_length": len(self.api_key or ""),
            "llm_model": self.model,
        }
        if not self.available:
            return report
        outcome = self.summarize_with_status(
            "Say hello in one word", "Reply with a single word."
        )
        report["llm_status"] = "ok" if outcome.status == ServiceStatus.ok else "error"
        if outcome.text:
            report["llm_response"] = outcome.text[:500]
        if outcome.error:
            report["llm_error"] = outcome.error[:500]
        return report
