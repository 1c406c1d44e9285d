from collections.abc import Callable
from typing import Any

import requests
from loguru import logger

from codebase_qa.config import LLMConfig
from codebase_qa.core.errors import GenerationError


class OpenRouterClient:
    """Chat-completions client for OpenRouter (or any OpenAI-compatible endpoint).

    `requests.Session` is not thread-safe and generation runs on many threads
    at once, so every request opens and closes its own session.
    """

    def __init__(
        self,
        config: LLMConfig,
        session_factory: Callable[[], requests.Session] | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory or requests.Session

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": self.config.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

    def generate(self, prompt: str) -> str:
        """Returns the first choice's message text (empty if the model sent none)."""
        url = f"{self.config.api_base.rstrip('/')}/chat/completions"
        session = self.session_factory()
        try:
            response = session.post(
                url, headers=self.headers, json=self._payload(prompt), timeout=self.config.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise GenerationError(f"LLM request timed out after {self.config.timeout}s") from e
        except requests.RequestException as e:
            raise GenerationError(f"LLM API error: {e}") from e
        except ValueError as e:
            raise GenerationError(f"LLM API returned invalid JSON: {e}") from e
        finally:
            session.close()

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            logger.warning("LLM response has no choices: {}", data)
            return ""
        content = (choices[0].get("message") or {}).get("content")
        return content if isinstance(content, str) else ""

    def check(self) -> None:
        """Raises GenerationError unless the provider's model listing is reachable."""
        url = f"{self.config.api_base.rstrip('/')}/models"
        session = self.session_factory()
        try:
            response = session.get(url, headers=self.headers, timeout=self.config.timeout)
        except requests.RequestException as e:
            raise GenerationError(f"LLM connection failed: {e}") from e
        finally:
            session.close()
        if not response.ok:
            raise GenerationError(response.text or "LLM API error")
