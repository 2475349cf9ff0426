"""
OpenAI client construction and the story text generation client.
"""

import logging
from typing import Optional

import httpx
from openai import OpenAI

from errors import TextGenerationError

logger = logging.getLogger("openai")


def make_openai_client(config) -> Optional[OpenAI]:
    """Create an OpenAI client that respects corp SSL certs and proxies.

    Returns None when no API key is configured; callers report that as a
    generation failure when they are first used.
    """
    api_key = config.openai_api_key
    if not api_key:
        logger.warning("[openai] OPENAI_API_KEY not set - AI generation disabled")
        return None

    if not api_key.startswith("sk-"):
        logger.warning("[openai] API key doesn't start with 'sk-'. This might be invalid.")

    timeout_seconds = config.openai_http_timeout
    use_custom_httpx = config.disable_ssl_verify or config.proxy_url or config.ca_bundle

    if not use_custom_httpx:
        logger.info("[openai] Using default OpenAI client")
        return OpenAI(api_key=api_key, timeout=timeout_seconds)

    if config.disable_ssl_verify:
        logger.warning("[openai] SSL verification DISABLED - not secure but may be needed for internet filters")
        verify = False
    else:
        verify = config.ca_bundle or True

    client = httpx.Client(
        verify=verify,
        proxy=config.proxy_url,
        timeout=httpx.Timeout(timeout_seconds, connect=30.0, pool=30.0),
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        follow_redirects=True,
    )
    ssl_status = "disabled" if config.disable_ssl_verify else ("custom cert" if config.ca_bundle else "default")
    logger.info("[openai] Client initialized with custom httpx (timeout=%ss, proxy=%s, ssl=%s)",
                timeout_seconds, "yes" if config.proxy_url else "no", ssl_status)
    return OpenAI(api_key=api_key, http_client=client)


class TextGenerationClient:
    """Submits a prompt and returns the model's full text (no streaming)."""

    def __init__(self, client: Optional[OpenAI], model: str = "gpt-4o-mini", temperature: float = 0.8,
                 max_tokens: int = 4096):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def generate(self, prompt: str) -> str:
        if self.client is None:
            raise TextGenerationError("Text generation is not configured (missing OPENAI_API_KEY)")

        logger.info("[text] Generating story with %s (%d prompt chars)", self.model, len(prompt))
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            text = response.choices[0].message.content
        except Exception as e:
            logger.warning("[text] Generation failed (%s): %s", type(e).__name__, e)
            raise TextGenerationError(f"Text generation failed: {e}") from e

        if not text or not text.strip():
            raise TextGenerationError("Text generation returned an empty response")
        return text
