import logging
from typing import Any

from anthropic import Anthropic, APIError

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 4000

SYSTEM_PROMPT = """
You write posts and replies for an anonymous message board.
Follow the tag structure in the user message exactly and output nothing else.
"""

logger = logging.getLogger(__name__)


class GeneratorError(ValueError):
    def __init__(self, raw_text: str, error: str, kind: str):
        super().__init__(f"Generator failure ({kind}): {error}")
        self.raw_text = raw_text
        self.error = error
        self.kind = kind


class EmptyGeneratorOutput(GeneratorError):
    def __init__(self):
        super().__init__(
            raw_text="",
            error="No text content found in model response",
            kind="empty_output",
        )


def resolve_client(client: Any | None = None, api_key: str | None = None) -> Any:
    if client is not None:
        return client
    if not api_key:
        raise RuntimeError("api_key is required when client is not provided")
    return Anthropic(api_key=api_key)


def extract_text(resp) -> str:
    parts = []
    for block in resp.content:
        if hasattr(block, "text") and block.text:
            parts.append(block.text)
    raw_text = "".join(parts)
    if not raw_text.strip():
        raise EmptyGeneratorOutput()
    return raw_text.strip()


def send_prompt(
    prompt: str,
    *,
    client: Any | None = None,
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> str:
    resolved_client = resolve_client(client=client, api_key=api_key)

    try:
        resp = resolved_client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=1.0,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
    except APIError as e:
        raise GeneratorError(raw_text="", error=str(e), kind="api_error") from e

    raw = extract_text(resp)
    logger.debug("generator returned %d chars", len(raw))
    return raw
