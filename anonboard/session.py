import logging
from dataclasses import dataclass
from typing import Any, List

from .llm import DEFAULT_MODEL, send_prompt
from .models import ApplyResult, ForumState, ParsedPostBlock
from .parser import parse_tagged_blocks
from .reconciler import apply_parsed_blocks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    raw: str
    blocks: List[ParsedPostBlock]
    result: ApplyResult


def next_message_id(state: ForumState) -> int:
    last = state.meta.last_reconciled_message_id
    return 1 if last is None else last + 1


def generate_step(
    state: ForumState,
    prompt: str,
    message_id: int,
    *,
    client: Any | None = None,
    api_key: str | None = None,
    model: str = DEFAULT_MODEL,
) -> GenerationResult:
    """Send one prompt, then parse and reconcile the reply into state. The caller saves."""
    raw = send_prompt(prompt, client=client, api_key=api_key, model=model)
    blocks = parse_tagged_blocks(raw)
    if not blocks:
        logger.warning("generator reply for message %s contained no post blocks", message_id)

    result = apply_parsed_blocks(state, blocks, "ai", origin_message_id=message_id)
    logger.info(
        "message %s: %d block(s), %d new post(s), %d new floor(s)",
        message_id,
        len(blocks),
        result.created_posts,
        result.appended_floors,
    )
    return GenerationResult(raw=raw, blocks=blocks, result=result)
