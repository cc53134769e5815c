import logging
from typing import List, Optional

from .grammar import (
    BODY_RE,
    FLOOR_RE,
    POST_BLOCK_RE,
    POST_TAG_RE,
    TITLE_RE,
    is_board_name,
    normalize_content,
    strip_context,
)
from .models import ParsedFloor, ParsedPostBlock

logger = logging.getLogger(__name__)


def _optional_field(match) -> Optional[str]:
    if match is None:
        return None
    value = normalize_content(match.group(1))
    return value or None


def _parse_floors(inner: str) -> List[ParsedFloor]:
    floors: List[ParsedFloor] = []
    for fm in FLOOR_RE.finditer(inner):
        content = normalize_content(fm.group("inner"))
        if not content:
            logger.debug("dropping empty floor tag <%s>", fm.group("tag"))
            continue
        floors.append(ParsedFloor(floor_tag_no=int(fm.group("no")), content=content))
    return floors


def parse_tagged_blocks(text: str | None) -> List[ParsedPostBlock]:
    """
    Extract post blocks from free generator text.

    Expected shape (any surrounding prose is ignored):

    <新手引导区帖子3>
    <标题>...</标题>
    <正文>...</正文>
    <楼层1>...</楼层1>
    </新手引导区帖子3>

    Title, body and floors are all optional. Blocks naming an unknown board or a
    non-positive post number are skipped, as is anything inside <上文> quotes.
    """
    normalized = normalize_content(text)
    if not normalized:
        return []
    normalized = strip_context(normalized)

    blocks: List[ParsedPostBlock] = []
    for m in POST_BLOCK_RE.finditer(normalized):
        tag_match = POST_TAG_RE.match(m.group("tag"))
        if tag_match is None or not is_board_name(tag_match.group("board")):
            logger.debug("skipping block with unrecognized tag <%s>", m.group("tag"))
            continue
        post_no = int(tag_match.group("no"))
        if post_no <= 0:
            logger.debug("skipping block with non-positive post number <%s>", m.group("tag"))
            continue

        inner = m.group("inner")
        blocks.append(
            ParsedPostBlock(
                board=tag_match.group("board"),
                post_no=post_no,
                title=_optional_field(TITLE_RE.search(inner)),
                body=_optional_field(BODY_RE.search(inner)),
                floors=_parse_floors(inner),
            )
        )
    return blocks
