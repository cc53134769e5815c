import logging
import time
from typing import Iterable, Optional

from .grammar import default_post_title, require_board
from .models import ApplyResult, Floor, FloorSource, ForumState, ParsedPostBlock, Post

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def _touch(post: Post) -> None:
    post.updated_at_ms = max(post.updated_at_ms, now_ms())


def _clean_patch(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def get_post(state: ForumState, board: str, post_no: int) -> Optional[Post]:
    for post in state.boards[require_board(board)].posts:
        if post.post_no == post_no:
            return post
    return None


def next_post_no(state: ForumState, board: str) -> int:
    posts = state.boards[require_board(board)].posts
    return max((p.post_no for p in posts), default=0) + 1


def last_floor_no(post: Optional[Post]) -> int:
    if post is None:
        return 0
    return max((f.floor_no for f in post.floors), default=0)


def next_floor_no(post: Post) -> int:
    return last_floor_no(post) + 1


def upsert_post(
    state: ForumState,
    board: str,
    post_no: int,
    *,
    title: Optional[str] = None,
    body: Optional[str] = None,
) -> Post:
    """
    Return the post at (board, post_no), creating it when absent.

    Existing posts keep their title/body unless the patch carries a non-blank
    value; blank or missing fields never erase what is already stored.
    """
    posts = state.boards[require_board(board)].posts
    new_title = _clean_patch(title)
    new_body = _clean_patch(body)

    post = next((p for p in posts if p.post_no == post_no), None)
    if post is None:
        ts = now_ms()
        post = Post(
            board=board,
            post_no=post_no,
            title=new_title or default_post_title(board, post_no),
            body=new_body or "",
            created_at_ms=ts,
            updated_at_ms=ts,
            floors=[],
        )
        posts.append(post)
        posts.sort(key=lambda p: p.post_no)
        return post

    if title is not None or body is not None:
        if new_title:
            post.title = new_title
        if new_body:
            post.body = new_body
        _touch(post)
    return post


def append_floor(
    post: Post,
    content: str,
    *,
    source: FloorSource,
    created_at_ms: Optional[int] = None,
    origin_key: Optional[str] = None,
    origin_floor_tag_no: Optional[int] = None,
    floor_no: Optional[int] = None,
) -> Floor:
    expected = next_floor_no(post)
    if floor_no is not None and floor_no != expected:
        logger.debug(
            "overriding suggested floor %s with %s on %s/%s", floor_no, expected, post.board, post.post_no
        )
    floor = Floor(
        floor_no=expected,
        content=content,
        created_at_ms=created_at_ms if created_at_ms is not None else now_ms(),
        source=source,
        origin_key=origin_key,
        origin_floor_tag_no=origin_floor_tag_no,
    )
    post.floors.append(floor)
    post.floors.sort(key=lambda f: f.floor_no)
    _touch(post)
    return floor


def origin_key(message_id: int, board: str, post_no: int, block_index: int, floor_index: int) -> str:
    return f"msg:{message_id}:post:{board}:{post_no}:floor:{block_index}:{floor_index}"


def apply_parsed_blocks(
    state: ForumState,
    blocks: Iterable[ParsedPostBlock],
    source: FloorSource,
    origin_message_id: Optional[int] = None,
) -> ApplyResult:
    """
    Merge parsed blocks into state, in order.

    When origin_message_id is given each floor gets a positional origin key and a
    floor whose key is already present on the post is skipped, so re-applying the
    same message is a no-op.
    """
    result = ApplyResult()

    for b_idx, block in enumerate(blocks):
        existed = get_post(state, block.board, block.post_no) is not None
        post = upsert_post(state, block.board, block.post_no, title=block.title, body=block.body)
        if not existed:
            result.created_posts += 1

        seen = {f.origin_key for f in post.floors if f.origin_key}
        for f_idx, parsed in enumerate(block.floors):
            key = None
            if origin_message_id is not None:
                key = origin_key(origin_message_id, block.board, block.post_no, b_idx, f_idx)
                if key in seen:
                    logger.debug("skipping already reconciled floor %s", key)
                    continue
            append_floor(
                post,
                parsed.content,
                source=source,
                origin_key=key,
                origin_floor_tag_no=parsed.floor_tag_no,
                floor_no=parsed.floor_tag_no,
            )
            if key:
                seen.add(key)
            result.appended_floors += 1

    if origin_message_id is not None:
        previous = state.meta.last_reconciled_message_id
        state.meta.last_reconciled_message_id = (
            origin_message_id if previous is None else max(previous, origin_message_id)
        )

    return result


def add_user_floor(state: ForumState, board: str, post_no: int, content: str) -> Optional[Floor]:
    post = get_post(state, board, post_no)
    text = (content or "").strip()
    if post is None or not text:
        return None
    return append_floor(post, text, source="user")
