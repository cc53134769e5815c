from typing import List, Optional

from .grammar import (
    BODY_TAG,
    CONTEXT_TAG,
    ROOT_TAG,
    TITLE_TAG,
    default_post_title,
    escape_tag_content,
    floor_tag,
    post_tag,
    require_board,
    wrap,
)
from .models import ForumState, Post
from .reconciler import get_post, last_floor_no, next_post_no

DEFAULT_FLOOR_BATCH = 6
MAX_CONTEXT_FLOORS = 30

OUTPUT_CONTRACT = """输出要求（必须遵守）：
- 只输出下方的标签结构，并用<{root}></{root}>包裹全部内容
- 不要输出任何额外文字或解释
- 不要输出 Markdown 代码块或反引号
- 标题、正文、楼层内容中不要出现 < 或 >，如必须使用请改用全角＜＞
- 楼层号必须与下方给出的完全一致，不要增减或改号""".format(root=ROOT_TAG)

REPLY_TEMPLATE = """用户正在浏览匿名版「{board}」的帖子{post_no}（标题：{title}），你需要为它生成回复楼层。
当前最后楼层是 {last_floor_no}。请生成 {count} 个新楼层（楼层号从 {start} 到 {end}）。
{instruction_block}
{contract}

{skeleton}"""

FOLLOWUP_TEMPLATE = """用户刚在匿名版「{board}」的帖子{post_no}中发言，你需要模仿其他匿名用户继续回复。
请生成 {count} 个新楼层（楼层号从 {start} 到 {end}）。
{instruction_block}
以下是帖子的标题、正文和已有楼层，仅作为上文和格式示例，不要重复输出：
{truncation_notice}{context}

{contract}
- 回复要像真实匿名版：可以短句、口语，偶尔用 >>No.楼层号 引用

{skeleton}"""

CONTINUE_TEMPLATE = """请继续匿名版「{board}」的帖子{post_no}，接着已有楼层往下写。
当前最后楼层是 {last_floor_no}。请生成 {count} 个新楼层（楼层号从 {start} 到 {end}）。
{instruction_block}
以下是帖子的标题、正文和已有楼层，仅作为上文和格式示例，不要重复输出：
{truncation_notice}{context}

{contract}

{skeleton}"""

NEW_POST_TEMPLATE = """用户要在匿名版「{board}」发一个新帖子，帖子序号必须是 {post_no}（不要改序号）。
请写出标题、正文，以及 {count} 个楼层（楼层号从 1 到 {count}）。
{instruction_block}
{contract}

{skeleton}"""

FLOOR_PLACEHOLDER = "（在这里写楼层内容）"
FOLLOWUP_FLOOR_PLACEHOLDER = "（以匿名用户口吻写内容）"
TITLE_PLACEHOLDER = "（在这里写标题）"
BODY_PLACEHOLDER = "（在这里写正文）"


def _instruction_block(label: str, text: Optional[str]) -> str:
    text = (text or "").strip()
    return f"{label}：{escape_tag_content(text)}\n" if text else ""


def _skeleton(board: str, post_no: int, inner_lines: List[str]) -> str:
    tag = post_tag(board, post_no)
    return "\n".join([f"<{ROOT_TAG}>", f"<{tag}>", *inner_lines, f"</{tag}>", f"</{ROOT_TAG}>"])


def _placeholder_floors(start: int, count: int, placeholder: str) -> List[str]:
    return [wrap(floor_tag(n), placeholder) for n in range(start, start + count)]


def render_post_context(post: Post, max_floors: int = MAX_CONTEXT_FLOORS) -> tuple[str, bool]:
    """
    Render a post in the tag grammar, quoted inside <上文> so the parser never
    treats it as new content. Keeps the most recent max_floors floors, oldest first.
    """
    max_floors = max(1, max_floors)
    floors = sorted(post.floors, key=lambda f: f.floor_no)
    truncated = len(floors) > max_floors
    selected = floors[-max_floors:] if truncated else floors

    tag = post_tag(post.board, post.post_no)
    lines = [
        f"<{CONTEXT_TAG}>",
        f"<{tag}>",
        wrap(TITLE_TAG, escape_tag_content(post.title)),
        wrap(BODY_TAG, escape_tag_content(post.body)),
        *(wrap(floor_tag(f.floor_no), escape_tag_content(f.content)) for f in selected),
        f"</{tag}>",
        f"</{CONTEXT_TAG}>",
    ]
    return "\n".join(lines), truncated


def _context_post(state: ForumState, board: str, post_no: int) -> Post:
    post = get_post(state, board, post_no)
    if post is not None:
        return post
    return Post(
        board=board,
        post_no=post_no,
        title=default_post_title(board, post_no),
        body="",
        created_at_ms=0,
        updated_at_ms=0,
    )


def _require_post_no(post_no: int) -> int:
    if isinstance(post_no, bool) or post_no < 1:
        raise ValueError(f"post_no must be positive, got {post_no!r}")
    return post_no


def _truncation_notice(truncated: bool, max_floors: int) -> str:
    return f"（上文已截断：仅包含最近{max(1, max_floors)}楼）\n" if truncated else ""


def build_reply_prompt(
    state: ForumState,
    board: str,
    post_no: int,
    *,
    user_instruction: Optional[str] = None,
    floors_to_generate: int = DEFAULT_FLOOR_BATCH,
) -> str:
    board = require_board(board)
    post_no = _require_post_no(post_no)
    count = max(1, floors_to_generate)
    post = get_post(state, board, post_no)
    last = last_floor_no(post)
    title = post.title if post is not None else default_post_title(board, post_no)

    return REPLY_TEMPLATE.format(
        board=board,
        post_no=post_no,
        title=escape_tag_content(title),
        last_floor_no=last,
        count=count,
        start=last + 1,
        end=last + count,
        instruction_block=_instruction_block("用户补充要求", user_instruction),
        contract=OUTPUT_CONTRACT,
        skeleton=_skeleton(board, post_no, _placeholder_floors(last + 1, count, FLOOR_PLACEHOLDER)),
    )


def build_followup_prompt(
    state: ForumState,
    board: str,
    post_no: int,
    *,
    style_hint: Optional[str] = None,
    floors_to_generate: int = DEFAULT_FLOOR_BATCH,
    max_context_floors: int = MAX_CONTEXT_FLOORS,
) -> str:
    """Ask for anonymous replies after the user's own floor (already appended to the post)."""
    board = require_board(board)
    post_no = _require_post_no(post_no)
    count = max(1, floors_to_generate)
    post = _context_post(state, board, post_no)
    last = last_floor_no(post)
    context, truncated = render_post_context(post, max_context_floors)

    return FOLLOWUP_TEMPLATE.format(
        board=board,
        post_no=post_no,
        count=count,
        start=last + 1,
        end=last + count,
        instruction_block=_instruction_block("额外要求", style_hint),
        truncation_notice=_truncation_notice(truncated, max_context_floors),
        context=context,
        contract=OUTPUT_CONTRACT,
        skeleton=_skeleton(board, post_no, _placeholder_floors(last + 1, count, FOLLOWUP_FLOOR_PLACEHOLDER)),
    )


def build_continue_prompt(
    state: ForumState,
    board: str,
    post_no: int,
    *,
    user_instruction: Optional[str] = None,
    floors_to_generate: int = DEFAULT_FLOOR_BATCH,
    max_context_floors: int = MAX_CONTEXT_FLOORS,
) -> str:
    board = require_board(board)
    post_no = _require_post_no(post_no)
    count = max(1, floors_to_generate)
    post = _context_post(state, board, post_no)
    last = last_floor_no(post)
    context, truncated = render_post_context(post, max_context_floors)

    return CONTINUE_TEMPLATE.format(
        board=board,
        post_no=post_no,
        last_floor_no=last,
        count=count,
        start=last + 1,
        end=last + count,
        instruction_block=_instruction_block("用户补充要求", user_instruction),
        truncation_notice=_truncation_notice(truncated, max_context_floors),
        context=context,
        contract=OUTPUT_CONTRACT,
        skeleton=_skeleton(board, post_no, _placeholder_floors(last + 1, count, FLOOR_PLACEHOLDER)),
    )


def build_new_post_prompt(
    state: ForumState,
    board: str,
    *,
    post_no: Optional[int] = None,
    user_instruction: Optional[str] = None,
    floors_to_generate: int = 1,
) -> str:
    """A requested post_no must be free on the board; None picks the next one."""
    board = require_board(board)
    count = max(1, floors_to_generate)
    if post_no is None:
        number = next_post_no(state, board)
    else:
        number = _require_post_no(post_no)
        if get_post(state, board, number) is not None:
            raise ValueError(f"post {number} already exists on {board}")

    inner = [
        wrap(TITLE_TAG, TITLE_PLACEHOLDER),
        wrap(BODY_TAG, BODY_PLACEHOLDER),
        *_placeholder_floors(1, count, FLOOR_PLACEHOLDER),
    ]
    return NEW_POST_TEMPLATE.format(
        board=board,
        post_no=number,
        count=count,
        instruction_block=_instruction_block("用户补充要求", user_instruction),
        contract=OUTPUT_CONTRACT,
        skeleton=_skeleton(board, number, inner),
    )
