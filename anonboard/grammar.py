import re
from typing import Literal, get_args

BoardName = Literal["公告区", "新手引导区", "综合讨论区", "成果展示区", "求助区"]

BOARD_NAMES: tuple[str, ...] = get_args(BoardName)

POST_TAG_INFIX = "帖子"
FLOOR_TAG_PREFIX = "楼层"
TITLE_TAG = "标题"
BODY_TAG = "正文"
ROOT_TAG = "匿名版"
CONTEXT_TAG = "上文"

_BOARDS_PATTERN = "|".join(re.escape(name) for name in BOARD_NAMES)

POST_BLOCK_RE = re.compile(
    rf"<(?P<tag>(?:{_BOARDS_PATTERN}){POST_TAG_INFIX}[0-9]{{1,18}})>(?P<inner>.*?)</(?P=tag)>",
    re.DOTALL,
)
POST_TAG_RE = re.compile(rf"^(?P<board>{_BOARDS_PATTERN}){POST_TAG_INFIX}(?P<no>[0-9]{{1,18}})$")
TITLE_RE = re.compile(rf"<{TITLE_TAG}>(.*?)</{TITLE_TAG}>", re.DOTALL)
BODY_RE = re.compile(rf"<{BODY_TAG}>(.*?)</{BODY_TAG}>", re.DOTALL)
FLOOR_RE = re.compile(
    rf"<(?P<tag>{FLOOR_TAG_PREFIX}(?P<no>[0-9]{{1,18}}))>(?P<inner>.*?)</(?P=tag)>",
    re.DOTALL,
)
CONTEXT_RE = re.compile(rf"<{CONTEXT_TAG}>.*?</{CONTEXT_TAG}>", re.DOTALL)

_FULL_WIDTH = str.maketrans({"<": "＜", ">": "＞"})


def is_board_name(value: object) -> bool:
    return isinstance(value, str) and value in BOARD_NAMES


def require_board(value: str) -> BoardName:
    if not is_board_name(value):
        raise ValueError(f"unknown board: {value!r} (expected one of {', '.join(BOARD_NAMES)})")
    return value  # type: ignore[return-value]


def post_tag(board: str, post_no: int) -> str:
    return f"{board}{POST_TAG_INFIX}{post_no}"


def floor_tag(floor_no: int) -> str:
    return f"{FLOOR_TAG_PREFIX}{floor_no}"


def default_post_title(board: str, post_no: int) -> str:
    return f"{board} {POST_TAG_INFIX}{post_no}"


def wrap(tag: str, content: str) -> str:
    return f"<{tag}>{content}</{tag}>"


def normalize_content(text: str | None) -> str:
    return (text or "").replace("\r\n", "\n").strip()


def escape_tag_content(text: str | None) -> str:
    """Replace tag delimiters with their full-width forms so content never reads as markup."""
    return (text or "").translate(_FULL_WIDTH)


def strip_context(text: str) -> str:
    return CONTEXT_RE.sub("", text)
