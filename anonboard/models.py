from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .grammar import BOARD_NAMES, BoardName

FloorSource = Literal["ai", "user", "local"]
FLOOR_SOURCES: tuple[str, ...] = get_args(FloorSource)

STATE_VERSION = 1


class _Stored(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class Floor(_Stored):
    floor_no: int = Field(..., gt=0)
    content: str
    created_at_ms: int
    source: FloorSource
    origin_key: Optional[str] = None
    origin_floor_tag_no: Optional[int] = None


class Post(_Stored):
    board: BoardName
    post_no: int = Field(..., gt=0)
    title: str
    body: str
    created_at_ms: int
    updated_at_ms: int
    floors: List[Floor] = Field(default_factory=list)


class BoardPosts(_Stored):
    posts: List[Post] = Field(default_factory=list)


class StateMeta(_Stored):
    last_reconciled_message_id: Optional[int] = None


def _empty_boards() -> dict[BoardName, BoardPosts]:
    return {name: BoardPosts() for name in BOARD_NAMES}  # type: ignore[misc]


class ForumState(_Stored):
    version: Literal[1] = STATE_VERSION
    boards: dict[BoardName, BoardPosts] = Field(default_factory=_empty_boards)
    meta: StateMeta = Field(default_factory=StateMeta)


def create_empty_state() -> ForumState:
    return ForumState()


class ParsedFloor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    floor_tag_no: Optional[int] = None
    content: str = Field(..., min_length=1)


class ParsedPostBlock(BaseModel):
    model_config = ConfigDict(extra="forbid")

    board: BoardName
    post_no: int = Field(..., gt=0)
    title: Optional[str] = None
    body: Optional[str] = None
    floors: List[ParsedFloor] = Field(default_factory=list)


class ApplyResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    created_posts: int = 0
    appended_floors: int = 0


class PresetPost(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    post_no: int = Field(..., gt=0)
    title: str = Field(..., min_length=1)
    body: str = ""
    floors: List[str] = Field(default_factory=list)


Preset = dict[BoardName, List[PresetPost]]
