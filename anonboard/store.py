import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .artifacts import atomic_write
from .grammar import BOARD_NAMES, default_post_title, is_board_name
from .models import FLOOR_SOURCES, STATE_VERSION, Floor, ForumState, Post, create_empty_state
from .reconciler import now_ms

logger = logging.getLogger(__name__)

KEY_PREFIX = "anonboard.v1"


class KeyValueStore(Protocol):
    """Opaque string store; the persistence substrate behind load_state/save_state."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


@dataclass
class MemoryKeyValueStore:
    data: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


_UNSAFE_CHARS_RE = re.compile(r"[^\w.-]", re.UNICODE)


@dataclass
class FileKeyValueStore:
    """
    One JSON file per key under root.

    - keys are sanitized into file names
    - writes go through a temp file + os.replace
    """

    root: str

    def __post_init__(self) -> None:
        Path(self.root).mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return Path(self.root) / f"{_UNSAFE_CHARS_RE.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("could not read %s: %s", path, exc)
            return None

    def set(self, key: str, value: str) -> None:
        atomic_write(self.path_for(key), value)


def storage_key(scope: Optional[str] = None) -> str:
    scope = (scope or "").strip()
    return f"{KEY_PREFIX}:{scope or 'global'}"


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_positive_int(value: Any, default: int) -> int:
    number = _as_int(value)
    return number if number is not None and number > 0 else default


def _coerce_floor(raw: Dict[str, Any], fallback_ts: int) -> Floor:
    source = raw.get("source")
    origin_key = raw.get("originKey")
    return Floor(
        floor_no=_as_positive_int(raw.get("floorNo"), 1),
        content=raw["content"] if isinstance(raw.get("content"), str) else "",
        created_at_ms=_as_int(raw.get("createdAtMs")) or fallback_ts,
        source=source if source in FLOOR_SOURCES else "local",
        origin_key=origin_key if isinstance(origin_key, str) else None,
        origin_floor_tag_no=_as_int(raw.get("originFloorTagNo")),
    )


def _unique_sorted(items: list, number_of) -> list:
    # first record wins when corrupted data repeats a number
    by_no: Dict[int, Any] = {}
    for item in items:
        no = number_of(item)
        if no in by_no:
            logger.warning("dropping duplicate record numbered %s", no)
            continue
        by_no[no] = item
    return [by_no[no] for no in sorted(by_no)]


def _coerce_post(raw: Dict[str, Any], board: str, fallback_ts: int) -> Post:
    if raw.get("board") != board and is_board_name(raw.get("board")):
        logger.warning("post filed under %s claims board %s; keeping %s", board, raw["board"], board)
    post_no = _as_positive_int(raw.get("postNo"), 1)
    created_at_ms = _as_int(raw.get("createdAtMs")) or fallback_ts
    updated_at_ms = _as_int(raw.get("updatedAtMs")) or created_at_ms
    raw_floors = raw.get("floors")
    floors = (
        [_coerce_floor(f, fallback_ts) for f in raw_floors if isinstance(f, dict)]
        if isinstance(raw_floors, list)
        else []
    )
    return Post(
        board=board,
        post_no=post_no,
        title=raw["title"] if isinstance(raw.get("title"), str) else default_post_title(board, post_no),
        body=raw["body"] if isinstance(raw.get("body"), str) else "",
        created_at_ms=created_at_ms,
        updated_at_ms=updated_at_ms,
        floors=_unique_sorted(floors, lambda f: f.floor_no),
    )


def parse_state(raw: Optional[str]) -> ForumState:
    """
    Decode a persisted envelope. Never raises on bad data.

    Anything other than a JSON object with version == 1 yields an empty state;
    inside a valid envelope, posts and floors are salvaged field by field.
    """
    if not raw:
        return create_empty_state()

    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError) as exc:
        logger.warning("discarding unreadable forum state: %s", exc)
        return create_empty_state()

    if not isinstance(payload, dict):
        logger.warning("discarding forum state: root is %s, not an object", type(payload).__name__)
        return create_empty_state()
    version = payload.get("version")
    if isinstance(version, bool) or version != STATE_VERSION:
        logger.warning("discarding forum state with unsupported version %r", version)
        return create_empty_state()

    state = create_empty_state()
    fallback_ts = now_ms()

    boards = payload.get("boards")
    if isinstance(boards, dict):
        for board in BOARD_NAMES:
            entry = boards.get(board)
            if not isinstance(entry, dict) or not isinstance(entry.get("posts"), list):
                continue
            posts: List[Post] = [
                _coerce_post(p, board, fallback_ts) for p in entry["posts"] if isinstance(p, dict)
            ]
            state.boards[board].posts = _unique_sorted(posts, lambda p: p.post_no)

    meta = payload.get("meta")
    if isinstance(meta, dict):
        state.meta.last_reconciled_message_id = _as_int(meta.get("lastReconciledMessageId"))

    return state


def dump_state(state: ForumState) -> str:
    return json.dumps(
        state.model_dump(mode="json", by_alias=True, exclude_none=True),
        separators=(",", ":"),
        ensure_ascii=False,
    )


def load_state(store: KeyValueStore, key: str) -> ForumState:
    return parse_state(store.get(key))


def save_state(store: KeyValueStore, key: str, state: ForumState) -> None:
    store.set(key, dump_state(state))
