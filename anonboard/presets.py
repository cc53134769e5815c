import json
import logging
from pathlib import Path
from typing import Literal

from pydantic import TypeAdapter

from .grammar import BOARD_NAMES
from .models import Floor, ForumState, Post, Preset, PresetPost
from .reconciler import now_ms

logger = logging.getLogger(__name__)

PresetMode = Literal["append", "overwrite"]

_PRESET_ADAPTER = TypeAdapter(Preset)

DEFAULT_PRESET: Preset = {
    "公告区": [
        PresetPost(
            post_no=1,
            title="置顶：本版守则（简版）",
            body="欢迎来到匿名版。请勿透露现实身份信息，版内一切内容均为故事设定。",
            floors=["发帖前请先选对分区，求助请去求助区。"],
        ),
    ],
    "新手引导区": [
        PresetPost(
            post_no=1,
            title="[新人] 第一次来，发帖有什么要注意的吗？",
            body="刚注册，看了一圈不太敢发帖，怕说错话被喷。",
            floors=[
                "先看置顶守则，别的随意。",
                "标题写清楚问题，回复的人会多很多。",
                ">>1 还有别在标题里写“急”，越写越没人理w",
            ],
        ),
        PresetPost(
            post_no=2,
            title="[疑问] 楼层号是怎么算的？",
            body="看到有人用 >>3 这种写法，是在引用第几楼吗？",
            floors=[
                "对，>>N 就是引用第N楼。",
                "楼层号按发帖顺序往下排，不会跳回去。",
            ],
        ),
    ],
    "综合讨论区": [
        PresetPost(
            post_no=1,
            title="今天的天气真适合摸鱼",
            body="下了一整天雨，办公室里安静得只剩键盘声。",
            floors=[
                "同感，雨天效率减半。",
                "摸鱼被老板看到了，现在在楼道里反省。",
                ">>2 节哀w",
            ],
        ),
    ],
    "成果展示区": [
        PresetPost(
            post_no=1,
            title="【分享】用一个周末做的小书架",
            body="买了几块松木板自己锯的，歪了一点但能用。",
            floors=[
                "歪的那点才是手作的灵魂。",
                "求板材尺寸，想照着做一个。",
            ],
        ),
    ],
    "求助区": [
        PresetPost(
            post_no=1,
            title="【求助】手机用久了发烫怎么办？",
            body="后台只开了几个应用，背面就烫得不行，有没有懂的说说。",
            floors=[
                "先清后台，再看看是不是电池老化了。",
                "别边充电边玩，发热会好很多。",
            ],
        ),
    ],
}


def add_preset(state: ForumState, preset: Preset, mode: PresetMode = "append") -> int:
    """
    Merge a seed catalog into state and return the number of posts added.

    overwrite clears every board first; append keeps existing posts and skips any
    preset post whose number is already taken.
    """
    ts = now_ms()
    added = 0
    for board in BOARD_NAMES:
        posts = state.boards[board].posts
        if mode == "overwrite":
            posts.clear()
        taken = {p.post_no for p in posts}
        for entry in preset.get(board, []):
            if entry.post_no in taken:
                logger.debug("preset post %s/%s already exists; skipping", board, entry.post_no)
                continue
            posts.append(
                Post(
                    board=board,
                    post_no=entry.post_no,
                    title=entry.title,
                    body=entry.body,
                    created_at_ms=ts,
                    updated_at_ms=ts,
                    floors=[
                        Floor(floor_no=idx, content=content, created_at_ms=ts, source="local")
                        for idx, content in enumerate(entry.floors, start=1)
                    ],
                )
            )
            taken.add(entry.post_no)
            added += 1
        posts.sort(key=lambda p: p.post_no)
    return added


def load_preset_file(path: str | Path) -> Preset:
    """Read a JSON catalog: {"<board>": [{"postNo": 1, "title": "...", "body": "...", "floors": ["..."]}]}."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return _PRESET_ADAPTER.validate_python(data)
