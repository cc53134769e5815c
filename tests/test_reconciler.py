"""Tests for the reconciler -- upserts, floor numbering and idempotent merges."""

import pytest

from anonboard.models import ParsedFloor, ParsedPostBlock, create_empty_state
from anonboard.parser import parse_tagged_blocks
from anonboard.reconciler import (
    add_user_floor,
    append_floor,
    apply_parsed_blocks,
    get_post,
    last_floor_no,
    next_post_no,
    origin_key,
    upsert_post,
)


def _floor_numbers(post):
    return [f.floor_no for f in post.floors]


# ---------------------------------------------------------------------------
# upsert_post
# ---------------------------------------------------------------------------


def test_upsert_creates_with_defaults_and_sorts():
    state = create_empty_state()
    upsert_post(state, "公告区", 5)
    post = upsert_post(state, "公告区", 2)
    assert post.title == "公告区 帖子2"
    assert post.body == ""
    assert [p.post_no for p in state.boards["公告区"].posts] == [2, 5]


def test_upsert_patch_ignores_blank_fields():
    state = create_empty_state()
    upsert_post(state, "求助区", 1, title="  first  ", body="body")
    post = upsert_post(state, "求助区", 1, title="   ", body="new body")
    assert post.title == "first"
    assert post.body == "new body"


def test_upsert_refreshes_updated_at_without_regressing():
    state = create_empty_state()
    post = upsert_post(state, "求助区", 1, title="t")
    post.updated_at_ms = 10**15
    upsert_post(state, "求助区", 1, title="t2")
    assert post.updated_at_ms == 10**15


def test_upsert_rejects_unknown_board():
    with pytest.raises(ValueError):
        upsert_post(create_empty_state(), "闲聊区", 1)


def test_next_post_no():
    state = create_empty_state()
    assert next_post_no(state, "成果展示区") == 1
    upsert_post(state, "成果展示区", 4)
    assert next_post_no(state, "成果展示区") == 5


# ---------------------------------------------------------------------------
# append_floor
# ---------------------------------------------------------------------------


def test_append_floor_overrides_out_of_sequence_suggestion():
    state = create_empty_state()
    post = upsert_post(state, "公告区", 1)
    append_floor(post, "one", source="local")
    floor = append_floor(post, "two", source="ai", floor_no=5)
    assert floor.floor_no == 2
    assert _floor_numbers(post) == [1, 2]


def test_append_floor_honours_matching_suggestion():
    state = create_empty_state()
    post = upsert_post(state, "公告区", 1)
    assert append_floor(post, "one", source="ai", floor_no=1).floor_no == 1


def test_append_floor_after_gap_uses_max_plus_one():
    state = create_empty_state()
    post = upsert_post(state, "公告区", 1)
    append_floor(post, "one", source="local")
    post.floors[0].floor_no = 7
    assert append_floor(post, "next", source="local").floor_no == 8


def test_numbering_stays_strictly_increasing():
    state = create_empty_state()
    post = upsert_post(state, "公告区", 1)
    for suggestion in [3, None, 1, 1, 99, 6, None, 0]:
        append_floor(post, "x", source="ai", floor_no=suggestion)
    numbers = _floor_numbers(post)
    assert numbers == list(range(1, len(numbers) + 1))


# ---------------------------------------------------------------------------
# apply_parsed_blocks
# ---------------------------------------------------------------------------


def test_scenario_new_post_with_one_floor():
    state = create_empty_state()
    blocks = parse_tagged_blocks(
        "<新手引导区帖子3><标题>t</标题><正文>b</正文><楼层1>hi</楼层1></新手引导区帖子3>"
    )
    result = apply_parsed_blocks(state, blocks, "ai", origin_message_id=1)
    assert (result.created_posts, result.appended_floors) == (1, 1)

    post = get_post(state, "新手引导区", 3)
    assert post.title == "t"
    assert post.body == "b"
    assert [(f.floor_no, f.content) for f in post.floors] == [(1, "hi")]
    assert post.floors[0].source == "ai"
    assert post.floors[0].origin_floor_tag_no == 1


def test_apply_is_idempotent_for_same_message():
    state = create_empty_state()
    blocks = parse_tagged_blocks(
        "<公告区帖子1><楼层1>a</楼层1><楼层2>a</楼层2></公告区帖子1>"
        "<求助区帖子2><楼层1>b</楼层1></求助区帖子2>"
    )
    first = apply_parsed_blocks(state, blocks, "ai", origin_message_id=7)
    snapshot = state.model_dump()
    second = apply_parsed_blocks(state, blocks, "ai", origin_message_id=7)

    assert first.appended_floors == 3
    assert (second.created_posts, second.appended_floors) == (0, 0)
    assert [p["floors"] for b in snapshot["boards"].values() for p in b["posts"]] == [
        p.model_dump()["floors"] for b in state.boards.values() for p in b.posts
    ]


def test_identical_content_is_kept_when_positions_differ():
    state = create_empty_state()
    blocks = parse_tagged_blocks("<公告区帖子1><楼层1>same</楼层1><楼层2>same</楼层2></公告区帖子1>")
    apply_parsed_blocks(state, blocks, "ai", origin_message_id=1)
    assert len(get_post(state, "公告区", 1).floors) == 2


def test_different_message_ids_append_again():
    state = create_empty_state()
    blocks = parse_tagged_blocks("<公告区帖子1><楼层1>x</楼层1></公告区帖子1>")
    apply_parsed_blocks(state, blocks, "ai", origin_message_id=1)
    result = apply_parsed_blocks(state, blocks, "ai", origin_message_id=2)
    assert result.appended_floors == 1
    assert _floor_numbers(get_post(state, "公告区", 1)) == [1, 2]


def test_apply_without_origin_id_does_not_dedupe():
    state = create_empty_state()
    blocks = [ParsedPostBlock(board="公告区", post_no=1, floors=[ParsedFloor(content="x")])]
    apply_parsed_blocks(state, blocks, "user")
    apply_parsed_blocks(state, blocks, "user")
    post = get_post(state, "公告区", 1)
    assert len(post.floors) == 2
    assert all(f.origin_key is None for f in post.floors)
    assert state.meta.last_reconciled_message_id is None


def test_origin_key_format():
    assert origin_key(3, "公告区", 2, 0, 1) == "msg:3:post:公告区:2:floor:0:1"


def test_claimed_floor_numbers_are_provenance_only():
    state = create_empty_state()
    blocks = parse_tagged_blocks("<公告区帖子1><楼层40>a</楼层40><楼层41>b</楼层41></公告区帖子1>")
    apply_parsed_blocks(state, blocks, "ai", origin_message_id=1)
    post = get_post(state, "公告区", 1)
    assert _floor_numbers(post) == [1, 2]
    assert [f.origin_floor_tag_no for f in post.floors] == [40, 41]


def test_high_water_mark_never_regresses():
    state = create_empty_state()
    apply_parsed_blocks(state, [], "ai", origin_message_id=9)
    apply_parsed_blocks(state, [], "ai", origin_message_id=4)
    assert state.meta.last_reconciled_message_id == 9


def test_existing_post_keeps_title_when_block_has_none():
    state = create_empty_state()
    upsert_post(state, "公告区", 1, title="seeded", body="seeded body")
    blocks = parse_tagged_blocks("<公告区帖子1><标题>later</标题><楼层1>x</楼层1></公告区帖子1>")
    result = apply_parsed_blocks(state, blocks, "ai", origin_message_id=1)
    post = get_post(state, "公告区", 1)
    assert result.created_posts == 0
    assert post.title == "later"
    assert post.body == "seeded body"


# ---------------------------------------------------------------------------
# add_user_floor / last_floor_no
# ---------------------------------------------------------------------------


def test_add_user_floor():
    state = create_empty_state()
    upsert_post(state, "求助区", 1)
    floor = add_user_floor(state, "求助区", 1, "  thanks  ")
    assert floor.floor_no == 1
    assert floor.content == "thanks"
    assert floor.source == "user"
    assert add_user_floor(state, "求助区", 1, "   ") is None
    assert add_user_floor(state, "求助区", 9, "x") is None


def test_last_floor_no_for_missing_post():
    assert last_floor_no(None) == 0
