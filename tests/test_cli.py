"""CLI smoke tests -- commands run against a temporary store with a fake generator."""

from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

import anonboard.llm as llm
from anonboard.cli import app
from anonboard.reconciler import get_post
from anonboard.store import FileKeyValueStore, load_state, storage_key

runner = CliRunner()


class FakeClient:
    def __init__(self, reply):
        self.messages = SimpleNamespace(
            create=lambda **kwargs: SimpleNamespace(content=[SimpleNamespace(text=reply)])
        )


@pytest.fixture
def store_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("ANONBOARD_STORE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("ANONBOARD_RUNS_DIR", str(tmp_path / "runs"))
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    return tmp_path / "store"


def _state(store_dir, scope="global"):
    return load_state(FileKeyValueStore(str(store_dir)), storage_key(scope))


def _fake_generator(monkeypatch, reply):
    monkeypatch.setattr(llm, "resolve_client", lambda client=None, api_key=None: FakeClient(reply))


def test_seed_and_boards(store_dir):
    result = runner.invoke(app, ["seed"])
    assert result.exit_code == 0, result.output
    assert "Seeded" in result.output

    result = runner.invoke(app, ["boards"])
    assert result.exit_code == 0
    assert "新手引导区" in result.output


def test_seed_is_additive(store_dir):
    runner.invoke(app, ["seed"])
    result = runner.invoke(app, ["seed"])
    assert "Seeded 0 post(s)." in result.output


def test_ingest_twice_with_same_message_id(store_dir, tmp_path):
    text_file = tmp_path / "reply.txt"
    text_file.write_text(
        "<求助区帖子2><标题>t</标题><楼层1>x</楼层1><楼层2>y</楼层2></求助区帖子2>", encoding="utf-8"
    )
    first = runner.invoke(app, ["ingest", str(text_file), "--message-id", "3"])
    second = runner.invoke(app, ["ingest", str(text_file), "--message-id", "3"])
    assert "new posts: 1 | new floors: 2" in first.output
    assert "new posts: 0 | new floors: 0" in second.output

    state = _state(store_dir)
    assert len(get_post(state, "求助区", 2).floors) == 2
    assert state.meta.last_reconciled_message_id == 3


def test_scopes_are_isolated(store_dir, tmp_path):
    text_file = tmp_path / "reply.txt"
    text_file.write_text("<公告区帖子1><楼层1>x</楼层1></公告区帖子1>", encoding="utf-8")
    runner.invoke(app, ["ingest", str(text_file), "--scope", "chat-a"])
    assert get_post(_state(store_dir, "chat-a"), "公告区", 1) is not None
    assert get_post(_state(store_dir, "chat-b"), "公告区", 1) is None


def test_unknown_board_exits_with_usage_error(store_dir):
    result = runner.invoke(app, ["show", "闲聊区", "1"])
    assert result.exit_code == 2


def test_show_missing_post(store_dir):
    result = runner.invoke(app, ["show", "公告区", "42"])
    assert result.exit_code == 1


def test_prompt_command_prints_builder_output(store_dir):
    runner.invoke(app, ["seed"])
    result = runner.invoke(app, ["prompt", "reply", "求助区", "1", "--floors", "2"])
    assert result.exit_code == 0, result.output
    assert "<楼层3>" in result.output
    assert "<楼层4>" in result.output


def test_prompt_kind_needs_post_number(store_dir):
    result = runner.invoke(app, ["prompt", "continue", "求助区"])
    assert result.exit_code == 2


def test_reply_command_runs_generation(store_dir, monkeypatch):
    runner.invoke(app, ["seed"])
    _fake_generator(monkeypatch, "<求助区帖子1><楼层3>生成的回复</楼层3></求助区帖子1>")

    result = runner.invoke(app, ["reply", "求助区", "1"])
    assert result.exit_code == 0, result.output
    assert "new floors: 1" in result.output

    post = get_post(_state(store_dir), "求助区", 1)
    assert post.floors[-1].content == "生成的回复"
    assert post.floors[-1].source == "ai"


def test_say_appends_user_floor_then_followups(store_dir, monkeypatch):
    runner.invoke(app, ["seed"])
    _fake_generator(monkeypatch, "<求助区帖子1><楼层4>楼上说得对</楼层4></求助区帖子1>")

    result = runner.invoke(app, ["say", "求助区", "1", "谢谢大家"])
    assert result.exit_code == 0, result.output

    post = get_post(_state(store_dir), "求助区", 1)
    assert [(f.floor_no, f.source) for f in post.floors[-2:]] == [(3, "user"), (4, "ai")]


def test_generation_failure_saves_artifact(store_dir, monkeypatch):
    runner.invoke(app, ["seed"])
    _fake_generator(monkeypatch, "   ")

    result = runner.invoke(app, ["continue", "求助区", "1"])
    assert result.exit_code == 1
    assert "Saved error artifact" in result.output
    assert len(get_post(_state(store_dir), "求助区", 1).floors) == 2


def test_prompt_rejects_non_positive_post_number(store_dir):
    result = runner.invoke(app, ["prompt", "followup", "公告区", "0"])
    assert result.exit_code == 2
    assert "must be positive" in result.output


def test_prompt_new_rejects_a_taken_post_number(store_dir):
    runner.invoke(app, ["seed"])
    result = runner.invoke(app, ["prompt", "new", "求助区", "1"])
    assert result.exit_code == 2
    assert "already exists" in result.output


def test_ingest_rejects_non_utf8_file(store_dir, tmp_path):
    text_file = tmp_path / "reply.txt"
    text_file.write_bytes(b"\xff\xfe\x00<\x80\x81")
    result = runner.invoke(app, ["ingest", str(text_file)])
    assert result.exit_code == 1
    assert "not valid UTF-8" in result.output


def test_ingest_source_option(store_dir, tmp_path):
    text_file = tmp_path / "reply.txt"
    text_file.write_text("<公告区帖子1><楼层1>x</楼层1></公告区帖子1>", encoding="utf-8")
    assert runner.invoke(app, ["ingest", str(text_file), "--source", "robot"]).exit_code == 2

    result = runner.invoke(app, ["ingest", str(text_file), "--source", "USER"])
    assert result.exit_code == 0, result.output
    assert get_post(_state(store_dir), "公告区", 1).floors[0].source == "user"
