import json
from functools import partial
from pathlib import Path

from click.testing import CliRunner

from timeturn.cli import cli
from timeturn.config import load_config
from timeturn.providers import ChatMessage, ChatProvider, Completion, ProviderExecutionError
from timeturn.state import StateStore

TREE_REPLY = """ありがとう！こんな感じでどうかな？

Goal: 英語を話せるようになる
├─ Project: 基礎力
│  └─ Milestone: 単語
│     ├─ Task: 単語帳1周
│     └─ Task: 毎日15分音読
└─ Project: 実践
   └─ Milestone: 会話
      └─ Task: オンライン英会話を予約

一緒に頑張ろうね！"""

WALK = [
    ("英語を話せるようになりたい", "素敵！どうして英語を話せるようになりたいの？"),
    ("留学したいから", "留学いいね！今のレベルはどのくらい？"),
    ("今は初心者", "なるほど！どこまで目指したい？"),
    ("TOEIC800点を目指す", "いい目標だね！いつまでに達成したい？"),
    ("来年の3月まで", "まとめるね。この内容でタスクに分解してもいいですか？"),
    ("お願いします", TREE_REPLY),
]


class FakeProvider(ChatProvider):
    name = "fake"

    def __init__(self, replies: list[str]) -> None:
        super().__init__()
        self.replies = list(replies)

    async def complete(self, messages: list[ChatMessage]) -> Completion:
        _ = messages
        if not self.replies:
            raise ProviderExecutionError("No response from API", provider=self.name)
        return Completion(content=self.replies.pop(0), finish_reason="STOP")


def _install_provider(monkeypatch, replies: list[str]) -> FakeProvider:
    provider = FakeProvider(replies)
    monkeypatch.setattr("timeturn.cli._build_provider", lambda config, state: provider)
    return provider


def test_cli_full_hearing_lifecycle(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _install_provider(
        monkeypatch,
        [reply for _, reply in WALK] + ["追加しますね！[ADD_TASK:単語:模試の復習]"],
    )
    runner = CliRunner()

    init_result = runner.invoke(cli, ["init", "--user", "alice"])
    assert init_result.exit_code == 0
    assert "Initialized TimeTurn" in init_result.output
    assert (tmp_path / "timeturn.toml").exists()

    outputs = []
    for message, _ in WALK:
        say_result = runner.invoke(cli, ["say", message])
        assert say_result.exit_code == 0, say_result.output
        outputs.append(say_result.output)

    assert "[stage] 雑談 -> ヒアリング中" in outputs[0]
    assert "[hearing] 25%" in outputs[1]
    assert "[stage] ヒアリング中 -> 提案確認" in outputs[4]
    assert "[tree]" in outputs[5]

    status_result = runner.invoke(cli, ["status"])
    assert status_result.exit_code == 0
    status = json.loads(status_result.output)
    assert status["stage"] == "output"
    assert status["hearing_percent"] == 100
    assert status["hearingSummary"]["why"] == "留学したいから"
    assert status["messages"] == 12

    apply_result = runner.invoke(cli, ["apply"])
    assert apply_result.exit_code == 0
    assert "Saved 1 root node(s)." in apply_result.output

    tree_result = runner.invoke(cli, ["tree"])
    assert tree_result.exit_code == 0
    assert "Goal: 英語を話せるようになる" in tree_result.output
    assert "│  └─ Milestone: 単語" in tree_result.output
    assert StateStore(tmp_path).get_tree("alice")

    assist_result = runner.invoke(cli, ["assist", "模試の復習も入れたい", "--yes"])
    assert assist_result.exit_code == 0, assist_result.output
    assert "の調子はいかがですか？" in assist_result.output
    assert "追加しますね！" in assist_result.output
    assert "[ADD_TASK" not in assist_result.output
    assert "[ok] 「単語」に「模試の復習」を追加" in assist_result.output

    tree_json = runner.invoke(cli, ["tree", "--json"])
    forest = json.loads(tree_json.output)
    milestone = forest[0]["children"][0]["children"][0]
    assert [task["title"] for task in milestone["children"]] == [
        "単語帳1周",
        "毎日15分音読",
        "模試の復習",
    ]

    reset_result = runner.invoke(cli, ["reset"])
    assert reset_result.exit_code == 0
    status_after = json.loads(runner.invoke(cli, ["status"]).output)
    assert status_after["stage"] == "normal"
    assert status_after["messages"] == 0


def test_failed_reply_exits_non_zero_and_keeps_stage(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _install_provider(monkeypatch, [])
    runner = CliRunner()
    assert runner.invoke(cli, ["init"]).exit_code == 0

    say_result = runner.invoke(cli, ["say", "英語を話せるようになりたい"])

    assert say_result.exit_code != 0
    assert "did not reply" in say_result.output
    status = json.loads(runner.invoke(cli, ["status"]).output)
    assert status["stage"] == "normal"
    assert status["messages"] == 0
    metrics = StateStore(tmp_path).get_metrics()
    assert metrics["session_counters"]["turn_failed"] == 1


def test_parse_command_reads_stdin() -> None:
    runner = CliRunner()

    text_result = runner.invoke(cli, ["parse"], input=TREE_REPLY)
    json_result = runner.invoke(cli, ["parse", "--json"], input=TREE_REPLY)
    empty_result = runner.invoke(cli, ["parse"], input="Task: 単語帳だけ")

    assert text_result.exit_code == 0
    assert text_result.output.startswith("Goal: 英語を話せるようになる\n├─ Project: 基礎力")
    forest = json.loads(json_result.output)
    assert forest[0]["type"] == "Goal"
    assert len(forest[0]["children"]) == 2
    assert empty_result.exit_code == 0
    assert "No task tree found." in empty_result.output


def test_provider_command_updates_config(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["provider", "anthropic", "--fallback", "gemini"])

    assert result.exit_code == 0
    config = load_config(tmp_path / "timeturn.toml")
    assert config.provider.primary == "anthropic"
    assert config.provider.fallback == "gemini"


def test_tree_command_on_empty_store(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _install_provider(monkeypatch, [])
    runner = CliRunner()

    result = runner.invoke(cli, ["tree"])

    assert result.exit_code == 0
    assert "The task tree is empty." in result.output


def test_assist_applies_goal_and_project_from_one_reply(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _install_provider(
        monkeypatch,
        [
            "いいですね！[ADD_GOAL:英語上達]"
            "[ADD_PROJECT:英語上達:リスニング強化][ADD_TASK:存在しない:何か]"
        ],
    )
    runner = CliRunner()

    result = runner.invoke(cli, ["assist", "英語の目標を作って", "--yes"])

    assert result.exit_code == 0, result.output
    assert "[ok] 目標「英語上達」を追加" in result.output
    assert "[ok] 「英語上達」に「リスニング強化」を追加" in result.output
    assert "[failed] 「存在しない」に「何か」を追加" in result.output
    forest = json.loads(runner.invoke(cli, ["tree", "--json"]).output)
    assert [goal["title"] for goal in forest] == ["英語上達"]
    assert [child["title"] for child in forest[0]["children"]] == ["リスニング強化"]
    assert forest[0]["children"][0]["type"] == "Project"


def test_assist_asks_before_each_action(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _install_provider(monkeypatch, ["[ADD_GOAL:英語上達][ADD_GOAL:数学]"])
    runner = CliRunner()

    result = runner.invoke(cli, ["assist", "目標を追加して"], input="y\nn\n")

    assert result.exit_code == 0, result.output
    forest = json.loads(runner.invoke(cli, ["tree", "--json"]).output)
    assert [goal["title"] for goal in forest] == ["英語上達"]


def test_chat_repl_survives_state_lock_timeout(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("timeturn.cli.StateStore", partial(StateStore, lock_timeout_seconds=0.05))
    lock_file = tmp_path / ".timeturn" / "state" / ".lock"

    class LockingProvider(FakeProvider):
        async def complete(self, messages: list[ChatMessage]) -> Completion:
            lock_file.write_text("other-process", encoding="utf-8")
            return await super().complete(messages)

    provider = LockingProvider(["素敵！どうして英語を話せるようになりたいの？"])
    monkeypatch.setattr("timeturn.cli._build_provider", lambda config, state: provider)
    runner = CliRunner()

    result = runner.invoke(cli, ["chat"], input="英語を話せるようになりたい\n/quit\n")

    assert result.exit_code == 0, result.output
    assert "Timed out waiting for state lock." in result.output
    assert "conversation was not saved" in result.output
