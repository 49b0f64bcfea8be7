from __future__ import annotations

import random
from importlib import resources
from string import Template

from timeturn.dialogue.patterns import HEARING_FIELDS
from timeturn.dialogue.state import HearingSummary, PromptKind, PromptSelection
from timeturn.tree.models import TaskNode
from timeturn.tree.ops import incomplete_tasks, serialize_tree_for_chat

FIELD_LABELS: dict[str, str] = {
    "goal": "目標",
    "why": "やりたい理由",
    "current": "今の状況",
    "target": "目指す姿",
    "timeline": "期限",
}

FIELD_QUESTIONS: dict[str, str] = {
    "why": "なぜそれをやりたいのか（理由やきっかけ）",
    "current": "今の状況やレベル（どのくらいできているか）",
    "target": "どうなったら達成といえるか（目指すゴールの状態）",
    "timeline": "いつまでに達成したいか（期限）",
}

MINI_CHAT_TASK_INFO = """

【ユーザーの目標・タスク一覧】
$tree_text
【未完了タスク数】${incomplete_count}個

以下のことができます：
- 具体的なタスク名を使って進捗を聞く（例：「基礎問題集1-3章は進んでる？」）
- 行き詰まっているタスクがあれば、アドバイスする
- 新しいタスクの提案（ユーザーが同意したら追加できる）
- メモの追加提案
- モチベーション維持のサポート

【追加時の特殊フォーマット】
ユーザーが追加に同意した場合のみ、以下の形式で返答の最後に追加してください：
- 目標追加: [ADD_GOAL:新しい目標名]
- プロジェクト追加: [ADD_PROJECT:親のGoal名:新しいプロジェクト名]
- マイルストーン追加: [ADD_MILESTONE:親のProject名:新しいマイルストーン名]
- タスク追加: [ADD_TASK:親のMilestone名:新しいタスク名]
- メモ追加: [ADD_MEMO:対象のタスク名:メモ内容]
新しい項目にメモを付けたい場合は名前のあとに「|メモ」を続けてください。

例: 「じゃあ追加しとくね！[ADD_TASK:数学基礎固め:模試の復習]」
例: 「メモ残しとくね！[ADD_MEMO:基礎問題集1-3章:明日までに1章終わらせる]」

※ユーザーが明確に同意していない場合は、このフォーマットを使わないでください。"""

FALLBACK_TEMPLATES: dict[str, str] = {
    PromptKind.CHAT.value: (
        "あなたは「秘書ちゃん」という名前のAIアシスタントです。"
        "ユーザーの目標達成を応援する相棒として、明るく親しみやすい口調で1-2文で返答してください。"
    ),
    PromptKind.INTEREST.value: (
        "あなたは「秘書ちゃん」です。ユーザーの目標「$goal」に興味を持って受け止め、"
        "次のことを1つだけ質問してください：$next_question\n"
        "雑談的な質問をする時は必ず「ちなみに」から始めてください。"
    ),
    PromptKind.HEARING_QUESTION.value: (
        "あなたは「秘書ちゃん」です。これまでに聞けたこと：\n$summary\n"
        "次のことを1つだけ質問してください：$next_question"
    ),
    PromptKind.HEARING_COMPLETE.value: (
        "あなたは「秘書ちゃん」です。ヒアリング結果：\n$summary\n"
        "内容をまとめ、「この内容でタスクに分解してもいいですか？」と確認してください。"
    ),
    PromptKind.TASK_OUTPUT.value: (
        "あなたは「秘書ちゃん」です。ヒアリング結果：\n$summary\n"
        "Goal: / Project: / Milestone: / Task: で始まる行のツリー形式でタスクを出力してください。"
    ),
    "mini_chat": (
        "あなたは「秘書ちゃん」という名前の女性AIアシスタントです。"
        "丁寧な敬語で2〜3文以内で返答してください。$task_info"
    ),
}

FEW_SHOT_EXAMPLES: tuple[tuple[str, str], ...] = (
    ("user", "英語を話せるようになりたい"),
    (
        "assistant",
        "英語を話せるようになりたいんだね、素敵！どうして英語を話せるようになりたいの？",
    ),
    ("user", "海外の友達ともっと話したいから"),
    (
        "assistant",
        "友達ともっと話したいんだね！今はどのくらい英語を話せる？",
    ),
)

GREETING_NO_TREE = "目標の進捗はいかがですか？何かお手伝いできることがあれば言ってくださいね"
GREETING_ALL_DONE = "タスク全部終わってるんですね！すごいです！次の目標は何にしますか？"


def format_summary(summary: HearingSummary) -> str:
    lines: list[str] = []
    for name in ("goal", *HEARING_FIELDS):
        value = getattr(summary, name)
        lines.append(f"- {FIELD_LABELS[name]}: {value if value is not None else '（未確認）'}")
    return "\n".join(lines)


class PromptLibrary:
    """Loads system-prompt templates shipped with the package and fills them in."""

    def __init__(self, package: str = "timeturn.prompts") -> None:
        self.package = package
        self._cache: dict[str, str] = {}

    def template(self, name: str) -> str:
        if name not in self._cache:
            self._cache[name] = self._load_template(name)
        return self._cache[name]

    def _load_template(self, name: str) -> str:
        try:
            prompt_path = resources.files(self.package).joinpath(f"{name}.md")
            return prompt_path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, ModuleNotFoundError):
            return FALLBACK_TEMPLATES[name]

    def render(self, selection: PromptSelection) -> str:
        summary = selection.summary
        done = sum(1 for name in HEARING_FIELDS if getattr(summary, name) is not None)
        values = {
            "goal": summary.goal or "",
            "summary": format_summary(summary),
            "percent": str(done * 100 // len(HEARING_FIELDS)),
            "next_question": FIELD_QUESTIONS.get(selection.next_field or "", ""),
        }
        return Template(self.template(selection.kind.value)).safe_substitute(values)

    def mini_chat(self, nodes: list[TaskNode], *, max_depth: int = 3) -> str:
        task_info = ""
        if nodes:
            task_info = Template(MINI_CHAT_TASK_INFO).safe_substitute(
                tree_text=serialize_tree_for_chat(nodes, max_depth=max_depth),
                incomplete_count=str(len(incomplete_tasks(nodes))),
            )
        return Template(self.template("mini_chat")).safe_substitute(task_info=task_info)


def build_greeting(nodes: list[TaskNode], rng: random.Random | None = None) -> str:
    """Opening line for the tree assistant, asking about one open task at random."""
    if not nodes:
        return GREETING_NO_TREE
    pending = incomplete_tasks(nodes)
    if not pending:
        return GREETING_ALL_DONE
    picked = (rng or random).choice(pending)
    return (
        f"「{picked.display_title}」の調子はいかがですか？"
        "何かお手伝いできることがあれば言ってくださいね"
    )
