import random

from timeturn.dialogue.state import HearingSummary, PromptKind, PromptSelection
from timeturn.prompts import FIELD_QUESTIONS, PromptLibrary, build_greeting, format_summary
from timeturn.prompts.library import FALLBACK_TEMPLATES, GREETING_ALL_DONE, GREETING_NO_TREE
from timeturn.tree.models import NodeType, TaskNode


def _forest() -> list[TaskNode]:
    goal = TaskNode.create(NodeType.GOAL, "英語上達")
    milestone = TaskNode.create(NodeType.MILESTONE, "基礎固め")
    milestone.children.extend(
        [
            TaskNode.create(NodeType.TASK, "単語帳1周"),
            TaskNode.create(NodeType.TASK, "毎日15分シャドーイング"),
        ]
    )
    goal.children.append(milestone)
    return [goal]


def test_format_summary_marks_unknown_fields() -> None:
    text = format_summary(HearingSummary(goal="英語上達", why="留学したいから"))

    assert "- 目標: 英語上達" in text
    assert "- やりたい理由: 留学したいから" in text
    assert "- 期限: （未確認）" in text


def test_interest_prompt_names_goal_and_next_question() -> None:
    selection = PromptSelection(
        kind=PromptKind.INTEREST,
        summary=HearingSummary(goal="プログラミングを学びたい"),
        next_field="why",
    )

    prompt = PromptLibrary().render(selection)

    assert "プログラミングを学びたい" in prompt
    assert FIELD_QUESTIONS["why"] in prompt
    assert "ちなみに" in prompt
    assert "$" not in prompt


def test_hearing_question_prompt_includes_summary_and_percent() -> None:
    summary = HearingSummary(goal="英語上達", why="留学", current="初心者")
    selection = PromptSelection(
        kind=PromptKind.HEARING_QUESTION, summary=summary, next_field="target"
    )

    prompt = PromptLibrary().render(selection)

    assert "- 今の状況: 初心者" in prompt
    assert "50%" in prompt
    assert FIELD_QUESTIONS["target"] in prompt


def test_task_output_prompt_describes_tree_format() -> None:
    selection = PromptSelection(kind=PromptKind.TASK_OUTPUT, summary=HearingSummary(goal="英語"))

    prompt = PromptLibrary().render(selection)

    assert "Goal:" in prompt
    assert "├─ Project:" in prompt


def test_missing_package_falls_back_to_builtin_templates() -> None:
    library = PromptLibrary(package="timeturn.no_such_prompts")
    selection = PromptSelection(kind=PromptKind.CHAT, summary=HearingSummary())

    assert library.render(selection) == FALLBACK_TEMPLATES["chat"]
    assert library.template("chat") is library.template("chat")


def test_missing_template_file_falls_back() -> None:
    library = PromptLibrary(package="timeturn.tree")

    prompt = library.render(
        PromptSelection(
            kind=PromptKind.HEARING_COMPLETE,
            summary=HearingSummary(goal="英語", timeline="来年"),
        )
    )

    assert "- 期限: 来年" in prompt
    assert "タスクに分解してもいいですか" in prompt


def test_mini_chat_prompt_without_tree_has_no_task_block() -> None:
    prompt = PromptLibrary().mini_chat([])

    assert "秘書ちゃん" in prompt
    assert "ADD_TASK" not in prompt
    assert "$task_info" not in prompt


def test_mini_chat_prompt_lists_tree_and_tag_grammar() -> None:
    prompt = PromptLibrary().mini_chat(_forest())

    assert "- Goal: 英語上達" in prompt
    assert "【未完了タスク数】2個" in prompt
    assert "[ADD_MEMO:対象のタスク名:メモ内容]" in prompt


def test_greeting_for_empty_and_finished_trees() -> None:
    forest = _forest()
    for task in forest[0].children[0].children:
        task.archived = True

    assert build_greeting([]) == GREETING_NO_TREE
    assert build_greeting(forest) == GREETING_ALL_DONE


def test_greeting_names_an_open_task() -> None:
    forest = _forest()
    forest[0].children[0].children[0].archived = True

    greeting = build_greeting(forest, random.Random(7))

    assert greeting.startswith("「毎日15分シャドーイング」の調子はいかがですか？")
