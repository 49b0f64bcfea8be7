from dataclasses import replace

from timeturn.dialogue.patterns import PatternTable, load_pattern_table
from timeturn.dialogue.state import (
    DialogueStage,
    DialogueState,
    HearingProgress,
    HearingSummary,
    PromptKind,
    advance,
    detect_field,
    reset_state,
)

PROPOSAL = DialogueStage.PROPOSAL


def _hearing(**progress: bool) -> DialogueState:
    return DialogueState(
        stage=DialogueStage.HEARING,
        progress=HearingProgress(**progress),
        summary=HearingSummary(goal="プログラミングを学びたい"),
    )


def test_motivation_message_starts_hearing() -> None:
    decision = advance(reset_state(), "プログラミングを学びたい")

    assert decision.state.stage == DialogueStage.HEARING
    assert decision.state.summary.goal == "プログラミングを学びたい"
    assert decision.state.progress.percent == 0
    assert decision.prompt.kind == PromptKind.INTEREST
    assert decision.prompt.next_field == "why"


def test_small_talk_stays_normal() -> None:
    state = reset_state()

    decision = advance(state, "こんにちは")

    assert decision.state is state
    assert decision.prompt.kind == PromptKind.CHAT


def test_why_answer_after_why_question() -> None:
    decision = advance(_hearing(), "転職したいから", "なんでプログラミングを学びたいの？")

    state = decision.state
    assert decision.detected_field == "why"
    assert state.progress.why is True
    assert (state.progress.current, state.progress.target, state.progress.timeline) == (
        False,
        False,
        False,
    )
    assert state.summary.why == "転職したいから"
    assert state.progress.percent == 25
    assert state.stage == DialogueStage.HEARING
    assert decision.prompt.kind == PromptKind.HEARING_QUESTION
    assert decision.prompt.next_field == "current"


def test_last_field_completes_hearing_and_moves_to_proposal() -> None:
    state = _hearing(why=True, current=True, target=True)

    decision = advance(state, "2025年12月まで", "いつまでに達成したい？")

    assert decision.detected_field == "timeline"
    assert decision.state.progress.percent == 100
    assert decision.state.stage == DialogueStage.PROPOSAL
    assert decision.state.summary.timeline == "2025年12月まで"
    assert decision.prompt.kind == PromptKind.HEARING_COMPLETE


def test_affirmative_reply_in_proposal_moves_to_output() -> None:
    state = replace(_hearing(why=True, current=True, target=True, timeline=True), stage=PROPOSAL)

    decision = advance(state, "お願いします")

    assert decision.state.stage == DialogueStage.OUTPUT
    assert decision.state.progress == state.progress
    assert decision.prompt.kind == PromptKind.TASK_OUTPUT


def test_non_affirmative_reply_in_proposal_stays() -> None:
    state = replace(_hearing(why=True, current=True, target=True, timeline=True), stage=PROPOSAL)

    decision = advance(state, "ちょっと考えさせて")

    assert decision.state.stage == DialogueStage.PROPOSAL
    assert decision.prompt.kind == PromptKind.HEARING_COMPLETE


def test_output_stage_is_terminal_until_reset() -> None:
    state = replace(reset_state(), stage=DialogueStage.OUTPUT)

    decision = advance(state, "新しい目標を立てたい")

    assert decision.state.stage == DialogueStage.OUTPUT
    assert decision.prompt.kind == PromptKind.TASK_OUTPUT
    assert reset_state().stage == DialogueStage.NORMAL


def test_detection_checks_fields_in_order_and_first_hit_wins() -> None:
    # "今は" would also count as a current-level answer
    assert detect_field(HearingProgress(), "今は初心者だから", None) == "why"
    assert detect_field(HearingProgress(why=True), "今は初心者だから", None) == "current"


def test_question_marker_in_previous_message_identifies_field() -> None:
    field = detect_field(HearingProgress(why=True), "全然だめ", "今のレベルはどのくらい？")

    assert field == "current"


def test_curiosity_aside_suppresses_detection() -> None:
    previous = "ちなみに、なんでプログラミングなの？"

    decision = advance(_hearing(), "転職したいから", previous)

    assert detect_field(HearingProgress(), "転職したいから", previous) is None
    assert decision.detected_field is None
    assert decision.state.progress.percent == 0
    assert decision.state.summary.why is None


def test_unrecognised_reply_keeps_asking_next_field() -> None:
    decision = advance(_hearing(why=True), "うーん")

    assert decision.detected_field is None
    assert decision.state.progress.percent == 25
    assert decision.prompt.next_field == "current"


def test_answered_field_is_never_overwritten() -> None:
    state = DialogueState(
        stage=DialogueStage.HEARING,
        progress=HearingProgress(why=True),
        summary=HearingSummary(goal="英語", why="留学したいから"),
    )

    decision = advance(state, "お金を稼ぐために", "なんで？")

    assert decision.state.summary.why == "留学したいから"
    assert decision.state.progress.why is True


def test_at_most_one_field_per_turn() -> None:
    message = "今は初心者だけど2025年までに合格したいから"

    decision = advance(_hearing(), message)

    assert decision.state.progress.done_count == 1


def test_progress_never_decreases_across_a_walk() -> None:
    state = reset_state()
    previous_percent = 0
    turns = [
        ("英語を話せるようになりたい", None),
        ("留学したいから", "なんで英語なの？"),
        ("今は初心者", "今のレベルは？"),
        ("TOEIC800点を目指す", "どこまで目指したい？"),
        ("来年の3月まで", "いつまでに？"),
    ]
    stages = []
    for message, previous in turns:
        state = advance(state, message, previous).state
        assert state.progress.percent >= previous_percent
        previous_percent = state.progress.percent
        stages.append(state.stage)

    assert stages == [
        DialogueStage.HEARING,
        DialogueStage.HEARING,
        DialogueStage.HEARING,
        DialogueStage.HEARING,
        DialogueStage.PROPOSAL,
    ]
    assert state.progress.complete is True


def test_dialogue_state_dict_roundtrip_and_bad_stage() -> None:
    state = DialogueState(
        stage=DialogueStage.PROPOSAL,
        progress=HearingProgress(why=True, timeline=True),
        summary=HearingSummary(goal="英語", why="留学", timeline="来年"),
    )

    payload = state.to_dict()

    assert payload["hearingProgress"] == {
        "why": True,
        "current": False,
        "target": False,
        "timeline": True,
    }
    assert "current" not in payload["hearingSummary"]
    assert DialogueState.from_dict(payload) == state
    assert DialogueState.from_dict({"stage": "bogus"}).stage == DialogueStage.NORMAL
    assert DialogueState.from_dict(None) == reset_state()


def test_custom_pattern_table_from_dict() -> None:
    table = PatternTable.from_dict(
        {
            "motivation": ["want to"],
            "affirmative": ["sure"],
            "why": {"answer": ["because"]},
        }
    )

    started = advance(reset_state(), "I want to learn Go", patterns=table)
    answered = advance(started.state, "because of work", patterns=table)

    assert started.state.stage == DialogueStage.HEARING
    assert answered.detected_field == "why"
    assert table.affirmative.search("SURE thing")


def test_load_pattern_table_reads_toml_and_falls_back(tmp_path) -> None:
    path = tmp_path / "patterns.toml"
    path.write_text(
        'motivation = ["勉強する"]\n\n[timeline]\nanswer = ["そのうち"]\n',
        encoding="utf-8",
    )

    table = load_pattern_table(path)
    default = load_pattern_table(tmp_path / "missing.toml")

    assert table.motivation.search("毎日勉強する")
    assert not table.motivation.search("学びたい")
    assert table.fields["timeline"].answer.search("そのうちやる")
    assert table.fields["why"].answer.search("転職したいから")
    assert default.motivation.search("学びたい")
