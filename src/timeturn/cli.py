from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from timeturn.config import (
    PROVIDER_NAMES,
    ProviderName,
    TimeturnConfig,
    load_config,
    save_config,
)
from timeturn.dialogue.patterns import load_pattern_table
from timeturn.prompts import PromptLibrary
from timeturn.providers import (
    AnthropicProvider,
    ChatProvider,
    GeminiProvider,
    OpenAIProvider,
    ResilientProvider,
    RetryPolicy,
)
from timeturn.session import ConversationSession, MiniChatSession
from timeturn.state import DebouncedWriter, StateStore, TimeturnStateError
from timeturn.tree.models import TaskTreeError, forest_from_dicts, forest_to_dicts
from timeturn.tree.ops import tree_statistics
from timeturn.tree.parser import has_task_tree_structure, parse_task_tree, render_task_tree

STAGE_LABELS = {
    "normal": "雑談",
    "hearing": "ヒアリング中",
    "proposal": "提案確認",
    "output": "タスク出力",
}


@dataclass(slots=True)
class Runtime:
    root: Path
    config_path: Path
    config: TimeturnConfig
    state: StateStore
    writer: DebouncedWriter
    provider: ChatProvider
    prompts: PromptLibrary


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _build_single_provider(
    provider_name: ProviderName, config: TimeturnConfig
) -> GeminiProvider | OpenAIProvider | AnthropicProvider:
    models = config.models
    common: dict[str, Any] = {
        "temperature": models.temperature,
        "max_output_tokens": models.max_output_tokens,
        "timeout_seconds": config.provider.timeout_seconds,
    }
    if provider_name == "openai":
        return OpenAIProvider(model=models.openai_model, **common)
    if provider_name == "anthropic":
        return AnthropicProvider(model=models.anthropic_model, **common)
    return GeminiProvider(model=models.gemini_model, **common)


def _append_event(metrics: dict[str, Any], key: str, event: dict[str, Any]) -> None:
    events = metrics.get(key, [])
    if not isinstance(events, list):
        events = []
    event_payload = dict(event)
    event_payload["at"] = datetime.now(UTC).replace(microsecond=0).isoformat()
    events.append(event_payload)
    metrics[key] = events[-200:]


def _record_provider_event(state: StateStore, event: dict[str, Any]) -> None:
    def _updater(metrics: dict[str, Any]) -> None:
        _append_event(metrics, "provider_events", event)
        if event.get("event") == "provider_retry":
            metrics["provider_retry_count"] = int(metrics.get("provider_retry_count", 0)) + 1
        if event.get("event") == "provider_fallback_success":
            metrics["provider_fallback_count"] = int(metrics.get("provider_fallback_count", 0)) + 1
        if event.get("event") == "provider_attempt_failed":
            metrics["provider_failure_count"] = int(metrics.get("provider_failure_count", 0)) + 1

    state.update_metrics(_updater)


def _record_session_event(state: StateStore, event: dict[str, Any]) -> None:
    def _updater(metrics: dict[str, Any]) -> None:
        counters = metrics.get("session_counters", {})
        if not isinstance(counters, dict):
            counters = {}
        name = str(event.get("event", "unknown"))
        counters[name] = int(counters.get(name, 0)) + 1
        metrics["session_counters"] = counters
        _append_event(metrics, "session_events", event)

    state.update_metrics(_updater)


def _report_persist_failure(state: StateStore, event: dict[str, Any]) -> None:
    click.echo(f"Error: conversation was not saved: {event.get('error')}", err=True)
    try:
        _record_session_event(state, event)
    except TimeturnStateError as exc:
        click.echo(f"Error: {exc}", err=True)


def _build_provider(config: TimeturnConfig, state: StateStore) -> ChatProvider:
    primary_name = config.provider.primary
    fallback_name = config.provider.fallback
    policy = RetryPolicy(
        max_retries=max(0, int(config.provider.max_retries)),
        backoff_seconds=max(0.0, float(config.provider.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.provider.timeout_seconds)),
    )
    return ResilientProvider(
        primary_name=primary_name,
        primary_provider=_build_single_provider(primary_name, config),
        fallback_name=fallback_name,
        fallback_provider=_build_single_provider(fallback_name, config),
        retry_policy=policy,
        event_hook=lambda event: _record_provider_event(state, event),
    )


def _load_runtime(root: Path, config_path: Path) -> Runtime:
    config = load_config(config_path)
    state = StateStore(root)
    writer = DebouncedWriter(
        delay=max(0.0, float(config.dialogue.persist_debounce_seconds)),
        error_hook=lambda event: _report_persist_failure(state, event),
    )
    return Runtime(
        root=root,
        config_path=config_path,
        config=config,
        state=state,
        writer=writer,
        provider=_build_provider(config, state),
        prompts=PromptLibrary(),
    )


def _conversation(runtime: Runtime, conversation_id: str) -> ConversationSession:
    patterns_file = runtime.config.dialogue.patterns_file
    patterns = None
    if patterns_file:
        patterns = load_pattern_table(_resolve_config_path(runtime.root, patterns_file))
    return ConversationSession(
        runtime.provider,
        runtime.state,
        conversation_id=conversation_id,
        user_id=runtime.config.storage.user_id,
        prompts=runtime.prompts,
        patterns=patterns,
        writer=runtime.writer,
        few_shot=runtime.config.dialogue.few_shot_examples,
        tree_context_depth=runtime.config.dialogue.tree_context_depth,
        event_hook=lambda event: _record_session_event(runtime.state, event),
    )


def _mini_chat(runtime: Runtime, conversation_id: str) -> MiniChatSession:
    return MiniChatSession(
        runtime.provider,
        runtime.state,
        conversation_id=conversation_id,
        user_id=runtime.config.storage.user_id,
        prompts=runtime.prompts,
        writer=runtime.writer,
        tree_context_depth=runtime.config.dialogue.tree_context_depth,
        event_hook=lambda event: _record_session_event(runtime.state, event),
    )


def _runtime_from_option(config_value: str) -> Runtime:
    root = Path.cwd().resolve()
    return _load_runtime(root, _resolve_config_path(root, config_value))


def _echo_turn(session: ConversationSession, message: str) -> bool:
    result = asyncio.run(session.send(message))
    if not result.success:
        click.echo(f"Error: {result.error}", err=True)
        return False
    click.echo(result.reply)
    if result.stage_changed:
        click.echo(
            f"[stage] {STAGE_LABELS[result.previous_stage.value]} -> "
            f"{STAGE_LABELS[result.stage.value]}"
        )
    if result.stage.value == "hearing":
        click.echo(f"[hearing] {result.progress_percent}%")
    if result.has_tree:
        click.echo("[tree] A task tree was proposed. Use /apply or `timeturn apply` to save it.")
    return True


def _merge_and_report(session: ConversationSession, parent_id: str | None) -> None:
    try:
        merged = session.merge_proposal(parent_id)
    except TaskTreeError as exc:
        raise click.ClickException(str(exc)) from exc
    if not merged:
        click.echo("No task tree found in the last reply.")
        return
    click.echo(render_task_tree(merged))
    click.echo(f"Saved {len(merged)} root node(s).")


@click.group()
def cli() -> None:
    """TimeTurn goal-hearing assistant CLI."""


@cli.command("init")
@click.option("--provider", "provider_name", type=click.Choice(PROVIDER_NAMES), default=None)
@click.option("--user", "user_id", default=None)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def init_command(provider_name: str | None, user_id: str | None, config_value: str) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    if provider_name:
        config.provider.primary = provider_name  # type: ignore[assignment]
    if user_id:
        config.storage.user_id = user_id
    save_config(config_path, config)

    state = StateStore(root)
    initialized_at = datetime.now(UTC).replace(microsecond=0).isoformat()
    state.update_metrics(lambda metrics: metrics.setdefault("initialized_at", initialized_at))

    click.echo(f"Initialized TimeTurn in {root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Provider: {config.provider.primary}")
    click.echo(f"State: {state.local_state_dir}")


@cli.command("say")
@click.argument("message")
@click.option("--conversation", "conversation_id", default="default", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def say_command(message: str, conversation_id: str, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    session = _conversation(runtime, conversation_id)
    try:
        ok = _echo_turn(session, message)
    except TimeturnStateError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        runtime.writer.flush()
    if not ok:
        raise click.ClickException("The assistant did not reply. Send the message again.")


@cli.command("chat")
@click.option("--conversation", "conversation_id", default="default", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def chat_command(conversation_id: str, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    session = _conversation(runtime, conversation_id)
    click.echo("Type /tree, /apply, /reset or /quit.")
    try:
        while True:
            try:
                line = click.prompt("you", prompt_suffix="> ", default="", show_default=False)
            except click.Abort:
                break
            text = line.strip()
            if not text:
                continue
            if text == "/quit":
                break
            if text == "/reset":
                session.reset()
                click.echo("Conversation reset.")
                continue
            if text == "/tree":
                proposal = session.proposed_tree()
                if not proposal:
                    click.echo("No task tree found in the last reply.")
                else:
                    click.echo(render_task_tree(proposal))
                continue
            if text == "/apply":
                _merge_and_report(session, None)
                continue
            try:
                _echo_turn(session, text)
            except TimeturnStateError as exc:
                click.echo(f"Error: {exc}", err=True)
    finally:
        runtime.writer.flush()


@cli.command("status")
@click.option("--conversation", "conversation_id", default="default", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def status_command(conversation_id: str, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    session = _conversation(runtime, conversation_id)
    nodes = session.load_tree()
    metrics = runtime.state.get_metrics()
    payload = {
        "conversation": conversation_id,
        "stage": session.state.stage.value,
        "hearing_percent": session.state.progress.percent,
        "hearingProgress": session.state.progress.to_dict(),
        "hearingSummary": session.state.summary.to_dict(),
        "messages": len(session.messages),
        "provider": {
            "primary": runtime.config.provider.primary,
            "fallback": runtime.config.provider.fallback,
        },
        "tree": tree_statistics(nodes),
        "provider_retry_count": int(metrics.get("provider_retry_count", 0)),
        "provider_fallback_count": int(metrics.get("provider_fallback_count", 0)),
    }
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.command("reset")
@click.option("--conversation", "conversation_id", default="default", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def reset_command(conversation_id: str, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    session = _conversation(runtime, conversation_id)
    session.reset()
    runtime.writer.flush()
    click.echo(f"Conversation '{conversation_id}' reset.")


@cli.command("parse")
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@click.option("--json", "as_json", is_flag=True, default=False)
def parse_command(source: Any, as_json: bool) -> None:
    text = source.read()
    nodes = parse_task_tree(text) if has_task_tree_structure(text) else []
    if not nodes:
        click.echo("No task tree found.")
        return
    if as_json:
        click.echo(json.dumps(forest_to_dicts(nodes), ensure_ascii=False, indent=2))
        return
    click.echo(render_task_tree(nodes))


@cli.command("apply")
@click.option("--parent", "parent_id", default=None)
@click.option("--conversation", "conversation_id", default="default", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def apply_command(parent_id: str | None, conversation_id: str, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    session = _conversation(runtime, conversation_id)
    try:
        _merge_and_report(session, parent_id)
    except TimeturnStateError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command("tree")
@click.option("--json", "as_json", is_flag=True, default=False)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def tree_command(as_json: bool, config_value: str) -> None:
    runtime = _runtime_from_option(config_value)
    nodes = forest_from_dicts(runtime.state.get_tree(runtime.config.storage.user_id))
    if as_json:
        click.echo(json.dumps(forest_to_dicts(nodes), ensure_ascii=False, indent=2))
        return
    if not nodes:
        click.echo("The task tree is empty.")
        return
    click.echo(render_task_tree(nodes))


@cli.command("assist")
@click.argument("message", required=False)
@click.option("--yes", "assume_yes", is_flag=True, default=False)
@click.option("--conversation", "conversation_id", default="mini-chat", show_default=True)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def assist_command(
    message: str | None, assume_yes: bool, conversation_id: str, config_value: str
) -> None:
    runtime = _runtime_from_option(config_value)
    session = _mini_chat(runtime, conversation_id)
    try:
        greeting = session.greeting()
        if greeting:
            click.echo(greeting)
        if not message:
            return
        turn = asyncio.run(session.send(message))
        if not turn.success:
            raise click.ClickException(f"The assistant did not reply: {turn.error}")
        click.echo(turn.reply)
        for action in turn.actions:
            if not assume_yes:
                action.selected = click.confirm(f"[action] {action.describe()}", default=True)
        if any(action.selected for action in turn.actions):
            for action in session.apply(turn.actions):
                if action.selected:
                    mark = "ok" if action.success else "failed"
                    click.echo(f"[{mark}] {action.describe()}")
    except (TimeturnStateError, TaskTreeError) as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        runtime.writer.flush()


@cli.command("provider")
@click.argument("provider_name", type=click.Choice(PROVIDER_NAMES))
@click.option("--fallback", "fallback_name", type=click.Choice(PROVIDER_NAMES), default=None)
@click.option("--config", "config_value", default="timeturn.toml", show_default=True)
def provider_command(provider_name: str, fallback_name: str | None, config_value: str) -> None:
    root = Path.cwd().resolve()
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    config.provider.primary = provider_name  # type: ignore[assignment]
    if fallback_name:
        config.provider.fallback = fallback_name  # type: ignore[assignment]
    save_config(config_path, config)
    click.echo(f"Primary provider set to {provider_name}")
    if fallback_name:
        click.echo(f"Fallback provider set to {fallback_name}")
