import json
import time
from typing import Any

import pytest

from tiller.errors import HookConfigError
from tiller.events import EventHub
from tiller.hooks import HookInput, HookLoader, HookRunner, HooksManager, matches_pattern
from tiller.providers.base import LLMProvider, LLMResponse


class VerdictProvider(LLMProvider):
    def __init__(self, reply: str):
        super().__init__()
        self.reply = reply
        self.prompts: list[str] = []

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7) -> LLMResponse:
        self.prompts.append(messages[-1]["content"])
        return LLMResponse(content=self.reply)

    def get_default_model(self) -> str:
        return "fake"


def make_manager(tmp_path, *, provider: LLMProvider | None = None, events: EventHub | None = None) -> HooksManager:
    return HooksManager(
        runner=HookRunner(cwd=str(tmp_path), default_timeout_s=10, kill_grace_s=0.2, provider=provider),
        loader=HookLoader(user_settings_path=tmp_path / "home" / "settings.json"),
        events=events,
        cwd=str(tmp_path),
        session_id="session-test",
    )


def command(cmd: str, **extra: Any) -> dict[str, Any]:
    return {"type": "command", "command": cmd, **extra}


@pytest.mark.parametrize(
    ("pattern", "value", "expected"),
    [
        ("*", "Bash", True),
        ("", "Bash", True),
        ("Bash", "Bash", True),
        ("Bash", "BashX", False),
        ("Write|Edit", "Edit", True),
        ("Write|Edit", "Read", False),
        ("Web*", "WebFetch", True),
        ("Web*|Bash", "Bash", True),
        ("*Shell", "KillShell", True),
        ("mcp__*__read", "mcp__fs__read", True),
        ("mcp__*__read", "mcp__fs__write", False),
    ],
)
def test_matcher_grammar(pattern: str, value: str, expected: bool) -> None:
    assert matches_pattern(pattern, value) is expected


@pytest.mark.asyncio
async def test_hooks_run_by_descending_priority(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.register_hooks(
        "PreToolUse",
        [
            {"matcher": "*", "priority": 1, "hooks": [command("echo low >> order.txt")]},
            {"matcher": "*", "priority": 10, "hooks": [command("echo high >> order.txt")]},
            {"matcher": "*", "priority": 1, "hooks": [command("echo low2 >> order.txt")]},
        ],
    )

    decision = await manager.run("PreToolUse", HookInput(tool_name="Bash", tool_input={"command": "ls"}))

    assert not decision.blocked
    assert (tmp_path / "order.txt").read_text().split() == ["high", "low", "low2"]


@pytest.mark.asyncio
async def test_first_block_stops_dispatch(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.register_hooks(
        "PreToolUse",
        [
            {"priority": 5, "hooks": [command("echo stop here >&2; exit 2")]},
            {"priority": 0, "hooks": [command("touch should-not-exist")]},
        ],
    )

    decision = await manager.run("PreToolUse", HookInput(tool_name="Write"))

    assert decision.blocked
    assert decision.reason == "stop here"
    assert not (tmp_path / "should-not-exist").exists()


@pytest.mark.asyncio
async def test_matcher_filters_by_tool_name(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.add_hook("PreToolUse", {"matcher": "Bash", "hooks": [command("exit 2")]})

    assert not (await manager.run("PreToolUse", HookInput(tool_name="Read"))).blocked
    assert (await manager.run("PreToolUse", HookInput(tool_name="Bash"))).blocked


@pytest.mark.asyncio
async def test_structured_outputs(tmp_path) -> None:
    manager = make_manager(tmp_path)
    payload = {"continue": False, "stopReason": "halted by policy"}
    manager.add_hook("Stop", command(f"echo '{json.dumps(payload)}'"))

    decision = await manager.run("Stop", HookInput(stop_reason="max_iterations"))

    assert decision.blocked
    assert decision.reason == "halted by policy"


@pytest.mark.asyncio
async def test_updated_input_merges_and_context_last_wins(tmp_path) -> None:
    manager = make_manager(tmp_path)
    first = {"hookSpecificOutput": {"updatedInput": {"a": 1}, "additionalContext": "first"}}
    second = {"hookSpecificOutput": {"updatedInput": {"b": 2}, "additionalContext": "second"}}
    manager.register_hooks(
        "PreToolUse",
        [
            {"hooks": [command(f"echo '{json.dumps(first)}'"), command(f"echo '{json.dumps(second)}'")]},
        ],
    )

    decision = await manager.run("PreToolUse", HookInput(tool_name="Edit"))

    assert decision.updated_input == {"a": 1, "b": 2}
    assert decision.additional_context == "second"


@pytest.mark.asyncio
async def test_timeouts_and_failures_never_block(tmp_path) -> None:
    events = EventHub()
    manager = make_manager(tmp_path, events=events)
    manager.add_hook("PreToolUse", command("sleep 5", timeout=0.2))

    decision = await manager.run("PreToolUse", HookInput(tool_name="Bash"))

    assert not decision.blocked
    assert decision.results[0].timed_out
    assert [e["type"] for e in events.get_since()] == ["hook:error"]


@pytest.mark.asyncio
async def test_envelope_is_sent_on_stdin_with_env(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.add_hook("PreToolUse", command('cat > envelope.json; echo "$TILLER_HOOK_EVENT" > event.txt'))

    await manager.run(
        "PreToolUse",
        HookInput(tool_name="Bash", tool_input={"command": "ls"}, tool_use_id="call_1"),
    )

    envelope = json.loads((tmp_path / "envelope.json").read_text())
    assert envelope["hook_event_name"] == "PreToolUse"
    assert envelope["session_id"] == "session-test"
    assert envelope["cwd"] == str(tmp_path)
    assert envelope["tool_name"] == "Bash"
    assert envelope["tool_input"] == {"command": "ls"}
    assert envelope["tool_use_id"] == "call_1"
    assert (tmp_path / "event.txt").read_text().strip() == "PreToolUse"


@pytest.mark.asyncio
async def test_disabled_manager_is_a_no_op(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.add_hook("UserPromptSubmit", command("exit 2"))
    manager.set_enabled(False)

    decision = await manager.run("UserPromptSubmit", HookInput(prompt="hi"))

    assert not decision.blocked
    assert decision.results == []


@pytest.mark.asyncio
async def test_prompt_hook_with_model_verdict(tmp_path) -> None:
    provider = VerdictProvider('{"ok": false, "reason": "touches secrets"}')
    manager = make_manager(tmp_path, provider=provider)
    manager.add_hook("UserPromptSubmit", {"type": "prompt", "prompt": "Is this safe? $ARGUMENTS"})

    decision = await manager.run("UserPromptSubmit", HookInput(prompt="cat .env"))

    assert decision.blocked
    assert decision.reason == "touches secrets"
    assert '"prompt": "cat .env"' in provider.prompts[0]


@pytest.mark.asyncio
async def test_prompt_hook_without_model_passes(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.add_hook("UserPromptSubmit", {"type": "prompt", "prompt": "Check $ARGUMENTS"})

    decision = await manager.run("UserPromptSubmit", HookInput(prompt="hello"))

    assert not decision.blocked


def test_add_hook_rejects_bad_config(tmp_path) -> None:
    manager = make_manager(tmp_path)

    with pytest.raises(HookConfigError):
        manager.add_hook("BeforeEverything", command("true"))
    with pytest.raises(HookConfigError):
        manager.add_hook("PreToolUse", {"type": "command"})

    registration = manager.add_hook("PreToolUse", command("true", matcher="Bash", priority=3))
    assert registration.matcher == "Bash"
    assert registration.priority == 3
    assert manager.has_hooks("PreToolUse")

    manager.remove_hooks("PreToolUse", matcher="Bash")
    assert not manager.has_hooks("PreToolUse")


def test_validate_hook() -> None:
    runner = HookRunner()

    assert runner.validate_hook({"type": "command", "command": "true"}) == []
    assert runner.validate_hook({}) == ["Hook must have a type (command or prompt)"]
    assert "Prompt hook must have a prompt property" in runner.validate_hook({"type": "prompt"})
    assert "Timeout must be a positive number" in runner.validate_hook(
        {"type": "command", "command": "x", "timeout": -1}
    )


def test_loader_merges_scopes_and_plugins(tmp_path) -> None:
    home = tmp_path / "home"
    home.mkdir()
    (home / "settings.json").write_text(
        json.dumps({"hooks": {"PreToolUse": [{"matcher": "Bash", "hooks": [command("echo user")]}]}})
    )
    project = tmp_path / ".tiller"
    project.mkdir()
    (project / "settings.json").write_text(
        json.dumps({"theme": "dark", "hooks": {"PreToolUse": [{"hooks": [command("echo project")]}]}})
    )
    (project / "settings.local.json").write_text("{not json")
    plugin_hooks = project / "plugins" / "lint" / "hooks"
    plugin_hooks.mkdir(parents=True)
    (plugin_hooks / "hooks.json").write_text(
        json.dumps({"hooks": {"PostToolUse": [{"matcher": "Write", "hooks": [command("echo plugin")]}]}})
    )

    manager = make_manager(tmp_path)
    settings = manager.loader.load_settings(tmp_path)
    count = manager.load_hooks()

    assert settings["theme"] == "dark"
    assert len(settings["hooks"]["PreToolUse"]) == 2
    assert count == 3
    assert [r.matcher for r in manager.get_hooks()["PreToolUse"]] == ["Bash", "*"]
    assert manager.get_hooks()["PostToolUse"][0].matcher == "Write"


def test_add_hook_to_settings_writes_one_scope(tmp_path) -> None:
    loader = HookLoader(user_settings_path=tmp_path / "home" / "settings.json")

    path = loader.add_hook_to_settings("Stop", {"hooks": [command("echo done")]}, "local", tmp_path)

    assert path == tmp_path / ".tiller" / "settings.local.json"
    data = json.loads(path.read_text())
    assert data["hooks"]["Stop"][0]["hooks"][0]["command"] == "echo done"
    assert not (tmp_path / "home" / "settings.json").exists()


@pytest.mark.asyncio
async def test_timeout_holds_when_hook_ignores_large_stdin(tmp_path) -> None:
    manager = make_manager(tmp_path)
    manager.add_hook("PreToolUse", command("sleep 4", timeout=0.5))

    started = time.monotonic()
    decision = await manager.run(
        "PreToolUse", HookInput(tool_name="Write", tool_input={"content": "x" * 300_000})
    )
    elapsed = time.monotonic() - started

    assert decision.results[0].timed_out
    assert not decision.blocked
    assert elapsed < 3


@pytest.mark.asyncio
async def test_unknown_decision_keeps_rest_of_output(tmp_path) -> None:
    manager = make_manager(tmp_path)
    payload = {
        "decision": "maybe",
        "hookSpecificOutput": {"permissionDecision": "later", "updatedInput": {"a": 1}},
    }
    manager.add_hook("PreToolUse", command(f"echo '{json.dumps(payload)}'"))

    decision = await manager.run("PreToolUse", HookInput(tool_name="Edit"))

    assert not decision.blocked
    assert decision.updated_input == {"a": 1}
    assert decision.permission_decision is None
