import pytest

from tiller.config import TillerSettings
from tiller.providers.base import LLMProvider, LLMResponse
from tiller.runtime import Runtime


class QuietProvider(LLMProvider):
    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7) -> LLMResponse:
        return LLMResponse(content="ok")

    def get_default_model(self) -> str:
        return "quiet"


def make_settings(tmp_path, **overrides) -> TillerSettings:
    return TillerSettings(
        _env_file=None,
        cwd=str(tmp_path),
        user_settings_path=str(tmp_path / "home" / "settings.json"),
        **overrides,
    )


@pytest.mark.asyncio
async def test_runtime_wires_components(tmp_path) -> None:
    runtime = Runtime.create(make_settings(tmp_path, denied_tools=["KillShell"]), QuietProvider())

    assert runtime.registry.tool_names == ["Read", "Write", "Edit", "LS", "Bash", "TaskOutput", "KillShell"]
    assert runtime.registry.get("exec") is runtime.registry.get("Bash")
    assert [d["function"]["name"] for d in runtime.registry.get_definitions()][-1] == "TaskOutput"
    assert runtime.agent.max_iterations == 10

    result = await runtime.agent.process_message("hi")
    assert result.response == "ok"
    await runtime.close()


@pytest.mark.asyncio
async def test_runtime_loads_project_hooks(tmp_path) -> None:
    (tmp_path / ".tiller").mkdir()
    (tmp_path / ".tiller" / "settings.json").write_text(
        '{"hooks": {"UserPromptSubmit": [{"hooks": [{"type": "command", "command": "echo busy >&2; exit 2"}]}]}}'
    )
    runtime = Runtime.create(make_settings(tmp_path), QuietProvider())

    result = await runtime.agent.process_message("hi")

    assert result.blocked
    assert result.response == "busy"
    await runtime.close()


def test_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("TILLER_MAX_TOOL_ITERATIONS", "4")
    monkeypatch.setenv("TILLER_DENY_PATTERNS", '["Bash(command:rm*)"]')

    settings = TillerSettings(_env_file=None)

    assert settings.max_tool_iterations == 4
    assert settings.deny_patterns == ["Bash(command:rm*)"]
