from typing import Any

from tiller.agent.tools.base import Tool, ToolResult
from tiller.agent.tools.registry import ToolRegistry


class EchoTool(Tool):
    requires_permission = False
    is_read_only = True

    def __init__(self, name: str = "Echo"):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the text back."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string", "description": "Text to echo"}},
            "required": ["text"],
        }

    async def execute(self, text: str, **kwargs: Any) -> ToolResult:
        return ToolResult.ok(text)


class TouchTool(EchoTool):
    requires_permission = True
    is_read_only = False


def test_denied_tool_is_hidden_from_definitions() -> None:
    registry = ToolRegistry(denied_tools=["Bash"])
    registry.register(EchoTool("Read"))
    registry.register(EchoTool("Bash"))

    names = [d["function"]["name"] for d in registry.get_definitions()]

    assert registry.is_allowed("Bash") is False
    assert registry.is_allowed("Read") is True
    assert names == ["Read"]


def test_allow_list_restricts_everything_else() -> None:
    registry = ToolRegistry(allowed_tools=["Read"], denied_tools=["Read"])
    registry.register(EchoTool("Read"))
    registry.register(EchoTool("LS"))

    assert registry.is_allowed("Read") is False  # deny list is checked first
    assert registry.is_allowed("LS") is False
    assert registry.get_definitions() == []


def test_aliases_resolve_to_the_same_tool() -> None:
    registry = ToolRegistry()
    tool = EchoTool("Read")
    registry.register(tool, aliases=["read_file"])

    assert registry.get("read_file") is tool
    assert registry.has("read_file")
    assert "read_file" in registry
    assert registry.tool_names == ["Read"]

    registry.unregister("Read")
    assert registry.get("read_file") is None
    assert len(registry) == 0


def test_definitions_use_function_calling_shape() -> None:
    registry = ToolRegistry()
    registry.register(EchoTool())

    (definition,) = registry.get_definitions()

    assert definition["type"] == "function"
    assert definition["function"]["name"] == "Echo"
    assert definition["function"]["parameters"]["required"] == ["text"]


def test_catalog_and_tool_views() -> None:
    registry = ToolRegistry()
    registry.register(EchoTool("Read"))
    registry.register(TouchTool("Write"))

    assert [t["name"] for t in registry.catalog()] == ["Read", "Write"]
    assert [t.name for t in registry.get_read_only_tools()] == ["Read"]
    assert [t.name for t in registry.get_permission_tools()] == ["Write"]

    text = registry.format_for_model()
    assert "## Read" in text
    assert "- text (required): Text to echo" in text


def test_descriptor_reflects_tool_flags() -> None:
    d = TouchTool("Write").descriptor

    assert d.name == "Write"
    assert d.requires_permission is True
    assert d.is_read_only is False
    assert d.required == ["text"]


def test_allow_list_excludes_unlisted_tools() -> None:
    registry = ToolRegistry(allowed_tools=["Read"])
    registry.register(EchoTool("Read"))
    registry.register(TouchTool("Write"))

    assert registry.is_allowed("Read") is True
    assert registry.is_allowed("Write") is False
