import asyncio

import pytest

from tiller.permissions import ApprovalBroker, PermissionManager, PermissionRule, approval_key


def test_deny_rule_wins_over_allow_rule() -> None:
    pm = PermissionManager(allow_patterns=["Bash"], deny_patterns=["Bash(command:rm*)"])

    assert pm.check_permission("Bash", {"command": "rm -rf /"}) is False
    assert pm.check_permission("Bash", {"command": "ls -la"}) is True


def test_check_permission_is_idempotent() -> None:
    pm = PermissionManager(deny_patterns=["Write(file_path:/etc*)"])
    args = {"file_path": "/etc/passwd", "content": "x"}

    first = pm.check_permission("Write", args)
    assert [pm.check_permission("Write", args) for _ in range(5)] == [first] * 5
    assert pm.session_decisions() == {}


def test_default_confirm_set() -> None:
    pm = PermissionManager()

    assert pm.check_permission("Read", {"file_path": "a.txt"}) is True
    assert pm.check_permission("LS", {"path": "."}) is True
    assert pm.check_permission("Bash", {"command": "ls"}) is False
    assert pm.check_permission("Write", {"file_path": "a.txt"}) is False
    assert pm.check_permission("Edit", {"file_path": "a.txt"}) is False


def test_session_memo_keys_on_primary_argument() -> None:
    pm = PermissionManager()
    pm.record_decision("Write", {"file_path": "a.txt", "content": "1"}, True)

    assert pm.check_permission("Write", {"file_path": "a.txt", "content": "2"}) is True
    assert pm.check_permission("Write", {"file_path": "b.txt", "content": "2"}) is False

    pm.clear_session()
    assert pm.check_permission("Write", {"file_path": "a.txt", "content": "2"}) is False


def test_rules_beat_session_memo() -> None:
    pm = PermissionManager(deny_patterns=["Bash(command:rm*)"])
    pm.record_decision("Bash", {"command": "rm x"}, True)

    assert pm.check_permission("Bash", {"command": "rm x"}) is False

    pm = PermissionManager(allow_patterns=["Bash(command:git*)"])
    pm.record_decision("Bash", {"command": "git push"}, False)

    assert pm.check_permission("Bash", {"command": "git push"}) is True


def test_session_refusal_counts_as_denied() -> None:
    pm = PermissionManager()
    pm.record_decision("Bash", {"command": "make"}, False)

    assert pm.is_denied("Bash", {"command": "make"}) is True
    assert pm.is_denied("Bash", {"command": "make test"}) is False


def test_primary_argument_precedence() -> None:
    assert approval_key("Write", {"path": "p", "file_path": "f"}) == "Write:f"
    assert approval_key("Grep", {"pattern": "TODO"}) == "Grep:TODO"
    assert approval_key("Tool", {"other": 1}) == "Tool:"


@pytest.mark.parametrize(
    ("pattern", "args", "expected"),
    [
        ("Bash", {"command": "anything"}, True),
        ("Bash(command:ls)", {"command": "ls"}, True),
        ("Bash(command:ls)", {"command": "ls -la"}, False),
        ("Bash(command:git*)", {"command": "git status"}, True),
        ("Bash(command:git*)", {"command": "echo git"}, False),
        ("Bash(command:*)", {"command": ""}, True),
        ("Bash(command:*)", {}, False),
        ("Read(file_path:*)", {"file_path": "x"}, False),
        ("Bash(command)", {"command": "ls"}, False),
        ("Bash(command:a:b)", {"command": "a:b"}, False),
        ("Bash(", {"command": "ls"}, False),
    ],
)
def test_rule_grammar(pattern: str, args: dict, expected: bool) -> None:
    assert PermissionRule(pattern, "allow").matches("Bash", args) is expected


def test_allow_and_deny_add_rules() -> None:
    pm = PermissionManager()
    pm.allow("Bash(command:npm*)")
    pm.deny("Bash(command:npm publish*)")

    assert [r.pattern for r in pm.rules()] == ["Bash(command:npm publish*)", "Bash(command:npm*)"]
    assert pm.check_permission("Bash", {"command": "npm test"}) is True
    assert pm.check_permission("Bash", {"command": "npm publish"}) is False


@pytest.mark.asyncio
async def test_broker_session_scope_records_memo() -> None:
    pm = PermissionManager()
    broker = ApprovalBroker(pm, timeout_s=5)
    args = {"file_path": "notes.md", "content": "hi"}

    async def approve_when_pending() -> None:
        while not broker.pending():
            await asyncio.sleep(0.01)
        req = broker.pending()[0]
        await broker.resolve(request_id=req.request_id, approved=True, scope="session")

    approved, _ = await asyncio.gather(broker("Write", args), approve_when_pending())

    assert approved is True
    assert broker.pending() == []
    assert pm.check_permission("Write", args) is True


@pytest.mark.asyncio
async def test_broker_always_scope_adds_command_prefix_rule() -> None:
    pm = PermissionManager()
    broker = ApprovalBroker(pm, timeout_s=5)

    request_id = await broker.create_request(tool_name="Bash", args={"command": "pytest -q"})
    await broker.resolve(request_id=request_id, approved=True, scope="always")

    assert broker.pending() == []
    assert pm.check_permission("Bash", {"command": "pytest tests/"}) is True


@pytest.mark.asyncio
async def test_broker_timeout_denies() -> None:
    broker = ApprovalBroker(PermissionManager(), timeout_s=0.05)

    approved = await broker("Bash", {"command": "ls"})

    assert approved is False
    assert broker.pending() == []
