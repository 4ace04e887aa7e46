import pytest

from tiller.agent.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool
from tiller.agent.tools.shell import BashTool
from tiller.agent.tools.tasks import KillShellTool, TaskOutputTool
from tiller.tasks import TaskManager


@pytest.mark.asyncio
async def test_write_then_read_inside_root(tmp_path) -> None:
    write = WriteFileTool(root=tmp_path)
    read = ReadFileTool(root=tmp_path)

    result = await write.execute(file_path="sub/a.txt", content="one\ntwo\nthree\n")
    assert result.success
    assert result.data["original_content"] is None
    assert (tmp_path / "sub" / "a.txt").read_text() == "one\ntwo\nthree\n"

    window = await read.execute(file_path="sub/a.txt", offset=2, limit=1)
    assert window.output == "two\n"


@pytest.mark.asyncio
async def test_paths_outside_root_are_rejected(tmp_path) -> None:
    read = ReadFileTool(root=tmp_path / "inner")
    (tmp_path / "inner").mkdir()
    (tmp_path / "secret.txt").write_text("x")

    result = await read.execute(file_path="../secret.txt")

    assert not result.success
    assert "outside allowed root" in result.error


@pytest.mark.asyncio
async def test_write_records_create_or_overwrite(tmp_path) -> None:
    write = WriteFileTool(root=tmp_path)

    created = await write.execute(file_path="a.txt", content="v1")
    record = write.action_record({"file_path": "a.txt", "content": "v1"}, created)
    assert record is not None and record.kind == "create"

    overwritten = await write.execute(file_path="a.txt", content="v2")
    record = write.action_record({"file_path": "a.txt", "content": "v2"}, overwritten)
    assert record.kind == "write"
    assert record.original_content == "v1"


@pytest.mark.asyncio
async def test_edit_requires_unique_match(tmp_path) -> None:
    (tmp_path / "f.py").write_text("x = 1\nx = 1\n")
    edit = EditFileTool(root=tmp_path)

    ambiguous = await edit.execute(file_path="f.py", old_string="x = 1", new_string="x = 2")
    assert not ambiguous.success
    assert "appears 2 times" in ambiguous.error

    missing = await edit.execute(file_path="f.py", old_string="y", new_string="z")
    assert not missing.success

    everywhere = await edit.execute(file_path="f.py", old_string="x = 1", new_string="x = 2", replace_all=True)
    assert everywhere.success
    assert (tmp_path / "f.py").read_text() == "x = 2\nx = 2\n"
    assert everywhere.data["original_content"] == "x = 1\nx = 1\n"


@pytest.mark.asyncio
async def test_list_dir_marks_directories(tmp_path) -> None:
    (tmp_path / "pkg").mkdir()
    (tmp_path / "a.txt").write_text("")

    result = await ListDirTool(root=tmp_path).execute(path=".")

    assert result.output.splitlines() == ["a.txt", "pkg/"]


@pytest.mark.asyncio
async def test_bash_reports_exit_code_and_stderr(tmp_path) -> None:
    bash = BashTool(working_dir=str(tmp_path))

    ok = await bash.execute(command="echo hello")
    assert ok.success
    assert ok.output.strip() == "hello"

    failed = await bash.execute(command="echo oops >&2; exit 3")
    assert not failed.success
    assert "STDERR:\noops" in failed.output
    assert failed.data["exit_code"] == 3


@pytest.mark.asyncio
async def test_bash_timeout_kills_command(tmp_path) -> None:
    bash = BashTool(working_dir=str(tmp_path), kill_grace_s=0.2)

    result = await bash.execute(command="sleep 5", timeout=0.2)

    assert not result.success
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_bash_guard_blocks_dangerous_commands(tmp_path) -> None:
    result = await BashTool(working_dir=str(tmp_path)).execute(command="rm -rf /")

    assert not result.success
    assert "safety guard" in result.error


@pytest.mark.asyncio
async def test_background_bash_with_task_tools(tmp_path) -> None:
    tasks = TaskManager(cwd=str(tmp_path), kill_grace_s=0.5)
    bash = BashTool(tasks=tasks, working_dir=str(tmp_path))

    started = await bash.execute(command="echo bg-done", run_in_background=True)
    task_id = started.data["task_id"]
    assert task_id.startswith("shell-")

    output = await TaskOutputTool(tasks).execute(task_id=task_id, timeout=5)
    assert output.data["status"] == "completed"
    assert "bg-done" in output.output

    kill = await KillShellTool(tasks).execute(task_id=task_id)
    assert not kill.success

    missing = await TaskOutputTool(tasks).execute(task_id="shell-99")
    assert not missing.success


@pytest.mark.asyncio
async def test_edit_keeps_untouched_line_endings(tmp_path) -> None:
    (tmp_path / "win.txt").write_bytes(b"alpha\r\nbeta\r\ngamma\r\n")

    result = await EditFileTool(root=tmp_path).execute(file_path="win.txt", old_string="beta", new_string="BETA")

    assert result.success
    assert (tmp_path / "win.txt").read_bytes() == b"alpha\r\nBETA\r\ngamma\r\n"
    assert result.data["original_content"] == "alpha\r\nbeta\r\ngamma\r\n"
    assert result.data["content_encoding"] == "utf-8"
