import json

from tiller.history import ActionHistory, ActionRecord


def record(n: int) -> ActionRecord:
    return ActionRecord(tool_name="Write", arguments={"n": n}, kind="write", path=f"/tmp/f{n}", original_content="x")


def test_file_shape_and_reload(tmp_path) -> None:
    path = tmp_path / "state" / "action-history.json"
    history = ActionHistory(path)
    history.append(record(1))

    data = json.loads(path.read_text())
    assert set(data) == {"actions", "last_updated"}
    assert data["actions"][0]["tool_name"] == "Write"

    reloaded = ActionHistory(path).load()
    assert [r.id for r in reloaded] == [history.records()[0].id]


def test_history_is_bounded(tmp_path) -> None:
    history = ActionHistory(tmp_path / "h.json", max_size=3)
    for n in range(5):
        history.append(record(n))

    assert [r.arguments["n"] for r in history.records()] == [2, 3, 4]
    assert history.pop().arguments["n"] == 4
    assert len(ActionHistory(tmp_path / "h.json").load()) == 2


def test_corrupt_file_loads_empty(tmp_path) -> None:
    path = tmp_path / "h.json"
    path.write_text("{broken")

    assert ActionHistory(path).load() == []
    assert ActionHistory(tmp_path / "missing.json").load() == []


def test_in_memory_history_and_clear(tmp_path) -> None:
    history = ActionHistory(None)
    history.append(record(1))
    history.clear()

    assert history.pop() is None
    assert list(tmp_path.iterdir()) == []
