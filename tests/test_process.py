import asyncio

import pytest

from tiller.process import read_stream, run_command


@pytest.mark.asyncio
async def test_multibyte_character_split_across_reads() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"a" * 1023 + b"\xc3")
    reader.feed_data(b"\xa9")
    reader.feed_eof()
    parts: list[str] = []

    await read_stream(reader, "stdout", parts.append)

    text = "".join(parts)
    assert text == "a" * 1023 + "é"
    assert "�" not in text


@pytest.mark.asyncio
async def test_failing_output_callback_does_not_stop_reading() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"hello")
    reader.feed_eof()
    parts: list[str] = []

    def explode(stream: str, text: str) -> None:
        raise RuntimeError("listener gone")

    await read_stream(reader, "stdout", parts.append, explode)

    assert parts == ["hello"]


@pytest.mark.asyncio
async def test_input_is_delivered_and_output_collected(tmp_path) -> None:
    result = await run_command("cat", timeout_s=5, input_text="from stdin", cwd=str(tmp_path))

    assert result.exit_code == 0
    assert result.stdout == "from stdin"
    assert not result.timed_out


@pytest.mark.asyncio
async def test_deadline_covers_unread_stdin(tmp_path) -> None:
    loop = asyncio.get_running_loop()
    started = loop.time()

    result = await run_command("sleep 4", timeout_s=0.3, grace_s=0.2, input_text="x" * 300_000, cwd=str(tmp_path))

    assert result.timed_out
    assert loop.time() - started < 3
