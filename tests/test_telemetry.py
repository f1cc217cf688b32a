from pathlib import Path

from msrunner.supervisor.telemetry import FileTelemetryReader, StreamTelemetryBuffer


def test_missing_file_yields_nothing(tmp_path: Path) -> None:
    reader = FileTelemetryReader(tmp_path / "missing_log.txt")
    assert reader.read_new() is None
    assert reader.read_remaining() is None


def test_reads_only_new_complete_lines(tmp_path: Path) -> None:
    path = tmp_path / "tool_log.txt"
    path.write_text("line one\nline two\npartial", encoding="utf-8")
    reader = FileTelemetryReader(path)

    assert reader.read_new() == ("line one\nline two\n", 1)
    assert reader.read_new() is None

    with path.open("a", encoding="utf-8") as f:
        f.write(" line\nline four\n")
    assert reader.read_new() == ("partial line\nline four\n", 3)
    assert reader.next_line == 5


def test_repeated_reads_without_new_data_are_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "tool_log.txt"
    path.write_text("a\nb\n", encoding="utf-8")
    reader = FileTelemetryReader(path)
    reader.read_new()
    offset = reader.offset
    for _ in range(3):
        assert reader.read_new() is None
    assert reader.offset == offset


def test_read_remaining_includes_unterminated_line(tmp_path: Path) -> None:
    path = tmp_path / "tool_log.txt"
    path.write_text("a\nlast", encoding="utf-8")
    reader = FileTelemetryReader(path)
    assert reader.read_new() == ("a\n", 1)
    assert reader.read_remaining() == ("last", 2)
    assert reader.read_remaining() is None


def test_truncated_file_is_reread_from_start(tmp_path: Path) -> None:
    path = tmp_path / "tool_log.txt"
    path.write_text("old line 1\nold line 2\n", encoding="utf-8")
    reader = FileTelemetryReader(path)
    reader.read_new()

    path.write_text("new\n", encoding="utf-8")
    assert reader.read_new() == ("new\n", 1)
    assert reader.take_reset()
    assert reader.discarded_lines == 2
    assert not reader.take_reset()


def test_stream_buffer_numbers_lines() -> None:
    buffer = StreamTelemetryBuffer()
    assert buffer.read_new() is None
    buffer.append("first")
    buffer.append("second")
    assert buffer.read_new() == ("first\nsecond\n", 1)
    buffer.append("third")
    assert buffer.read_remaining() == ("third\n", 3)
    assert buffer.read_new() is None
