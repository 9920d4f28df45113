"""Tests for the completed-task log file."""

from pathlib import Path

import pytest
from conftest import make_output

from codec_compare.base import NUM_DISTORTION_METRICS
from codec_compare.errors import CompletedTaskLogError
from codec_compare.progress_log import (
    CompletedTaskLog,
    backup_completed_tasks,
    load_completed_tasks,
    rewrite_completed_tasks,
)
from codec_compare.task import CodecSettings, TaskInput


class TestLoadCompletedTasks:
    """Tests for reading the log."""

    def test_empty_path(self) -> None:
        assert load_completed_tasks("") == []
        assert load_completed_tasks(None) == []

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_completed_tasks(tmp_path / "missing.csv") == []

    def test_skips_blank_lines(self, tmp_path: Path, webp_lossy: CodecSettings) -> None:
        output = make_output(TaskInput(webp_lossy, "a.png"))
        path = tmp_path / "progress.csv"
        path.write_text(f"\n{output.serialize()}\n  \n{output.serialize()}\n")
        assert load_completed_tasks(path) == [output, output]

    def test_bad_line(self, tmp_path: Path) -> None:
        path = tmp_path / "progress.csv"
        path.write_text("not a task\n")
        with pytest.raises(CompletedTaskLogError):
            load_completed_tasks(path)

    def test_discard_distortion_values(
        self, tmp_path: Path, webp_lossy: CodecSettings
    ) -> None:
        output = make_output(TaskInput(webp_lossy, "a.png"))
        path = tmp_path / "progress.csv"
        path.write_text(output.serialize() + "\n")
        (loaded,) = load_completed_tasks(path, discard_distortion_values=True)
        assert loaded.distortions == (0.0,) * NUM_DISTORTION_METRICS
        assert loaded.task_input == output.task_input

    def test_prints_count_unless_quiet(
        self, tmp_path: Path, webp_lossy: CodecSettings, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "progress.csv"
        path.write_text(make_output(TaskInput(webp_lossy, "a.png")).serialize() + "\n")
        load_completed_tasks(path)
        assert capsys.readouterr().out == ""
        load_completed_tasks(path, quiet=False)
        assert "Loaded 1 completed tasks" in capsys.readouterr().out


class TestCompletedTaskLog:
    """Tests for appending to the log."""

    def test_append_and_reload(self, tmp_path: Path, webp_lossy: CodecSettings) -> None:
        outputs = [make_output(TaskInput(webp_lossy, f"{i}.png")) for i in range(3)]
        path = tmp_path / "sub" / "progress.csv"
        with CompletedTaskLog(path) as log:
            for output in outputs:
                log.append(output)
        assert load_completed_tasks(path) == outputs

    def test_appends_to_existing_file(
        self, tmp_path: Path, webp_lossless: CodecSettings
    ) -> None:
        first = make_output(TaskInput(webp_lossless, "a.png"))
        second = make_output(TaskInput(webp_lossless, "b.png"))
        path = tmp_path / "progress.csv"
        with CompletedTaskLog(path) as log:
            log.append(first)
        with CompletedTaskLog(path) as log:
            log.append(second)
        assert load_completed_tasks(path) == [first, second]

    def test_lines_are_flushed(self, tmp_path: Path, webp_lossless: CodecSettings) -> None:
        output = make_output(TaskInput(webp_lossless, "a.png"))
        path = tmp_path / "progress.csv"
        log = CompletedTaskLog(path).open()
        try:
            log.append(output)
            assert path.read_text() == output.serialize() + "\n"
        finally:
            log.close()

    def test_append_when_closed(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="is not open"):
            CompletedTaskLog(tmp_path / "progress.csv").append_line("x")


class TestRewrite:
    """Tests for backing up and rewriting the log."""

    def test_backup(self, tmp_path: Path) -> None:
        path = tmp_path / "progress.csv"
        path.write_text("content\n")
        backup = backup_completed_tasks(path)
        assert backup == tmp_path / "progress.csv.bck"
        assert backup.read_text() == "content\n"
        assert not path.exists()

    def test_rewrite(self, tmp_path: Path, webp_lossy: CodecSettings) -> None:
        outputs = [make_output(TaskInput(webp_lossy, f"{i}.png")) for i in range(2)]
        path = tmp_path / "progress.csv"
        path.write_text("stale\n")
        rewrite_completed_tasks(path, outputs)
        assert load_completed_tasks(path) == outputs
