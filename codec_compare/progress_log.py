"""Completed-task log.

Each successful task appends one line to a text file as soon as it finishes,
so an interrupted run can be resumed without redoing finished work.
"""

from pathlib import Path
from typing import TextIO

from codec_compare.task import TaskOutput


def load_completed_tasks(
    path: str | Path | None,
    discard_distortion_values: bool = False,
    quiet: bool = True,
) -> list[TaskOutput]:
    """Read all entries of a completed-task log.

    Args:
        path: Log file path; a missing or empty path yields no entry
        discard_distortion_values: Parse timings only, distortions become zero
        quiet: Do not print how many entries were loaded

    Returns:
        Entries in file order

    Raises:
        CompletedTaskLogError: If a line cannot be parsed
    """
    if not path:
        return []
    path = Path(path)
    if not path.exists():
        return []

    if discard_distortion_values:
        parse = TaskOutput.unserialize_no_distortion
    else:
        parse = TaskOutput.unserialize
    tasks = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n")
            if line.strip():
                tasks.append(parse(line))
    if not quiet:
        print(f"Loaded {len(tasks)} completed tasks from {path}")
    return tasks


def backup_completed_tasks(path: str | Path) -> Path:
    """Rename a log to ``<path>.bck`` and return the backup path."""
    path = Path(path)
    backup_path = path.with_name(path.name + ".bck")
    path.rename(backup_path)
    return backup_path


def rewrite_completed_tasks(path: str | Path, tasks: list[TaskOutput]) -> None:
    """Replace the content of a log with the given entries."""
    with open(path, "w", encoding="utf-8") as f:
        for task in tasks:
            f.write(task.serialize() + "\n")


class CompletedTaskLog:
    """Append-only handle on a completed-task log.

    Usable as a context manager. Every appended line is flushed so that a
    killed process loses at most the tasks that were still running.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._file: TextIO | None = None

    def open(self) -> "CompletedTaskLog":
        if self.path.parent != Path():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        return self

    def append(self, task: TaskOutput) -> None:
        self.append_line(task.serialize())

    def append_line(self, line: str) -> None:
        if self._file is None:
            msg = f"{self.path} is not open"
            raise ValueError(msg)
        self._file.write(line + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "CompletedTaskLog":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()
