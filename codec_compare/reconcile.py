"""Subtraction of already completed tasks from the planned ones."""

from codec_compare.errors import ConfigurationDriftError
from codec_compare.task import TaskInput, TaskOutput


def remove_completed_tasks(
    completed_tasks: list[TaskOutput],
    planned_tasks: list[TaskInput],
    completed_tasks_file_path: str = "",
) -> list[TaskInput]:
    """Return the planned tasks that still have to run.

    Each completed task removes exactly one planned task with the same
    identity, so repetitions are accounted for individually. Both lists are
    sorted by task identity and walked once.

    Args:
        completed_tasks: Entries loaded from the completed-task log
        planned_tasks: Output of :func:`~codec_compare.task.plan_tasks`
        completed_tasks_file_path: Log path, only used in error messages

    Returns:
        Remaining tasks, sorted by identity

    Raises:
        ConfigurationDriftError: If there are more completed tasks than
            planned ones, or if a completed task was not planned
    """
    if len(completed_tasks) > len(planned_tasks):
        msg = (
            f"There are {len(completed_tasks)} tasks in {completed_tasks_file_path} "
            f"but only {len(planned_tasks)} were planned according to input flags"
        )
        raise ConfigurationDriftError(msg)

    completed = sorted(completed_tasks, key=lambda task: task.task_input)
    planned = sorted(planned_tasks)

    remaining = []
    cursor = 0
    for task in completed:
        while cursor < len(planned) and planned[cursor] < task.task_input:
            remaining.append(planned[cursor])
            cursor += 1
        if cursor == len(planned) or planned[cursor] != task.task_input:
            msg = (
                f"The following from {completed_tasks_file_path} does not match "
                f"the input flags: {task.serialize()}"
            )
            raise ConfigurationDriftError(msg)
        cursor += 1
    remaining.extend(planned[cursor:])
    return remaining
