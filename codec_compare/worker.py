"""Generic pool of threads draining a shared queue of tasks.

Workers share one context object. The pool serializes every access to it
with a single lock: a worker takes the lock to pick a task
(:meth:`Worker.assign_task`) and to record its outcome
(:meth:`Worker.end_task`), but runs the task itself (:meth:`Worker.do_task`)
without holding it, so long encodings run in parallel.
"""

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

ContextT = TypeVar("ContextT")


class Worker(Generic[ContextT]):
    """One worker of a :class:`WorkerPool`.

    Subclasses keep the task being processed in their own attributes.
    """

    def __init__(self, worker_id: int) -> None:
        self.worker_id = worker_id

    def assign_task(self, context: ContextT) -> bool:
        """Pick the next task from the context. Called with the lock held.

        Returns:
            False if there is nothing left to do, which stops this worker
        """
        raise NotImplementedError

    def do_task(self) -> None:
        """Process the assigned task. Called without the lock."""
        raise NotImplementedError

    def end_task(self, context: ContextT) -> None:
        """Record the outcome of the task into the context. Called with the lock held."""


class WorkerPool(Generic[ContextT]):
    """Runs ``num_workers`` workers until none of them gets a task.

    Worker ``num_workers - 1`` runs on the calling thread, the others on
    threads started by :meth:`run`. With one worker no thread is created;
    with zero workers nothing runs.
    """

    def __init__(
        self,
        num_workers: int,
        worker_factory: Callable[[int], Worker[ContextT]],
    ) -> None:
        if num_workers < 0:
            msg = f"Invalid number of workers: {num_workers}"
            raise ValueError(msg)
        self.workers = [worker_factory(worker_id) for worker_id in range(num_workers)]
        self._lock = threading.Lock()
        self._errors: list[BaseException] = []

    def run(self, context: ContextT) -> None:
        """Run all workers to completion.

        Raises:
            Exception: The first unexpected exception raised by a worker
                running on an extra thread, once every thread is joined
        """
        self._errors = []
        threads = []
        for worker in self.workers[:-1]:
            thread = threading.Thread(
                target=self._run_in_thread,
                args=(worker, context),
                name=f"worker-{worker.worker_id}",
            )
            thread.start()
            threads.append(thread)

        try:
            if self.workers:
                self._run_worker(self.workers[-1], context)
        finally:
            for thread in threads:
                thread.join()

        if self._errors:
            raise self._errors[0]

    def _run_in_thread(self, worker: Worker[ContextT], context: ContextT) -> None:
        try:
            self._run_worker(worker, context)
        except Exception as e:
            with self._lock:
                self._errors.append(e)

    def _run_worker(self, worker: Worker[ContextT], context: ContextT) -> None:
        while True:
            with self._lock:
                if not worker.assign_task(context):
                    return
            worker.do_task()
            with self._lock:
                worker.end_task(context)
