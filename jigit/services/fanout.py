"""Run independent tasks concurrently, join all, report the first failure.

The join always waits for every task, even after one has failed, so no
task outlives the call. There is no cancellation between tasks.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, List, Sequence

Task = Callable[[], Any]


class _FirstError:
    """Single slot holding the earliest exception raised by any task."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.error: BaseException | None = None

    def offer(self, error: BaseException) -> None:
        with self._lock:
            if self.error is None:
                self.error = error


def run_all(tasks: Sequence[Task], max_workers: int | None = None) -> List[Any]:
    """Run tasks on separate threads and return their results in task order.

    If any task raises, the exception of the first task to fail (in time)
    is re-raised after all tasks have finished.
    """
    if not tasks:
        return []
    slot = _FirstError()

    def guarded(task: Task) -> Any:
        try:
            return task()
        except BaseException as e:
            slot.offer(e)
            raise

    with ThreadPoolExecutor(max_workers=max_workers or len(tasks)) as pool:
        futures = [pool.submit(guarded, task) for task in tasks]
        wait(futures)

    if slot.error is not None:
        raise slot.error
    return [f.result() for f in futures]
