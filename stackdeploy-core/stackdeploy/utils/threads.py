import logging
import threading
from concurrent.futures import Future
from typing import Callable, Optional

LOG = logging.getLogger(__name__)

counter_lock = threading.Lock()
counter = 0


class FuncThread(threading.Thread):
    """
    Runs a function in a background thread until it returns or ``stop()`` is called.

    The function is called as ``func(params, _thread=<this thread>)`` and is expected to check
    ``_thread.wait_stopped(...)`` between units of work. Its result (or exception) ends up in
    ``result_future``.
    """

    def __init__(
        self,
        func: Callable,
        params=None,
        name: Optional[str] = None,
        daemon=True,
    ):
        global counter

        if name:
            with counter_lock:
                counter += 1
                thread_counter_current = counter
            threading.Thread.__init__(
                self, name=f"{name}-functhread{thread_counter_current}", daemon=daemon
            )
        else:
            threading.Thread.__init__(self, daemon=daemon)

        self.params = params
        self.func = func
        self.result_future = Future()
        self._stop_event = threading.Event()

    def run(self):
        try:
            self.result_future.set_result(self.func(self.params, _thread=self))
        except Exception as e:
            LOG.debug("Thread %s failed: %s", self.name, e, exc_info=LOG.isEnabledFor(logging.DEBUG))
            self.result_future.set_exception(e)

    @property
    def running(self):
        return not self._stop_event.is_set()

    def wait_stopped(self, timeout: float = None) -> bool:
        """Blocks until ``stop()`` was called or the timeout elapsed, returns whether the thread was stopped."""
        return self._stop_event.wait(timeout)

    def stop(self) -> None:
        self._stop_event.set()


def start_worker_thread(method, *args, **kwargs) -> FuncThread:
    """Start the given method in a background thread."""
    kwargs.setdefault("name", method.__name__)
    thread = FuncThread(method, *args, **kwargs)
    thread.start()
    return thread
