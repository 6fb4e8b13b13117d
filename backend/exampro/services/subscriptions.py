from typing import Callable, List


class Subscription:
    """
    Handle returned by every "start listening" call.

    `release()` detaches the listener and is safe to call more than once.
    Usable as a context manager so it can be pushed onto an ExitStack.
    """

    def __init__(self, listeners: List[Callable], listener: Callable):
        self._listeners = listeners
        self._listener = listener
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._listeners.remove(self._listener)
        except ValueError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def subscribe(listeners: List[Callable], listener: Callable) -> Subscription:
    listeners.append(listener)
    return Subscription(listeners, listener)
