import time
from enum import Enum

from errors import CancellationError


class StepState(Enum):
    RUNNING = "running"
    WAITING_FOR_STEP = "waiting for step"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL = (StepState.COMPLETED, StepState.FAILED, StepState.CANCELLED)


class Debugger:
    """Drives a VM one instruction per advance() call.

    Every call returns a fresh Snapshot, so a renderer never touches the
    live tape. A failed step is kept on .error and re-raised to the caller.
    """

    def __init__(self, vm, timeout: float | None = None):
        self.vm = vm
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.error = None
        if vm.iterator().has_next():
            self.state = StepState.WAITING_FOR_STEP
        else:
            self.state = StepState.COMPLETED

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL

    def snapshot(self):
        return self.vm.snapshot()

    def advance(self):
        if self.state != StepState.WAITING_FOR_STEP:
            raise RuntimeError(f"cannot step: debugger is {self.state.value}")

        if self.deadline is not None and time.monotonic() >= self.deadline:
            _, ip = self.vm.current_instruction()
            self.cancel()
            self.error = CancellationError("deadline exceeded", ip=ip)
            raise self.error

        self.state = StepState.RUNNING
        try:
            self.vm.step()
        except CancellationError as e:
            self.state = StepState.CANCELLED
            self.error = e
            raise
        except Exception as e:
            self.state = StepState.FAILED
            self.error = e
            raise

        if self.vm.iterator().has_next():
            self.state = StepState.WAITING_FOR_STEP
        else:
            self.state = StepState.COMPLETED
        return self.vm.snapshot()

    def run_to_end(self):
        while self.state == StepState.WAITING_FOR_STEP:
            self.advance()
        return self.vm.snapshot()

    def cancel(self):
        if self.finished:
            return
        self.vm.cancel()
        self.state = StepState.CANCELLED
