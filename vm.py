import queue
import sys
import threading
import time
from typing import NamedTuple

from bytecode import (
    BytecodeProgram, Instruction,
    MOVE_RIGHT, MOVE_LEFT, INCREMENT, DECREMENT, LOOP_START, LOOP_END, OUTPUT, INPUT,
)
from errors import (
    CancellationError,
    PointerUnderflowError,
    ReadSymbolError,
    WriteSymbolError,
)

READY = "READY"
RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
CANCELLED = "CANCELLED"

TERMINAL_STATES = (COMPLETED, FAILED, CANCELLED)


class Snapshot(NamedTuple):
    tape: bytes
    pointer: int
    ip: int
    instruction: Instruction | None  # next instruction to execute, None past the end
    steps: int
    state: str = RUNNING
    error: Exception | None = None  # set on the final snapshot of a failed or cancelled run


class LinearIterator:
    """Default traversal: hands out program[ip] and moves ip one forward.

    Loop instructions overwrite vm.ip while they execute, which takes
    precedence over the advance done here.
    """

    def __init__(self, vm):
        self.vm = vm

    def has_next(self) -> bool:
        return self.vm.ip < len(self.vm.program)

    def next(self):
        index = self.vm.ip
        instruction = self.vm.program[index]
        self.vm.jump(index + 1)
        return instruction, index


class GatedIterator(LinearIterator):
    """Traversal that waits for one token on step_gate before every instruction.

    When a snapshots queue is given, the state about to be stepped is pushed
    to it first so an observer never has to read the live tape.
    """

    def __init__(self, vm, step_gate, snapshots=None):
        super().__init__(vm)
        self.step_gate = step_gate
        self.snapshots = snapshots

    def wait(self):
        while True:
            self.vm.check_cancelled()
            try:
                self.step_gate.get(timeout=self.vm.gate_poll_interval)
                return
            except queue.Empty:
                continue

    def next(self):
        if self.snapshots is not None:
            self.snapshots.put(self.vm.snapshot())
        self.wait()
        return super().next()


class VM:
    def __init__(self, program: BytecodeProgram, in_stream=None, out_stream=None, tape=None, pointer: int = 0):
        self.program = program
        self.tape = bytearray(tape) if tape else bytearray(1)
        if pointer < 0 or pointer >= len(self.tape):
            raise ValueError(f"pointer {pointer} is outside the tape (length {len(self.tape)})")

        self.ptr = pointer   # cell pointer
        self.ip = 0          # instruction pointer (where we are)
        self.steps = 0       # instructions executed so far

        # binary streams; None means the process stdin/stdout
        self.in_stream = in_stream
        self.out_stream = out_stream

        self.it = LinearIterator(self)
        self.state = READY

        self.trace_enabled = False
        self.gate_poll_interval = 0.05

        self._deadline = None
        self._cancel = None
        self._cancel_requested = threading.Event()

    # -------- accessors --------
    def current_pointer(self) -> int:
        return self.ptr

    def current_cell_value(self) -> int:
        return self.tape[self.ptr]

    def tape_snapshot(self) -> bytes:
        return bytes(self.tape)

    def current_instruction(self):
        if 0 <= self.ip < len(self.program):
            return self.program[self.ip], self.ip
        return None, self.ip

    def full_program(self) -> BytecodeProgram:
        return self.program

    def snapshot(self, error=None) -> Snapshot:
        instruction, ip = self.current_instruction()
        return Snapshot(self.tape_snapshot(), self.ptr, ip, instruction, self.steps, self.state, error)

    def iterator(self):
        return self.it

    def iterate_by(self, it):
        self.it = it

    def jump(self, index: int):
        self.ip = index

    # -------- I/O --------
    def read_symbol(self, index: int):
        stream = self.in_stream if self.in_stream is not None else sys.stdin.buffer
        try:
            data = stream.read(1)
        except (OSError, ValueError) as e:
            raise ReadSymbolError(cause=e, ip=index)
        if not data:
            raise ReadSymbolError(cause=EOFError("end of input"), ip=index)
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.tape[self.ptr] = data[0]

    def write_symbol(self, index: int):
        stream = self.out_stream if self.out_stream is not None else sys.stdout.buffer
        try:
            stream.write(bytes((self.tape[self.ptr],)))
        except (OSError, ValueError) as e:
            raise WriteSymbolError(cause=e, ip=index)

    # -------- execution --------
    def execute(self, instruction: Instruction, index: int):
        opcode, arg = instruction

        if opcode == MOVE_RIGHT:
            self.ptr += 1
            if self.ptr == len(self.tape):
                self.tape.append(0)
            return

        if opcode == MOVE_LEFT:
            if self.ptr == 0:
                raise PointerUnderflowError(ip=index)
            self.ptr -= 1
            return

        if opcode == INCREMENT:
            self.tape[self.ptr] = (self.tape[self.ptr] + 1) % 256
            return

        if opcode == DECREMENT:
            self.tape[self.ptr] = (self.tape[self.ptr] - 1) % 256
            return

        if opcode == LOOP_START:
            if self.tape[self.ptr] == 0:
                self.jump(arg)
            return

        if opcode == LOOP_END:
            if self.tape[self.ptr] != 0:
                self.jump(arg)
            return

        if opcode == OUTPUT:
            self.write_symbol(index)
            return

        if opcode == INPUT:
            self.read_symbol(index)
            return

        raise Exception(f"Unknown opcode: {opcode}")

    def check_cancelled(self):
        if self._cancel_requested.is_set() or (self._cancel is not None and self._cancel.is_set()):
            raise CancellationError("cancelled", ip=self.ip)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise CancellationError("deadline exceeded", ip=self.ip)

    def cancel(self):
        """Ask the run to stop; safe to call from another thread.

        The next instruction (or the step gate wait) raises CancellationError.
        """
        self._cancel_requested.set()

    def step(self):
        """Execute exactly one instruction through the current traversal strategy."""
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"VM is {self.state}; compile again and build a new VM to rerun")
        if not self.it.has_next():
            self.state = COMPLETED
            return
        self.state = RUNNING

        try:
            self.check_cancelled()
            instruction, index = self.it.next()
            if self.trace_enabled:
                print(
                    f"TRACE ip={index:04d} {instruction.symbol} ptr={self.ptr} cell={self.tape[self.ptr]}",
                    file=sys.stderr,
                )
            self.execute(instruction, index)
        except CancellationError:
            self.state = CANCELLED
            raise
        except Exception:
            self.state = FAILED
            raise

        self.steps += 1
        if not self.it.has_next():
            self.state = COMPLETED

    def run(self, timeout: float | None = None, cancel=None, step_gate=None, snapshots=None):
        """Run until the program is exhausted.

        timeout is in seconds; cancel is a threading.Event. Both are checked
        before every instruction and end the run with CancellationError.
        step_gate (a queue.Queue) switches to single-stepping: one token
        releases one instruction.
        """
        if self.state != READY:
            raise RuntimeError(f"VM is {self.state}; compile again and build a new VM to rerun")

        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancel = cancel
        if step_gate is not None:
            self.iterate_by(GatedIterator(self, step_gate, snapshots))

        try:
            while self.it.has_next():
                self.step()
            self.state = COMPLETED
        except Exception as e:
            if snapshots is not None:
                snapshots.put(self.snapshot(error=e))
            raise

        # final state for observers waiting on the snapshot queue
        if snapshots is not None:
            snapshots.put(self.snapshot())
