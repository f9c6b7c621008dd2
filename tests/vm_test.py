import io
import queue
import threading
import time

import pytest

from compiler import compile_source
from errors import (
    CancellationError,
    ErrorKind,
    PointerUnderflowError,
    ReadSymbolError,
    WriteSymbolError,
)
from vm import VM, LinearIterator, READY, RUNNING, COMPLETED, FAILED, CANCELLED


def make_vm(source, data=b"", **kwargs):
    out = io.BytesIO()
    vm = VM(compile_source(source), io.BytesIO(data), out, **kwargs)
    return vm, out


def test_moves_and_increments():
    vm, _ = make_vm("+++>++")
    vm.run()
    assert vm.tape_snapshot() == bytes([3, 2])
    assert vm.current_pointer() == 1
    assert vm.state == COMPLETED


def test_loop_moves_value_to_next_cell():
    vm, _ = make_vm("+++[->+<]")
    vm.run()
    assert list(vm.tape_snapshot()) == [0, 3]


def test_input_is_echoed_to_output():
    vm, out = make_vm(",.", data=bytes([65]))
    vm.run()
    assert out.getvalue() == b"A"


def test_example_program_prints_letters():
    vm, out = make_vm("++++++++[>++++++++<-]>+.+.+.")
    vm.run()
    assert out.getvalue() == b"ABC"


def test_increment_wraps_to_zero():
    vm, _ = make_vm("+", tape=b"\xff")
    vm.run()
    assert vm.current_cell_value() == 0


def test_decrement_wraps_to_255():
    vm, _ = make_vm("-")
    vm.run()
    assert vm.current_cell_value() == 255


def test_move_right_grows_tape_one_cell_at_a_time():
    vm, _ = make_vm(">>><>")
    lengths = [len(vm.tape_snapshot())]
    while vm.iterator().has_next():
        vm.step()
        lengths.append(len(vm.tape_snapshot()))
    assert lengths == [1, 2, 3, 4, 4, 4]
    assert vm.tape_snapshot() == bytes(4)


def test_tape_snapshot_is_a_copy():
    vm, _ = make_vm("+++")
    vm.run()
    snap = bytearray(vm.tape_snapshot())
    snap[0] = 99
    assert vm.current_cell_value() == 3


def test_move_left_at_first_cell_fails():
    vm, _ = make_vm("+<")
    with pytest.raises(PointerUnderflowError) as exc:
        vm.run()
    assert exc.value.kind is ErrorKind.POINTER_UNDERFLOW
    assert exc.value.ip == 1
    assert vm.current_pointer() == 0
    assert vm.state == FAILED


def test_input_at_end_of_stream_fails():
    vm, _ = make_vm(",")
    with pytest.raises(ReadSymbolError) as exc:
        vm.run()
    assert isinstance(exc.value.cause, EOFError)
    assert str(exc.value) == "could not read symbol: end of input (ip=0000)"


class FailingWriter:
    def write(self, data):
        raise OSError("pipe closed")


def test_output_failure_keeps_cause():
    vm = VM(compile_source("+.+"), io.BytesIO(), FailingWriter())
    with pytest.raises(WriteSymbolError) as exc:
        vm.run()
    assert isinstance(exc.value.cause, OSError)
    assert exc.value.__cause__ is exc.value.cause
    # the run stops at the failing instruction
    assert vm.current_cell_value() == 1


def test_run_under_deadline_is_cancelled():
    vm, _ = make_vm("+[]")
    started = time.monotonic()
    with pytest.raises(CancellationError):
        vm.run(timeout=0.2)
    assert time.monotonic() - started < 5
    assert vm.state == CANCELLED


def test_run_with_cancel_event():
    vm, _ = make_vm("+[]")
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(CancellationError):
        vm.run(cancel=cancel)


def test_vm_runs_only_once():
    vm, _ = make_vm("+")
    assert vm.state == READY
    vm.run()
    with pytest.raises(RuntimeError):
        vm.run()
    with pytest.raises(RuntimeError):
        vm.step()


def test_empty_program_completes():
    vm, _ = make_vm("")
    vm.run()
    assert vm.state == COMPLETED
    assert vm.current_instruction() == (None, 0)


def test_seeded_tape_and_pointer():
    vm, _ = make_vm("+", tape=b"\x01\x02", pointer=1)
    vm.run()
    assert vm.tape_snapshot() == b"\x01\x03"
    with pytest.raises(ValueError):
        make_vm("+", tape=b"\x00", pointer=1)


def test_accessors_follow_execution():
    vm, _ = make_vm("+>+")
    instruction, index = vm.current_instruction()
    assert (instruction.symbol, index) == ("+", 0)
    vm.step()
    vm.step()
    instruction, index = vm.current_instruction()
    assert (instruction.symbol, index) == ("+", 2)
    assert vm.full_program().source_text() == "+>+"
    snap = vm.snapshot()
    assert (snap.tape, snap.pointer, snap.ip, snap.steps) == (b"\x01\x00", 1, 2, 2)


class RecordingIterator(LinearIterator):
    def __init__(self, vm):
        super().__init__(vm)
        self.seen = []

    def next(self):
        instruction, index = super().next()
        self.seen.append(index)
        return instruction, index


def test_custom_iterator_drives_execution():
    vm, _ = make_vm("++[-]")
    it = RecordingIterator(vm)
    vm.iterate_by(it)
    assert vm.iterator() is it
    vm.run()
    # '[' falls through twice, ']' jumps back until the cell is zero
    assert it.seen == [0, 1, 2, 3, 4, 2, 3, 4]


def test_step_gate_releases_one_instruction_per_token():
    vm, _ = make_vm("+++")
    gate = queue.Queue(maxsize=1)
    snapshots = queue.Queue()
    errors = []

    def work():
        try:
            vm.run(timeout=10, step_gate=gate, snapshots=snapshots)
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=work, daemon=True)
    t.start()

    seen = []
    for _ in range(3):
        snap = snapshots.get(timeout=5)
        seen.append((snap.steps, snap.tape))
        gate.put(None)
    final = snapshots.get(timeout=5)
    t.join(5)

    assert not errors
    assert seen == [(0, b"\x00"), (1, b"\x01"), (2, b"\x02")]
    assert (final.steps, final.tape, final.instruction) == (3, b"\x03", None)
    assert (final.state, final.error) == (COMPLETED, None)
    assert vm.state == COMPLETED


def test_step_gate_wait_honours_deadline():
    vm, _ = make_vm("+")
    vm.gate_poll_interval = 0.01
    with pytest.raises(CancellationError):
        vm.run(timeout=0.1, step_gate=queue.Queue())
    assert vm.current_cell_value() == 0


def test_trace_goes_to_stderr(capsys):
    vm, _ = make_vm("+>")
    vm.trace_enabled = True
    vm.run()
    err = capsys.readouterr().err
    assert "TRACE ip=0000 + ptr=0 cell=0" in err
    assert "TRACE ip=0001 > ptr=0 cell=1" in err


def run_in_thread(vm, **kwargs):
    errors = []

    def work():
        try:
            vm.run(**kwargs)
        except Exception as e:
            errors.append(e)

    t = threading.Thread(target=work, daemon=True)
    t.start()
    return t, errors


def test_cancel_from_another_thread_while_stepping():
    vm, _ = make_vm("+[]")
    gate = queue.Queue(maxsize=1)
    snapshots = queue.Queue()
    t, errors = run_in_thread(vm, timeout=10, step_gate=gate, snapshots=snapshots)

    snapshots.get(timeout=5)
    gate.put(None)
    snapshots.get(timeout=5)
    vm.cancel()
    gate.put(None)
    final = snapshots.get(timeout=5)
    t.join(5)

    assert len(errors) == 1
    assert isinstance(errors[0], CancellationError)
    assert final.state == CANCELLED
    assert final.error is errors[0]
    assert vm.state == CANCELLED


def test_cancel_from_another_thread_without_gate():
    vm, _ = make_vm("+[]")
    t, errors = run_in_thread(vm)
    time.sleep(0.05)
    vm.cancel()
    t.join(5)

    assert not t.is_alive()
    assert len(errors) == 1
    assert isinstance(errors[0], CancellationError)


def test_gated_failure_reaches_the_controller():
    vm, _ = make_vm("<")
    gate = queue.Queue(maxsize=1)
    snapshots = queue.Queue()
    t, errors = run_in_thread(vm, timeout=10, step_gate=gate, snapshots=snapshots)

    first = snapshots.get(timeout=5)
    gate.put(None)
    final = snapshots.get(timeout=5)
    t.join(5)

    assert first.state == RUNNING
    assert final.state == FAILED
    assert isinstance(final.error, PointerUnderflowError)
    assert errors == [final.error]


def test_step_on_empty_program_completes():
    vm, _ = make_vm("")
    vm.step()
    assert vm.state == COMPLETED
