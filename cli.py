import argparse
import io
import sys
import traceback

import colorama
from colorama import Back, Fore, Style

from compiler import compile_source
from debugger import Debugger
from errors import BFError, CancellationError, CompilationError, WriteSymbolError
from vm import VM

CLEAR_SCREEN = "\x1b[2J\x1b[H"


def load_program(path):
    if path is None:
        return compile_source(sys.stdin.buffer)
    try:
        f = open(path, "rb")
    except OSError as e:
        raise CompilationError(f"cannot open {path}", cause=e)
    with f:
        return compile_source(f)


def open_output(path):
    if path is None:
        return sys.stdout.buffer
    try:
        return open(path, "wb")
    except OSError as e:
        raise WriteSymbolError(f"cannot open {path}", cause=e)


def close_output(out, path):
    out.flush()
    if path is not None:
        out.close()


def cmd_dump(program):
    print("INSTRUCTIONS:")
    for i, ins in enumerate(program):
        dbg = program.location(i) or {}
        loc = f"{dbg.get('line', '?')}:{dbg.get('column', '?')}"
        print(f"  {i:04d}  {str(ins):<10}  {loc}")


def cmd_run(program, output_path=None, timeout=None, trace=False):
    out = open_output(output_path)
    try:
        vm = VM(program, None, out)
        vm.trace_enabled = trace
        vm.run(timeout=timeout)
    finally:
        close_output(out, output_path)


# -------- debug view --------
def render(snapshot, program, output: bytes, status: str | None = None) -> str:
    code = []
    for i, ins in enumerate(program):
        if i == snapshot.ip:
            code.append(f" |{Fore.RED}{ins.symbol}{Style.RESET_ALL}| ")
        else:
            code.append(ins.symbol)
    if snapshot.ip >= len(program):
        code.append(f" |{Fore.RED}<end>{Style.RESET_ALL}|")

    lines = ["".join(code), "", "CELLS:", ""]
    for i, value in enumerate(snapshot.tape):
        cell = f"[{i + 1}]: {value}"
        if i == snapshot.pointer:
            cell = f"{Back.BLUE}{Fore.BLACK}{cell}{Style.RESET_ALL}"
        lines.append(cell)

    lines.append("")
    lines.append("OUTPUT:")
    lines.append(output.decode("utf-8", errors="replace"))
    lines.append("")
    lines.append(f"step {snapshot.steps}  ip={snapshot.ip:04d}  ptr={snapshot.pointer}")
    if status:
        lines.append(status)
    return "\n".join(lines)


def cmd_debug(program, output_path=None, timeout=None, trace=False, controls=None, screen=None):
    # step commands and ',' input must come from the same binary buffer
    if controls is None:
        controls = sys.stdin.buffer
    if screen is None:
        screen = sys.stdout
    colorama.just_fix_windows_console()

    # program output is shown inside the view and copied to the real output at the end
    captured = io.BytesIO()
    vm = VM(program, None, captured)
    vm.trace_enabled = trace
    dbg = Debugger(vm, timeout=timeout)
    snap = dbg.snapshot()

    try:
        while not dbg.finished:
            screen.write(CLEAR_SCREEN + render(snap, program, captured.getvalue()))
            screen.write("\n[enter] step  [c] continue  [q] quit\n")
            screen.flush()

            command = controls.readline()
            if isinstance(command, bytes):
                command = command.decode("utf-8", errors="replace")
            command = command.strip().lower() if command else "q"
            if command == "q":
                dbg.cancel()
                raise CancellationError("stopped from debugger", ip=snap.ip)

            try:
                if command == "c":
                    snap = dbg.run_to_end()
                else:
                    snap = dbg.advance()
            except BFError as e:
                screen.write(CLEAR_SCREEN + render(dbg.snapshot(), program, captured.getvalue(), status=f"failed: {e}"))
                screen.write("\n")
                raise

        screen.write(CLEAR_SCREEN + render(snap, program, captured.getvalue(), status="finished"))
        screen.write("\n")
    finally:
        screen.flush()
        out = open_output(output_path)
        try:
            out.write(captured.getvalue())
        finally:
            close_output(out, output_path)


# -------- REPL --------
class PromptReader:
    """Input stream for ',' inside the REPL: asks for a line whenever it runs dry."""

    def __init__(self, prompt="input> "):
        self.prompt = prompt
        self.buffer = b""

    def read(self, size=1):
        if not self.buffer:
            try:
                line = input(self.prompt)
            except EOFError:
                return b""
            self.buffer = line.encode("utf-8") + b"\n"
        data, self.buffer = self.buffer[:size], self.buffer[size:]
        return data


def _count_brackets_delta(line: str) -> int:
    return line.count("[") - line.count("]")


def format_tape(tape, pointer) -> str:
    return f"tape: {list(tape)}  ptr={pointer}"


def cmd_repl(timeout=None, trace=False, show_traceback=False):
    tape = bytearray(1)
    ptr = 0
    reader = PromptReader()

    print("bfvm REPL. Type :q to quit, :tape to show memory, :reset to clear it.")

    buffer_lines = []
    depth = 0
    while True:
        prompt = "bf> " if not buffer_lines else "...> "
        try:
            line = input(prompt)
        except (EOFError, KeyboardInterrupt):
            print()
            break

        stripped = line.strip()
        if not buffer_lines:
            if stripped in (":q", ":quit", "quit", "exit"):
                break
            if stripped == ":tape":
                print(format_tape(tape, ptr))
                continue
            if stripped == ":reset":
                tape = bytearray(1)
                ptr = 0
                continue
            if not stripped:
                continue

        buffer_lines.append(line)
        depth += _count_brackets_delta(line)

        # Wait for the loop to close before running.
        if depth > 0:
            continue

        source = "\n".join(buffer_lines) + "\n"
        buffer_lines = []
        depth = 0

        out = io.BytesIO()
        try:
            program = compile_source(source)
            vm = VM(program, reader, out, tape=tape, pointer=ptr)
            vm.trace_enabled = trace
            try:
                vm.run(timeout=timeout)
            finally:
                tape = bytearray(vm.tape_snapshot())
                ptr = vm.current_pointer()
        except BFError as e:
            if show_traceback:
                traceback.print_exc()
            else:
                print(str(e))
        finally:
            text = out.getvalue().decode("utf-8", errors="replace")
            if text:
                sys.stdout.write(text)
                if not text.endswith("\n"):
                    sys.stdout.write("\n")
                sys.stdout.flush()


def build_arg_parser():
    p = argparse.ArgumentParser(prog="bfvm", description="Run tape-machine (brainfuck) programs")
    p.add_argument("--input", "-in", "-if", dest="input", metavar="PATH",
                   help="Source file (default: standard input)")
    p.add_argument("--output", "-out", "-of", dest="output", metavar="PATH",
                   help="Where program output goes (default: standard output)")
    p.add_argument("--debug", "-dbg", "-d", action="store_true",
                   help="Step through the program one instruction at a time")
    p.add_argument("--dump", action="store_true", help="Print the compiled program instead of running it")
    p.add_argument("--trace", action="store_true", help="Print every executed instruction to stderr")
    p.add_argument("--timeout", type=float, metavar="SECONDS", help="Cancel the run after this many seconds")
    p.add_argument("--repl", action="store_true", help="Start an interactive shell sharing one tape")
    p.add_argument("--traceback", action="store_true", help="Show the Python traceback on errors")
    return p


def main(argv=None):
    args = build_arg_parser().parse_args(argv)

    if args.repl:
        cmd_repl(timeout=args.timeout, trace=args.trace, show_traceback=args.traceback)
        return

    try:
        program = load_program(args.input)
        if args.dump:
            cmd_dump(program)
        elif args.debug:
            cmd_debug(program, output_path=args.output, timeout=args.timeout, trace=args.trace)
        else:
            cmd_run(program, output_path=args.output, timeout=args.timeout, trace=args.trace)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        if args.traceback:
            traceback.print_exc()
        else:
            print(str(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
