from typing import NamedTuple

MOVE_RIGHT = "MOVE_RIGHT"
MOVE_LEFT = "MOVE_LEFT"
INCREMENT = "INCREMENT"
DECREMENT = "DECREMENT"
LOOP_START = "LOOP_START"
LOOP_END = "LOOP_END"
OUTPUT = "OUTPUT"
INPUT = "INPUT"

# source symbol -> opcode
OPCODES = {
    ">": MOVE_RIGHT,
    "<": MOVE_LEFT,
    "+": INCREMENT,
    "-": DECREMENT,
    "[": LOOP_START,
    "]": LOOP_END,
    ".": OUTPUT,
    ",": INPUT,
}
SYMBOLS = {opcode: symbol for symbol, opcode in OPCODES.items()}


class Instruction(NamedTuple):
    opcode: str
    arg: int | None = None  # jump target for LOOP_START / LOOP_END

    @property
    def symbol(self) -> str:
        return SYMBOLS[self.opcode]

    @property
    def end_index(self) -> int | None:
        if self.opcode != LOOP_START:
            raise AttributeError(f"{self.opcode} has no end_index")
        return self.arg

    @property
    def start_index(self) -> int | None:
        if self.opcode != LOOP_END:
            raise AttributeError(f"{self.opcode} has no start_index")
        return self.arg

    def __str__(self):
        if self.arg is None:
            return self.symbol
        return f"{self.symbol} -> {self.arg}"


class BytecodeProgram:
    def __init__(self):
        self.instructions = []   # list of Instruction
        self.debug = []          # list of debug dicts ({"line": int, "column": int}) aligned with instructions
        self.frozen = False

    def emit(self, opcode, arg=None, debug=None):
        # returns instruction index (useful for jumps)
        if self.frozen:
            raise RuntimeError("program is frozen")
        self.instructions.append(Instruction(opcode, arg))
        self.debug.append(debug)
        return len(self.instructions) - 1

    def patch(self, index, arg):
        if self.frozen:
            raise RuntimeError("program is frozen")
        opcode, _ = self.instructions[index]
        self.instructions[index] = Instruction(opcode, arg)

    def freeze(self):
        self.instructions = tuple(self.instructions)
        self.debug = tuple(self.debug)
        self.frozen = True
        return self

    def location(self, index):
        if index < 0 or index >= len(self.debug):
            return None
        return self.debug[index]

    def source_text(self) -> str:
        return "".join(ins.symbol for ins in self.instructions)

    def __len__(self):
        return len(self.instructions)

    def __getitem__(self, index):
        return self.instructions[index]

    def __iter__(self):
        return iter(self.instructions)
