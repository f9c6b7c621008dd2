from bytecode import BytecodeProgram, OPCODES, LOOP_START, LOOP_END
from errors import CompilationError
from lexer import Lexer


def read_source(source) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, str):
        return source.encode("utf-8")
    try:
        data = source.read()
    except OSError as e:
        raise CompilationError(cause=e)
    if isinstance(data, str):
        data = data.encode("utf-8")
    return data


class Compiler:
    def __init__(self):
        self.bc = BytecodeProgram()
        self.loop_stack = []  # indices of LOOP_START instructions still waiting for their ']'

    def emit(self, opcode, arg=None, tok=None):
        dbg = None
        if tok is not None:
            dbg = {"line": tok.line, "column": tok.column}
        return self.bc.emit(opcode, arg, debug=dbg)

    def compile(self, source):
        lexer = Lexer(read_source(source))

        for tok in lexer.tokens():
            if tok.type == "EOF":
                break

            opcode = OPCODES[tok.type]
            if opcode == LOOP_START:
                self.loop_stack.append(len(self.bc))
                self.emit(LOOP_START, None, tok)
            elif opcode == LOOP_END:
                if not self.loop_stack:
                    raise CompilationError(f"unmatched ']' at line {tok.line}, col {tok.column}")
                start = self.loop_stack.pop()
                end = self.emit(LOOP_END, start, tok)
                self.bc.patch(start, end)
            else:
                self.emit(opcode, None, tok)

        if self.loop_stack:
            dbg = self.bc.location(self.loop_stack[-1])
            raise CompilationError(f"unclosed '[' at line {dbg['line']}, col {dbg['column']}")

        return self.bc.freeze()


def compile_source(source):
    return Compiler().compile(source)
