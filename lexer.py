OPCODE_BYTES = b"><+-.,[]"


class Token:
    def __init__(self, type, value=None, line=1, column=1):
        self.type = type
        self.value = value
        self.line = line
        self.column = column

    def __repr__(self):
        if self.value is not None:
            return f"{self.type}({self.value})"
        return f"{self.type}"


class Lexer:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0
        self.current_byte = data[0] if data else None
        self.line = 1
        self.column = 1

    def advance(self):
        # track line/column based on current_byte before moving
        if self.current_byte == 0x0A:
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.pos += 1
        if self.pos >= len(self.data):
            self.current_byte = None
        else:
            self.current_byte = self.data[self.pos]

    # anything that is not an opcode is commentary
    def skip_comment(self):
        while self.current_byte is not None and self.current_byte not in OPCODE_BYTES:
            self.advance()

    def get_next_token(self):
        self.skip_comment()
        if self.current_byte is None:
            return Token("EOF", line=self.line, column=self.column)

        tok = Token(chr(self.current_byte), self.current_byte, line=self.line, column=self.column)
        self.advance()
        return tok

    def tokens(self):
        while True:
            tok = self.get_next_token()
            yield tok
            if tok.type == "EOF":
                return
