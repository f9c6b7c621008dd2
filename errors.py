from enum import Enum


class ErrorKind(Enum):
    COMPILATION = "could not compile code"
    READ_SYMBOL = "could not read symbol"
    WRITE_SYMBOL = "could not write symbol"
    CANCELLATION = "execution cancelled"
    POINTER_UNDERFLOW = "cell pointer moved left of the first cell"


class BFError(Exception):
    kind = None

    def __init__(self, message: str | None = None, cause: BaseException | None = None, ip: int | None = None):
        if self.kind is None:
            raise TypeError(f"{type(self).__name__} has no ErrorKind; raise one of its subclasses")
        super().__init__(message or self.kind.value)
        self.message = message
        self.cause = cause
        self.ip = ip  # index of the failing instruction, when known
        if cause is not None:
            self.__cause__ = cause

    def format(self) -> str:
        text = self.kind.value
        detail = self.message
        if detail is None and self.cause is not None:
            detail = str(self.cause) or type(self.cause).__name__
        if detail:
            text = f"{text}: {detail}"
        if self.ip is not None:
            text = f"{text} (ip={self.ip:04d})"
        return text

    def __str__(self) -> str:
        return self.format()


class CompilationError(BFError):
    kind = ErrorKind.COMPILATION


class ReadSymbolError(BFError):
    kind = ErrorKind.READ_SYMBOL


class WriteSymbolError(BFError):
    kind = ErrorKind.WRITE_SYMBOL


class CancellationError(BFError):
    kind = ErrorKind.CANCELLATION


class PointerUnderflowError(BFError):
    kind = ErrorKind.POINTER_UNDERFLOW
