from __future__ import annotations
import codecs
import io
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, List, Optional


class BFError(Exception):
    """Base class for interpreter errors."""

    # Filled in by the interpreter when the error stops a running program.
    step_index: Optional[int] = None
    instruction_pointer: Optional[int] = None
    pointer: Optional[int] = None
    # Set when flushing program output also failed while this error propagated.
    flush_error: Optional["BFError"] = None


class BFParseError(BFError):
    """Raised when a program cannot be compiled."""

    def __init__(self, message: str, *, position: Optional["Position"] = None, filename: Optional[str] = None) -> None:
        self.message = message
        self.position = position
        self.filename = filename
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.position is None:
            return self.message
        where = f"{self.filename}:{self.position}" if self.filename else str(self.position)
        return f"{self.message} at {where}"


class UnmatchedBracketError(BFParseError):
    def __init__(self, bracket: str, *, position: Optional["Position"] = None, filename: Optional[str] = None) -> None:
        self.bracket = bracket
        super().__init__(f"Unmatched bracket '{bracket}'", position=position, filename=filename)


class BFIOError(BFError):
    """Raised when reading the source or performing program I/O fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(frozen=True)
class Position:
    line: int = 1
    column: int = 1

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    position: Position


OPERATORS: Dict[str, str] = {
    ">": "MOVE_RIGHT",
    "<": "MOVE_LEFT",
    "+": "INCREMENT",
    "-": "DECREMENT",
    ".": "OUTPUT",
    ",": "INPUT",
    "[": "LOOP_START",
    "]": "LOOP_END",
}


class Lexer:
    """Streams operator tokens out of a binary source.

    Bytes are decoded as UTF-8 (invalid sequences are replaced) one chunk at
    a time, so arbitrarily large sources are never held in memory at once.
    Every character that is not one of the eight operators is a comment.
    The lexer is a one-shot iterator: once exhausted it stays exhausted.
    """

    def __init__(self, stream: BinaryIO, filename: str = "<stream>", chunk_size: int = 1024) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.stream = stream
        self.filename = filename
        self.chunk_size = chunk_size
        self.line = 1
        self.column = 1
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._index = 0
        self._exhausted = False

    @classmethod
    def from_text(cls, text: str, filename: str = "<string>") -> "Lexer":
        return cls(io.BytesIO(text.encode("utf-8")), filename)

    @property
    def position(self) -> Position:
        return Position(self.line, self.column)

    def __iter__(self) -> Iterator[Token]:
        return self

    def __next__(self) -> Token:
        token = self.next_token()
        if token is None:
            raise StopIteration
        return token

    def tokenize(self) -> List[Token]:
        return list(self)

    def next_token(self) -> Optional[Token]:
        operators = OPERATORS
        while True:
            if self._index >= len(self._buffer) and not self._fill():
                return None
            text = self._buffer
            n = len(text)
            while self._index < n:
                ch = text[self._index]
                kind = operators.get(ch)
                if kind is not None:
                    token = Token(kind, ch, Position(self.line, self.column))
                    self._advance(ch)
                    return token
                self._advance(ch)

    def _fill(self) -> bool:
        if self._exhausted:
            return False
        try:
            chunk = self.stream.read(self.chunk_size)
        except OSError as exc:
            raise BFIOError(f"Failed to read source: {exc}") from exc
        if chunk:
            decoded = self._decoder.decode(chunk)
        else:
            # Flush any dangling partial sequence as a replacement character.
            decoded = self._decoder.decode(b"", final=True)
            self._exhausted = True
        self._buffer = decoded
        self._index = 0
        # A chunk may end inside a multi-byte sequence and decode to nothing.
        return bool(decoded) or not self._exhausted

    def _advance(self, ch: str) -> None:
        if ch == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self._index += 1
