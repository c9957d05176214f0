from __future__ import annotations
import io
from collections import Counter
from dataclasses import dataclass, replace
from typing import BinaryIO, Iterable, List, Sequence, Tuple, Union

from lexer import BFParseError, Lexer, Token, UnmatchedBracketError


MOVE_RIGHT = "MOVE_RIGHT"
MOVE_LEFT = "MOVE_LEFT"
INCREMENT = "INCREMENT"
DECREMENT = "DECREMENT"
OUTPUT = "OUTPUT"
INPUT = "INPUT"
JUMP_FORWARD = "JUMP_FORWARD"
JUMP_BACKWARD = "JUMP_BACKWARD"

# Token type -> instruction op for the six run-length operators.
RUN_LENGTH_OPS = {
    "MOVE_RIGHT": MOVE_RIGHT,
    "MOVE_LEFT": MOVE_LEFT,
    "INCREMENT": INCREMENT,
    "DECREMENT": DECREMENT,
    "OUTPUT": OUTPUT,
    "INPUT": INPUT,
}

WRAPPING_OPS = frozenset({INCREMENT, DECREMENT})

# Placeholder target for a forward jump whose loop end has not been seen yet.
UNRESOLVED = -1


@dataclass(frozen=True)
class Instruction:
    op: str
    arg: int

    @property
    def is_jump(self) -> bool:
        return self.op == JUMP_FORWARD or self.op == JUMP_BACKWARD

    @property
    def operation_count(self) -> int:
        """Number of source operators this instruction stands for."""
        if self.is_jump:
            return 1
        return self.arg

    def __str__(self) -> str:
        return f"{self.op}({self.arg})"


class Compiler:
    def __init__(self, filename: str = "<stream>") -> None:
        self.filename = filename
        self.instructions: List[Instruction] = []
        self.loop_stack: List[Tuple[int, Token]] = []

    def compile(self, tokens: Iterable[Token]) -> List[Instruction]:
        self.instructions = []
        self.loop_stack = []
        for token in tokens:
            self._process(token)
        if self.loop_stack:
            # Report the outermost loop that never closed.
            _index, start_token = self.loop_stack[0]
            self._reset()
            raise UnmatchedBracketError(start_token.value, position=start_token.position, filename=self.filename)
        program = self.instructions
        self._reset()
        return program

    def _reset(self) -> None:
        self.instructions = []
        self.loop_stack = []

    def _process(self, token: Token) -> None:
        kind = token.type
        op = RUN_LENGTH_OPS.get(kind)
        if op is not None:
            self._merge(op)
            return
        if kind == "LOOP_START":
            self.loop_stack.append((len(self.instructions), token))
            self.instructions.append(Instruction(JUMP_FORWARD, UNRESOLVED))
            return
        if kind == "LOOP_END":
            self._close_loop(token)
            return
        raise BFParseError(f"Unknown token type '{kind}'", position=token.position, filename=self.filename)

    def _merge(self, op: str) -> None:
        instructions = self.instructions
        if instructions and instructions[-1].op == op:
            last = instructions[-1]
            count = last.arg + 1
            if op in WRAPPING_OPS:
                count &= 0xFF
            instructions[-1] = Instruction(op, count)
            return
        instructions.append(Instruction(op, 1))

    def _close_loop(self, token: Token) -> None:
        if not self.loop_stack:
            self._reset()
            raise UnmatchedBracketError(token.value, position=token.position, filename=self.filename)
        start, _start_token = self.loop_stack.pop()
        instructions = self.instructions
        instructions.append(Instruction(JUMP_BACKWARD, start))
        instructions[start] = replace(instructions[start], arg=len(instructions))


def compile_source(source: Union[str, bytes, BinaryIO], filename: str = "<string>") -> List[Instruction]:
    if isinstance(source, str):
        lexer = Lexer.from_text(source, filename)
    elif isinstance(source, (bytes, bytearray)):
        lexer = Lexer(io.BytesIO(bytes(source)), filename)
    else:
        lexer = Lexer(source, filename)
    return Compiler(filename).compile(lexer)


def validate_jumps(instructions: Sequence[Instruction]) -> None:
    """Check that every jump pair points at its partner.

    Compiled programs always pass; this guards instruction lists assembled
    by hand before they reach the interpreter.
    """
    n = len(instructions)
    for index, inst in enumerate(instructions):
        if inst.op == JUMP_FORWARD:
            close = inst.arg - 1
            if not (index < close < n) or instructions[close].op != JUMP_BACKWARD or instructions[close].arg != index:
                raise BFParseError(f"Forward jump at instruction {index} has invalid target {inst.arg}")
        elif inst.op == JUMP_BACKWARD:
            start = inst.arg
            if not (0 <= start < index) or instructions[start].op != JUMP_FORWARD or instructions[start].arg != index + 1:
                raise BFParseError(f"Backward jump at instruction {index} has invalid target {inst.arg}")
        elif inst.arg < 0:
            raise BFParseError(f"Instruction {index} has negative count {inst.arg}")


def instruction_breakdown(instructions: Iterable[Instruction]) -> Counter:
    return Counter(inst.op for inst in instructions)
