from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Deque, Dict, List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from compiler import (
    DECREMENT,
    INCREMENT,
    INPUT,
    JUMP_BACKWARD,
    JUMP_FORWARD,
    MOVE_LEFT,
    MOVE_RIGHT,
    OUTPUT,
    Instruction,
    compile_source,
    validate_jumps,
)
from extensions import HookRegistry
from lexer import BFError, BFIOError


DEFAULT_MEMORY_SIZE = 30000


@dataclass
class InterpreterConfig:
    memory_size: int = DEFAULT_MEMORY_SIZE
    debug: bool = False
    # Reported only: run-length merging always happens at compile time.
    optimize: bool = True
    # Number of recent steps kept for tracebacks when debug is on.
    history: int = 16

    def __post_init__(self) -> None:
        if self.memory_size <= 0:
            raise ValueError("Memory size must be greater than 0")
        if self.history < 0:
            raise ValueError("history must be >= 0")


class BFRuntimeError(BFError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        instruction_pointer: Optional[int] = None,
        pointer: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instruction_pointer = instruction_pointer
        self.pointer = pointer


class MemoryOutOfBoundsError(BFRuntimeError):
    def __init__(self, address: int, **kwargs: Any) -> None:
        super().__init__(f"Memory access out of bounds at address {address}", **kwargs)
        self.address = address


@dataclass
class StateEntry:
    step_index: int
    instruction_pointer: int
    pointer: int
    cell: int
    instruction: Instruction


class StateLogger:
    def __init__(self, history: int) -> None:
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_step_index = 0

    def record(self, *, instruction_pointer: int, pointer: int, cell: int, instruction: Instruction) -> StateEntry:
        entry = StateEntry(
            step_index=self.next_step_index,
            instruction_pointer=instruction_pointer,
            pointer=pointer,
            cell=cell,
            instruction=instruction,
        )
        self.entries.append(entry)
        self.next_step_index += 1
        return entry

    def sync(self, step_index: int) -> None:
        self.next_step_index = step_index

    def clear(self) -> None:
        self.entries.clear()
        self.next_step_index = 0


def _stderr_sink(text: str) -> None:
    print(text, file=sys.stderr)


class Interpreter:
    def __init__(
        self,
        instructions: Sequence[Instruction],
        config: Optional[InterpreterConfig] = None,
        *,
        input_stream: Optional[BinaryIO] = None,
        output_stream: Optional[BinaryIO] = None,
        trace_sink: Optional[Callable[[str], None]] = None,
        hooks: Optional[HookRegistry] = None,
    ) -> None:
        self.config = config or InterpreterConfig()
        self.instructions: List[Instruction] = list(instructions)
        validate_jumps(self.instructions)
        self.memory: NDArray[np.uint8] = np.zeros(self.config.memory_size, dtype=np.uint8)
        self.pointer = 0
        self.instruction_pointer = 0
        self.steps = 0
        # Standard streams are looked up on first use so that callers (and
        # test harnesses) that swap sys.stdin/sys.stdout are honoured.
        self._input_stream = input_stream
        self._output_stream = output_stream
        self.trace_sink = trace_sink or _stderr_sink
        self.hooks = hooks or HookRegistry()
        self.logger = StateLogger(self.config.history)

    @property
    def input_stream(self) -> BinaryIO:
        if self._input_stream is None:
            self._input_stream = sys.stdin.buffer
        return self._input_stream

    @property
    def output_stream(self) -> BinaryIO:
        if self._output_stream is None:
            self._output_stream = sys.stdout.buffer
        return self._output_stream

    @property
    def instruction_count(self) -> int:
        return len(self.instructions)

    @property
    def finished(self) -> bool:
        return self.instruction_pointer >= len(self.instructions)

    def memory_state(self) -> NDArray[np.uint8]:
        return self.memory

    def cells_used(self) -> int:
        return int(np.count_nonzero(self.memory))

    def load(self, instructions: Sequence[Instruction]) -> None:
        """Swap in a new program, keeping the tape and cell pointer."""
        program = list(instructions)
        validate_jumps(program)
        self.instructions = program
        self.instruction_pointer = 0

    def reset(self) -> None:
        self.memory[:] = 0
        self.pointer = 0
        self.instruction_pointer = 0
        self.steps = 0
        self.logger.clear()

    def run(self) -> int:
        """Execute until the instruction pointer runs off the end.

        Returns the number of instructions executed by this call. Errors
        propagate with the interpreter state left exactly as it was at the
        failing instruction.
        """
        started_at = self.steps
        try:
            self._emit_event("program_start", self)
            self._execute()
        except BFError as error:
            self._fail(error)
            raise
        except Exception as exc:
            # Convert unexpected Python-level exceptions so callers can format
            # them like any other fault.
            wrapped = BFRuntimeError(f"Internal interpreter error: {exc}")
            self._fail(wrapped)
            raise wrapped from exc
        try:
            self._flush_output()
        except BFIOError as error:
            self._fail(error, flush=False)
            raise
        executed = self.steps - started_at
        self._emit_event("program_end", self, executed)
        return executed

    def _fail(self, error: BFError, *, flush: bool = True) -> None:
        self._annotate(error)
        if flush:
            try:
                self._flush_output()
            except BFIOError as flush_error:
                # The fault that stopped the program stays the reported error.
                error.flush_error = flush_error
        self._emit_event("on_error", self, error)

    def _execute(self) -> None:
        n = len(self.instructions)
        step = self.step
        while self.instruction_pointer < n:
            step()

    def step(self) -> None:
        ip = self.instruction_pointer
        if ip >= len(self.instructions):
            raise BFRuntimeError("Program has already finished", instruction_pointer=ip, pointer=self.pointer)
        inst = self.instructions[ip]
        memory = self.memory
        ptr = self.pointer
        if self.config.debug:
            self._log_step(inst)

        op = inst.op
        arg = inst.arg
        next_ip = ip + 1
        if op == MOVE_RIGHT:
            target = ptr + arg
            if target >= len(memory):
                raise MemoryOutOfBoundsError(target, instruction_pointer=ip, pointer=ptr)
            self.pointer = target
        elif op == MOVE_LEFT:
            if ptr < arg:
                raise MemoryOutOfBoundsError(ptr - arg, instruction_pointer=ip, pointer=ptr)
            self.pointer = ptr - arg
        elif op == INCREMENT:
            memory[ptr] = (int(memory[ptr]) + arg) & 0xFF
        elif op == DECREMENT:
            memory[ptr] = (int(memory[ptr]) - arg) & 0xFF
        elif op == OUTPUT:
            self._write(bytes((int(memory[ptr]),)) * arg)
        elif op == INPUT:
            for _ in range(arg):
                memory[ptr] = self._read_byte()
        elif op == JUMP_FORWARD:
            if memory[ptr] == 0:
                next_ip = arg
        elif op == JUMP_BACKWARD:
            if memory[ptr] != 0:
                next_ip = arg
        else:
            raise BFRuntimeError(f"Unknown instruction '{op}'", instruction_pointer=ip, pointer=ptr)
        self.instruction_pointer = next_ip
        self.steps += 1

    def _write(self, data: bytes) -> None:
        stream = self.output_stream
        try:
            stream.write(data)
            stream.flush()
        except OSError as exc:
            raise BFIOError(f"Failed to write output: {exc}") from exc

    def _read_byte(self) -> int:
        try:
            data = self.input_stream.read(1)
        except OSError as exc:
            raise BFIOError(f"Failed to read input: {exc}") from exc
        if not data:
            raise BFIOError("Failed to read input: unexpected end of input")
        return data[0]

    def _flush_output(self) -> None:
        if self._output_stream is None:
            return
        try:
            self._output_stream.flush()
        except OSError as exc:
            raise BFIOError(f"Failed to flush output: {exc}") from exc

    def _annotate(self, error: BFError) -> None:
        error.step_index = self.steps
        error.instruction_pointer = self.instruction_pointer
        error.pointer = self.pointer

    def _log_step(self, inst: Instruction) -> None:
        ip = self.instruction_pointer
        ptr = self.pointer
        cell = int(self.memory[ptr])
        self.logger.sync(self.steps)
        self.logger.record(instruction_pointer=ip, pointer=ptr, cell=cell, instruction=inst)
        self.trace_sink(f"IP: {ip}, PTR: {ptr}, CELL: {cell}, INST: {inst}")

    def _emit_event(self, event: str, *args: Any) -> None:
        try:
            self.hooks.emit(event, *args)
        except BFError:
            raise
        except Exception as exc:
            raise BFRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                instruction_pointer=self.instruction_pointer,
                pointer=self.pointer,
            ) from exc


def run_source(
    source: Union[str, bytes, BinaryIO],
    config: Optional[InterpreterConfig] = None,
    *,
    filename: str = "<string>",
    **kwargs: Any,
) -> Interpreter:
    instructions = compile_source(source, filename)
    interpreter = Interpreter(instructions, config, **kwargs)
    interpreter.run()
    return interpreter


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter, *, window: int = 8) -> None:
        self.interpreter = interpreter
        self.window = window

    def _failing_instruction(self, error: BFError) -> Optional[Instruction]:
        ip = error.instruction_pointer
        instructions = self.interpreter.instructions
        if ip is None or not 0 <= ip < len(instructions):
            return None
        return instructions[ip]

    def _tape_window(self, pointer: int) -> Dict[int, int]:
        memory = self.interpreter.memory
        start = max(0, pointer - self.window // 2)
        end = min(len(memory), start + self.window)
        return {address: int(memory[address]) for address in range(start, end)}

    def format_text(self, error: BFError, verbose: bool) -> str:
        lines = ["Traceback (most recent step last):"]
        for entry in self.interpreter.logger.entries:
            lines.append(
                f"  Step {entry.step_index}: IP {entry.instruction_pointer}, PTR {entry.pointer}, "
                f"CELL {entry.cell}, INST {entry.instruction}"
            )
        inst = self._failing_instruction(error)
        if inst is not None:
            lines.append(f"  At instruction {error.instruction_pointer}: {inst}")
        else:
            lines.append("  <no instruction>")
        pointer = error.pointer
        if pointer is not None and 0 <= pointer < len(self.interpreter.memory):
            lines.append(
                f"    Cell pointer: {pointer}  Cell value: {int(self.interpreter.memory[pointer])}  Step: {error.step_index}"
            )
            if verbose:
                cells = " ".join(f"[{a}]={v}" for a, v in self._tape_window(pointer).items())
                lines.append(f"    Tape: {cells}")
        if error.flush_error is not None:
            lines.append(f"    Output flush also failed: {error.flush_error}")
        message = getattr(error, "message", str(error))
        lines.append(f"{error.__class__.__name__}: {message}")
        return "\n".join(lines)

    def to_json(self, error: BFError) -> str:
        inst = self._failing_instruction(error)
        data: Dict[str, Any] = {
            "error": {
                "type": error.__class__.__name__,
                "message": getattr(error, "message", str(error)),
                "failing_step_index": error.step_index,
                "instruction_pointer": error.instruction_pointer,
                "instruction": str(inst) if inst is not None else None,
                "pointer": error.pointer,
            },
            "recent_steps": [
                {
                    "step_index": entry.step_index,
                    "instruction_pointer": entry.instruction_pointer,
                    "pointer": entry.pointer,
                    "cell": entry.cell,
                    "instruction": str(entry.instruction),
                }
                for entry in self.interpreter.logger.entries
            ],
        }
        if isinstance(error, MemoryOutOfBoundsError):
            data["error"]["address"] = error.address
        if error.flush_error is not None:
            data["error"]["flush_error"] = str(error.flush_error)
        pointer = error.pointer
        if pointer is not None and 0 <= pointer < len(self.interpreter.memory):
            data["tape"] = {str(a): v for a, v in self._tape_window(pointer).items()}
        return json.dumps(data, indent=2)
