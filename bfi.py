"""bfi entry point and REPL wiring."""
from __future__ import annotations
import argparse
import sys
from typing import List, Optional, TextIO

from compiler import (
    DECREMENT,
    INCREMENT,
    INPUT,
    JUMP_BACKWARD,
    JUMP_FORWARD,
    MOVE_LEFT,
    MOVE_RIGHT,
    OUTPUT,
    Compiler,
    Instruction,
    compile_source,
    instruction_breakdown,
)
from extensions import HookRegistry
from interpreter import DEFAULT_MEMORY_SIZE, Interpreter, InterpreterConfig, TracebackFormatter
from lexer import BFError, BFParseError, Lexer


BREAKDOWN_ORDER = (MOVE_RIGHT, MOVE_LEFT, INCREMENT, DECREMENT, OUTPUT, INPUT, JUMP_FORWARD, JUMP_BACKWARD)


class _PromptInput:
    """Byte source for ',' inside the REPL, fed one line at a time by input()."""

    def __init__(self) -> None:
        self._pending = b""

    def read(self, size: int = 1) -> bytes:
        if not self._pending:
            try:
                self._pending = (input() + "\n").encode("utf-8")
            except EOFError:
                return b""
        data, self._pending = self._pending[:size], self._pending[size:]
        return data


def _bracket_depth(source: str) -> int:
    return source.count("[") - source.count("]")


def print_statistics(interpreter: Interpreter, out: Optional[TextIO] = None) -> None:
    out = out or sys.stderr
    instructions = interpreter.instructions
    print("\n=== Program Statistics ===", file=out)
    print(f"Total instructions: {len(instructions)}", file=out)
    print(f"Source operations: {sum(inst.operation_count for inst in instructions)}", file=out)
    print(f"Memory cells used: {interpreter.cells_used()}", file=out)
    print(f"Final pointer position: {interpreter.pointer}", file=out)
    print(f"Final instruction pointer: {interpreter.instruction_pointer}", file=out)
    print(f"Steps executed: {interpreter.steps}", file=out)
    counts = instruction_breakdown(instructions)
    print("\nInstruction breakdown:", file=out)
    for op in BREAKDOWN_ORDER:
        if counts[op]:
            print(f"  {op}: {counts[op]}", file=out)


def _install_debug_banner(hooks: HookRegistry, filename: str, config: InterpreterConfig) -> None:
    def _start(interpreter: Interpreter) -> None:
        print(f"Starting execution of '{filename}'", file=sys.stderr)
        print(f"Memory size: {config.memory_size}", file=sys.stderr)
        print(f"Instructions: {interpreter.instruction_count}", file=sys.stderr)
        print(f"Optimizations: {config.optimize}", file=sys.stderr)
        print("---", file=sys.stderr)

    def _end(interpreter: Interpreter, executed: int) -> None:
        print("---", file=sys.stderr)
        print("Execution completed successfully", file=sys.stderr)

    hooks.on_event("program_start", _start)
    hooks.on_event("program_end", _end)


def run_repl(config: InterpreterConfig, verbose: bool) -> int:
    print("\x1b[38;2;153;221;255mbfi\033[0m REPL. Enter code; open loops continue on the next line, blank line runs the buffer.")
    # The tape persists between entries; each entry is compiled as its own program.
    interpreter = Interpreter([], config, input_stream=_PromptInput())
    buffer: List[str] = []

    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if stripped == "" and not buffer:
            continue
        if stripped != "":
            buffer.append(line)
            if _bracket_depth("\n".join(buffer)) > 0:
                continue

        source_text = "\n".join(buffer)
        buffer.clear()
        try:
            interpreter.load(compile_source(source_text, "<repl>"))
            interpreter.run()
        except BFParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
        except BFError as error:
            formatter = TracebackFormatter(interpreter)
            print(formatter.format_text(error, verbose=verbose), file=sys.stderr)
        print()

    return 0


def _compile_file(filename: str) -> List[Instruction]:
    with open(filename, "rb") as handle:
        return Compiler(filename).compile(Lexer(handle, filename))


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="bfi", description="Optimizing Brainfuck interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-d", "--debug", action="store_true", help="Trace every executed instruction on stderr")
    parser.add_argument("-m", "--memory-size", type=int, default=DEFAULT_MEMORY_SIZE, help="Number of tape cells (default: 30000)")
    parser.add_argument("--no-optimize", action="store_true", help="Mark the run as unoptimized")
    parser.add_argument("-s", "--stats", action="store_true", help="Show program statistics after execution")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Include tape contents in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    args = parser.parse_args(argv)

    if args.memory_size <= 0:
        print("Memory size must be greater than 0", file=sys.stderr)
        return 1
    config = InterpreterConfig(memory_size=args.memory_size, debug=args.debug, optimize=not args.no_optimize)

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(config, verbose=args.verbose)

    try:
        if args.source_mode:
            filename = "<string>"
            instructions = compile_source(args.program, filename)
        else:
            filename = args.program
            try:
                instructions = _compile_file(filename)
            except OSError as exc:
                print(f"Failed to read {filename}: {exc}", file=sys.stderr)
                return 1
    except BFParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except BFError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    hooks = HookRegistry()
    if config.debug:
        _install_debug_banner(hooks, filename, config)
    interpreter = Interpreter(instructions, config, hooks=hooks)
    try:
        interpreter.run()
    except BFError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1

    if args.stats:
        print_statistics(interpreter)
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
