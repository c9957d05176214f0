import io

import pytest

from lexer import BFIOError, Lexer, Position


def _types(source):
    return [token.type for token in Lexer.from_text(source)]


def test_recognizes_all_eight_operators():
    assert _types(">+<-[],.") == [
        "MOVE_RIGHT",
        "INCREMENT",
        "MOVE_LEFT",
        "DECREMENT",
        "LOOP_START",
        "LOOP_END",
        "INPUT",
        "OUTPUT",
    ]


def test_non_operator_characters_are_comments():
    assert _types("Hello World! >+<-[],.") == _types(">+<-[],.")
    assert _types("no code here\n\t 123") == []


def test_positions_are_one_based_and_follow_newlines():
    tokens = Lexer.from_text(">+\n<-").tokenize()
    assert [t.position for t in tokens] == [
        Position(1, 1),
        Position(1, 2),
        Position(2, 1),
        Position(2, 2),
    ]


def test_skipped_characters_advance_the_column():
    (token,) = Lexer.from_text("ab+").tokenize()
    assert token.value == "+"
    assert token.position == Position(1, 3)


def test_cursor_position_after_exhaustion():
    lexer = Lexer.from_text("+\n")
    lexer.tokenize()
    assert lexer.position == Position(2, 1)


def test_lexer_is_not_restartable():
    lexer = Lexer.from_text("+++")
    assert len(list(lexer)) == 3
    assert list(lexer) == []
    assert lexer.next_token() is None


def test_tokens_are_produced_lazily():
    stream = io.BytesIO(b"+" + b" " * 4096 + b"-")
    lexer = Lexer(stream, chunk_size=16)
    first = next(lexer)
    assert first.type == "INCREMENT"
    assert stream.tell() == 16


def test_multibyte_character_split_across_chunks():
    stream = io.BytesIO("é+".encode("utf-8"))
    (token,) = Lexer(stream, chunk_size=1).tokenize()
    assert token.position == Position(1, 2)


def test_invalid_utf8_is_replaced_not_rejected():
    (token,) = Lexer(io.BytesIO(b"\xff+")).tokenize()
    assert token.position == Position(1, 2)


def test_truncated_utf8_at_end_of_input():
    assert Lexer(io.BytesIO(b"+\xc3"), chunk_size=1).tokenize()[0].type == "INCREMENT"


class _BrokenStream:
    def read(self, size):
        raise OSError("disk on fire")


def test_read_failure_becomes_io_error():
    with pytest.raises(BFIOError) as excinfo:
        Lexer(_BrokenStream(), "broken.bf").tokenize()
    assert "Failed to read source" in str(excinfo.value)
    assert "disk on fire" in excinfo.value.message


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        Lexer(io.BytesIO(b""), chunk_size=0)


def test_position_renders_as_line_colon_column():
    assert str(Position(3, 7)) == "3:7"
    assert Position() == Position(1, 1)
