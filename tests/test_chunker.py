"""Tests for word-window chunking."""

import pytest
from pydantic import ValidationError

from ragchat.chunking.chunker import build_chunks, split_into_chunks
from ragchat.chunking.schemas import Chunk


class TestSplitIntoChunks:
    def test_empty_input_yields_no_chunks(self) -> None:
        assert split_into_chunks("") == []
        assert split_into_chunks("   \n\t  ") == []

    def test_groups_words_into_fixed_windows(self) -> None:
        text = " ".join(f"w{i}" for i in range(7))

        assert split_into_chunks(text, max_words=3) == ["w0 w1 w2", "w3 w4 w5", "w6"]

    def test_exact_multiple_has_no_trailing_empty_window(self) -> None:
        text = "a b c d"

        assert split_into_chunks(text, max_words=2) == ["a b", "c d"]

    def test_any_whitespace_run_is_one_separator(self) -> None:
        text = "  alpha\n\nbeta\t gamma   delta "

        assert split_into_chunks(text, max_words=10) == ["alpha beta gamma delta"]

    def test_default_window_is_250_words(self) -> None:
        text = " ".join(["word"] * 600)

        chunks = split_into_chunks(text)

        assert [len(c.split()) for c in chunks] == [250, 250, 100]

    def test_windows_never_overlap(self) -> None:
        words = [f"t{i}" for i in range(55)]

        chunks = split_into_chunks(" ".join(words), max_words=10)

        rejoined = " ".join(chunks).split()
        assert rejoined == words

    def test_rejects_non_text_input(self) -> None:
        with pytest.raises(TypeError):
            split_into_chunks(b"bytes are not text")  # type: ignore[arg-type]

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ValueError):
            split_into_chunks("a b c", max_words=0)


class TestBuildChunks:
    def test_assigns_sequential_ids_and_positions(self) -> None:
        chunks = build_chunks(["one", "two", "three"], source_file="kb.txt")

        assert [c.id for c in chunks] == ["chunk_0", "chunk_1", "chunk_2"]
        assert [c.source_index for c in chunks] == [0, 1, 2]
        assert all(c.source_file == "kb.txt" for c in chunks)

    def test_chunks_are_immutable(self) -> None:
        chunk = build_chunks(["text"], source_file="kb.txt")[0]

        with pytest.raises(ValidationError):
            chunk.text = "changed"  # type: ignore[misc]

        assert isinstance(chunk, Chunk)
        assert chunk.text == "text"
