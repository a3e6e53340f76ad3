"""Tests for code chunks in knitr_in documents."""

from __future__ import annotations

from remake.analysis import chunk_references, document_references, extract_chunks


def test_extract_backtick_and_tilde_fences():
    text = "intro\n```python\na = 1\n```\nmiddle\n~~~\nb = 2\n~~~\n"
    assert extract_chunks(text) == ["a = 1\n", "b = 2\n"]


def test_python_chunk_uses_ast():
    assert chunk_references("x = readd(model)\nloadd('data', other)") == {"model", "data", "other"}


def test_other_language_uses_pattern():
    assert chunk_references("plot <- ggplot(readd(fit)) + { loadd(a, b, lazy = TRUE) }") == {"fit", "a", "b"}


def test_document_references(tmp_path):
    doc = tmp_path / "analysis.Rmd"
    doc.write_text("```{r}\nreadd(model)\n```\n\n```{python}\nloadd(summary)\n```\n")
    assert document_references(doc) == {"model", "summary"}


def test_missing_document(tmp_path):
    assert document_references(tmp_path / "none.md") == set()
