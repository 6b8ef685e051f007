"""Tests for text chunking."""

from chatkb.core.utils import compute_content_hash
from chatkb.ingestion.chunker import chunk_content, chunk_hash, is_low_quality


def varied_text(paragraphs: int, words: int = 12) -> str:
    """Paragraphs of distinct words so the repetition filter stays quiet."""
    return "\n\n".join(
        f"Section {i}: " + " ".join(f"term{i}x{j}" for j in range(words)) + "."
        for i in range(paragraphs)
    )


def test_empty_text():
    """Test handling of empty text."""
    assert chunk_content("") == []
    assert chunk_content("   \n\n  ") == []


def test_short_text():
    """Test that short text becomes a single chunk."""
    chunks = chunk_content("Short text")

    assert len(chunks) == 1
    assert chunks[0].chunk_index == 0
    assert chunks[0].chunk_text == "Short text"


def test_chunk_sizes():
    """Test that chunks stay near the maximum size."""
    text = varied_text(60)
    chunks = chunk_content(text, max_chunk_size=300, min_chunk_size=100, overlap=50)

    assert len(chunks) > 1
    for chunk in chunks:
        assert len(chunk.chunk_text) <= 300 + 50 + 2  # overlap tail plus separator
    for chunk in chunks[:-1]:
        assert len(chunk.chunk_text) >= 100


def test_chunk_overlap():
    """Test that each chunk starts with the tail of the previous one."""
    chunks = chunk_content(varied_text(40), max_chunk_size=300, min_chunk_size=100, overlap=50)

    assert len(chunks) > 2
    for previous, current in zip(chunks, chunks[1:]):
        assert current.chunk_text.startswith(previous.chunk_text[-50:])


def test_indices_are_contiguous():
    """Test that chunk indices run from zero without gaps."""
    chunks = chunk_content(varied_text(30), max_chunk_size=250, min_chunk_size=50, overlap=0)

    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))


def test_small_trailing_chunk_is_merged():
    """Test that a final fragment below the minimum joins its predecessor."""
    text = varied_text(2, words=30) + "\n\nTiny tail."
    chunks = chunk_content(text, max_chunk_size=280, min_chunk_size=100, overlap=0)

    assert chunks[-1].chunk_text.endswith("Tiny tail.")
    assert len(chunks) == 2
    assert all(c.chunk_text != "Tiny tail." for c in chunks)


def test_long_paragraph_without_sentences_is_windowed():
    """Test that an unbreakable paragraph is split by characters."""
    chunks = chunk_content("x" * 2000, max_chunk_size=800, min_chunk_size=200, overlap=100)

    assert len(chunks) >= 3
    assert all(len(c.chunk_text) <= 800 + 100 + 2 for c in chunks)


def test_long_paragraph_splits_on_sentences():
    """Test that oversized paragraphs break at sentence boundaries."""
    sentences = [f"Sentence {i} covers topic{i} and detail{i}." for i in range(30)]
    chunks = chunk_content(" ".join(sentences), max_chunk_size=200, min_chunk_size=50, overlap=0)

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.chunk_text.rstrip().endswith(".")


def test_content_hash_ignores_whitespace():
    """Test that hashes are stable across whitespace changes."""
    assert chunk_hash("refund  policy\n applies") == chunk_hash("refund policy applies")
    assert chunk_hash("refund policy applies") == compute_content_hash("refund policy applies")

    chunk = chunk_content("Refunds are issued within 14 days of purchase.")[0]
    assert chunk.content_hash == chunk_hash(chunk.chunk_text)


def test_low_quality_chunks_are_dropped():
    """Test the form-boilerplate and repetition filters."""
    form = "Required fields are marked. Confirm password. I accept the terms of use. Submit."
    spam = "buy now " * 50

    assert is_low_quality(form)
    assert is_low_quality(spam)
    assert not is_low_quality("Our office is open Monday to Friday from nine to five.")
    assert chunk_content(form) == []
    assert chunk_content(spam) == []


def test_chunk_metadata():
    """Test title, headings, keywords and lexical terms on chunks."""
    text = "# Billing\n\nRefunds are processed within fourteen days. Refunds go to the original card."
    chunk = chunk_content(text, title="Billing FAQ")[0]

    assert chunk.metadata["title"] == "Billing FAQ"
    assert chunk.metadata["headings"] == ["Billing"]
    assert chunk.metadata["keywords"][0] == "refunds"
    assert "billing" in chunk.lexical_index
    assert "refunds" in chunk.lexical_index
    assert "faq" in chunk.lexical_index
    assert chunk.lexical_index == sorted(set(chunk.lexical_index))
