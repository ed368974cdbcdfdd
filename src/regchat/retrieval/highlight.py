"""Pure highlight-span computation for rendering layers."""

from __future__ import annotations

from regchat.text import split_sentences
from regchat.types import HighlightSpan

MIN_SENTENCE_CHARS = 5


def find_highlight_spans(text: str, terms: list[str], max_lines: int = 5) -> list[HighlightSpan]:
    """Return term spans plus sentence spans where two or more terms co-occur.

    Term spans never overlap; longer terms win. A sentence span is omitted
    when the sentence covers more than `max_lines` lines of `text`, since a
    multi-line block is not a meaningful sentence highlight.
    """

    lowered = text.lower()
    needles = sorted({term.lower() for term in terms if term and term.strip()}, key=lambda t: (-len(t), t))
    taken: list[tuple[int, int]] = []
    spans: list[HighlightSpan] = []

    for needle in needles:
        start = lowered.find(needle)
        while start != -1:
            end = start + len(needle)
            if not any(start < t_end and t_start < end for t_start, t_end in taken):
                taken.append((start, end))
                spans.append(HighlightSpan(start=start, end=end, kind="term", terms=(needle,)))
            start = lowered.find(needle, end)

    for start, end, sentence in split_sentences(text):
        if len(sentence) < MIN_SENTENCE_CHARS:
            continue
        lowered_sentence = sentence.lower()
        present = tuple(needle for needle in needles if needle in lowered_sentence)
        if len(present) < 2:
            continue
        if sentence.count("\n") + 1 > max_lines:
            continue
        spans.append(HighlightSpan(start=start, end=end, kind="sentence", terms=present))

    spans.sort(key=lambda span: (span.start, span.kind != "sentence", span.end))
    return spans
