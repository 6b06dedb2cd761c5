"""Recognition result types and chunk merging."""
from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass
class WordTimestamp:
    """Single word with start/end in seconds."""
    word: str
    start: float
    end: float


@dataclass
class TimestampedResult:
    """Returned by Recognizer.recognize_batch() for every batch item.

    Attributes:
        text: Full decoded transcript.
        tokens: Token strings in emission order (word boundaries are a leading
            space), or None when the model family does not report them.
        timestamps: Start time of every token in seconds, parallel to tokens.

    Example::

        for result in model.recognize_batch(waveforms, lengths):
            for w in result.words():
                print(f"{w.start:.2f}s – {w.end:.2f}s : {w.word}")
    """
    text: str
    tokens: Optional[list] = field(default=None)
    timestamps: Optional[list] = field(default=None)

    def words(self) -> list:
        """Group tokens into words; a token starting with a space opens a new word.

        A word ends where the next word starts; the last word ends at the
        timestamp of its own last token.
        """
        if not self.tokens or not self.timestamps:
            return []

        spans = []  # [text, start, last_token_ts]
        for token, ts in zip(self.tokens, self.timestamps):
            if token.startswith(' ') or not spans:
                spans.append([token.lstrip(), ts, ts])
            else:
                spans[-1][0] += token
                spans[-1][2] = ts

        words = []
        spans = [s for s in spans if s[0]]
        for i, (text, start, last_ts) in enumerate(spans):
            end = spans[i + 1][1] if i + 1 < len(spans) else last_ts
            words.append(WordTimestamp(word=text, start=round(start, 3), end=round(end, 3)))
        return words


def combine_results(results: Iterable[TimestampedResult], offsets: Iterable[float]) -> TimestampedResult:
    """Merge per-chunk results into one, shifting timestamps by each chunk's offset (seconds)."""
    texts      = []
    tokens     = []
    timestamps = []
    has_tokens = False
    for result, offset in zip(results, offsets):
        if result.text:
            texts.append(result.text)
        if result.tokens is not None and result.timestamps is not None:
            has_tokens = True
            tokens.extend(result.tokens)
            timestamps.extend(ts + offset for ts in result.timestamps)

    if not has_tokens:
        return TimestampedResult(text=' '.join(texts))
    return TimestampedResult(text=' '.join(texts), tokens=tokens, timestamps=timestamps)
