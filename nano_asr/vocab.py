"""Token vocabulary loading and token assembly for nano_asr."""
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from nano_asr.result import TimestampedResult

logger = logging.getLogger(__name__)

BLANK_TOKEN = '<blk>'
WORD_BOUNDARY = '\u2581'  # '▁'

# Drop a leading space and any space not followed by a word (duplicates,
# trailing space, space before punctuation); keep spaces that open a word.
_SPACES = re.compile(r'\A\s|\s\B|(\s)\b')


@dataclass(frozen=True)
class Vocabulary:
    """Immutable id -> token mapping with the designated blank id."""
    id_to_token: dict
    blank_id: int
    size: int

    @classmethod
    def from_tokens(cls, tokens: dict, blank_token: str = BLANK_TOKEN) -> 'Vocabulary':
        """Build from a token -> id mapping, rewriting '▁' to a space.

        Raises:
            ValueError: on duplicate ids, negative ids or when the blank token is missing.
        """
        if blank_token not in tokens:
            raise ValueError(f"Vocabulary has no blank token {blank_token!r}")

        id_to_token = {}
        for token, idx in tokens.items():
            idx = int(idx)
            if idx < 0:
                raise ValueError(f"Negative token id {idx} for {token!r}")
            if idx in id_to_token:
                raise ValueError(
                    f"Duplicate token id {idx} for {token!r} and {id_to_token[idx]!r}"
                )
            id_to_token[idx] = token.replace(WORD_BOUNDARY, ' ')

        return cls(id_to_token=id_to_token, blank_id=int(tokens[blank_token]), size=len(id_to_token))

    def __getitem__(self, idx: int) -> str:
        return self.id_to_token[idx]

    def __len__(self) -> int:
        return self.size


def load_vocab(path) -> Vocabulary:
    """Load a '<token> <id>' per line vocabulary file (tokens.txt / vocab.txt).

    Raises:
        ValueError: malformed line, duplicate token or id, or no '<blk>' entry.
    """
    path = Path(path)
    tokens = {}
    with path.open('r', encoding='utf-8') as f:
        for lineno, line in enumerate(f, 1):
            line = line.rstrip('\r\n')
            if not line.strip():
                continue
            token, sep, idx = line.rpartition(' ')
            if not sep or not token or not idx.isdecimal():
                raise ValueError(f"{path}:{lineno}: expected '<token> <id>', got {line!r}")
            if token in tokens:
                raise ValueError(f"{path}:{lineno}: duplicate token {token!r}")
            tokens[token] = int(idx)

    vocab = Vocabulary.from_tokens(tokens)
    logger.debug("Loaded %d tokens from %s (blank id %d)", vocab.size, path, vocab.blank_id)
    return vocab


def join_tokens(pieces: Sequence[str]) -> str:
    """Concatenate token strings and normalise the word-boundary spaces."""
    return _SPACES.sub(r'\1', ''.join(pieces)).strip()


def decode_tokens(vocab: Vocabulary, token_ids: Sequence[int], timestamps: Sequence[float]) -> TimestampedResult:
    """Assemble token ids and their timestamps (seconds) into a TimestampedResult."""
    if len(token_ids) != len(timestamps):
        raise ValueError(f"{len(token_ids)} tokens but {len(timestamps)} timestamps")
    pieces = [vocab[t] for t in token_ids]
    return TimestampedResult(text=join_tokens(pieces), tokens=pieces, timestamps=list(timestamps))
