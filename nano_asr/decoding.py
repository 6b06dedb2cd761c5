"""
Greedy decoding engine: CTC collapse and a generic (RNN-T / TDT) transducer loop.

The transducer loop knows nothing about the networks behind it. A model family
plugs in through a TransducerSteps record: how to create its recurrent state and
how to run one decoder+joiner step. The state is threaded through untouched.
"""
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Sequence, Tuple

import torch

# Duration reported by step functions without a duration head:
# advance one frame on blank / emission cap, otherwise stay on the frame.
NO_DURATION = -1

TDT_DURATIONS = (0, 1, 2, 3, 4)


@dataclass
class Hypothesis:
    """Tokens emitted so far and the encoder frame each was emitted at."""
    tokens: list = field(default_factory=list)
    frames: list = field(default_factory=list)

    def append(self, token: int, frame: int):
        self.tokens.append(token)
        self.frames.append(frame)

    def __len__(self) -> int:
        return len(self.tokens)


StepFn = Callable[[Sequence[int], Any, torch.Tensor, int], Tuple[torch.Tensor, int, Any]]


@dataclass(frozen=True)
class TransducerSteps:
    """Capability record a transducer family supplies to the greedy loop.

    Attributes:
        create_state: () -> fresh decoder state for one utterance.
        decode: (prev_tokens, prev_state, encoded [T, D], t) ->
            (logits [V], duration, new_state). duration is a frame-skip count,
            or NO_DURATION.
        max_tokens_per_step: emissions allowed on a single encoder frame.
        subsampling_factor: encoder time compression, for timestamps.
    """
    create_state: Callable[[], Any]
    decode: StepFn
    max_tokens_per_step: int
    subsampling_factor: int


def frames_to_seconds(frames: Sequence[int], frame_duration: float, subsampling_factor: int) -> list:
    """Encoder frame indices -> seconds."""
    return [f * frame_duration * subsampling_factor for f in frames]


def _argmax(logits: torch.Tensor) -> int:
    # torch.argmax returns the first maximal index, so ties go to the lowest id.
    return int(torch.argmax(logits.reshape(-1)))


@torch.inference_mode()
def ctc_greedy_decode(
    log_probs: torch.Tensor,
    lengths: torch.Tensor,
    blank_id: int,
) -> Iterator[Hypothesis]:
    """CTC greedy decoding, one hypothesis per batch item, produced lazily.

    Args:
        log_probs: [B, T, V] per-frame scores (log-probs or logits).
        lengths:   [B] valid frame counts.
        blank_id:  CTC blank index.
    Yields:
        Hypothesis per batch item; frames are encoder-frame indices.
    """
    if log_probs.dim() != 3:
        raise ValueError(f"Expected (B, T, V) log-probs, got {tuple(log_probs.shape)}")

    max_len = log_probs.shape[1]
    for b in range(log_probs.shape[0]):
        length = max(0, min(int(lengths[b]), max_len))
        best   = log_probs[b, :length].argmax(dim=-1).tolist()  # [length]

        hyp = Hypothesis()
        for t, token in enumerate(best):
            if token == blank_id:
                continue
            if hyp.tokens and hyp.tokens[-1] == token:
                continue
            hyp.append(token, t)
        yield hyp


@torch.inference_mode()
def transducer_greedy_decode(
    encoded: torch.Tensor,
    length: int,
    steps: TransducerSteps,
    blank_id: int,
) -> Hypothesis:
    """Greedy transducer decoding for a single sequence.

    State machine over (t, state, emitted): a blank discards the step's new
    state and moves to the next frame; a token keeps the new state and may be
    followed by another emission on the same frame, up to
    steps.max_tokens_per_step. A positive duration jumps ahead that many
    frames. Every iteration advances t or increments the bounded emission
    counter, so at most length * (max_tokens_per_step + 1) steps are run.

    Args:
        encoded: [T, D] encoder output for one item.
        length:  valid frame count.
        steps:   model-family step functions.
        blank_id: transducer blank index.
    Returns:
        Hypothesis; frames are encoder-frame indices.
    """
    if steps.max_tokens_per_step < 1:
        raise ValueError(f"max_tokens_per_step must be >= 1, got {steps.max_tokens_per_step}")

    hyp     = Hypothesis()
    state   = steps.create_state()
    t       = 0
    emitted = 0
    while t < length:
        logits, duration, new_state = steps.decode(hyp.tokens, state, encoded, t)
        token = _argmax(logits)

        if token != blank_id:
            hyp.append(token, t)
            state    = new_state
            emitted += 1

        if duration > 0:
            t      += duration
            emitted = 0
        elif token == blank_id or emitted == steps.max_tokens_per_step:
            t      += 1
            emitted = 0

    return hyp


def with_durations(
    steps: TransducerSteps,
    vocab_size: int,
    durations: Sequence[int] = TDT_DURATIONS,
) -> TransducerSteps:
    """TDT extension: read a duration head appended after the token logits.

    The wrapped step must return vocab_size + len(durations) logits; the argmax
    over the trailing len(durations) values selects the predicted duration,
    which replaces the base step's NO_DURATION.
    """
    durations = tuple(int(d) for d in durations)
    n_dur     = len(durations)

    def decode(prev_tokens, prev_state, encoded, t):
        logits, _, state = steps.decode(prev_tokens, prev_state, encoded, t)
        logits = logits.reshape(-1)
        if logits.numel() != vocab_size + n_dur:
            raise ValueError(
                f"TDT step returned {logits.numel()} logits, expected {vocab_size} tokens + {n_dur} durations"
            )
        duration = durations[_argmax(logits[-n_dur:])]
        return logits[:vocab_size], duration, state

    return dataclasses.replace(steps, decode=decode)
