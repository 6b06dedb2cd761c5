"""Tests for the CTC and transducer greedy decoders."""
import random

import pytest
import torch

from conftest import ScriptedSteps, one_hot
from nano_asr.decoding import (NO_DURATION, TDT_DURATIONS, Hypothesis, TransducerSteps,
                               ctc_greedy_decode, frames_to_seconds, transducer_greedy_decode,
                               with_durations)


def _frames_to_log_probs(frames, vocab_size):
    """Per-frame argmax sequence -> [1, T, V] scores."""
    return torch.stack([one_hot(t, vocab_size) for t in frames]).unsqueeze(0)


def _ctc(frames, vocab_size=3, blank_id=2, length=None):
    log_probs = _frames_to_log_probs(frames, vocab_size)
    lengths = torch.tensor([len(frames) if length is None else length])
    return next(ctc_greedy_decode(log_probs, lengths, blank_id))


# ---------------------------------------------------------------------------
# CTC
# ---------------------------------------------------------------------------

def test_ctc_collapse_scenario():
    """Repeats collapse, blanks vanish, frame of first occurrence is kept."""
    hyp = _ctc([0, 0, 2, 1, 1, 1, 2])
    assert hyp.tokens == [0, 1]
    assert hyp.frames == [0, 3]
    assert frames_to_seconds(hyp.frames, 0.01, 4) == pytest.approx([0.0, 0.12])


def test_ctc_compares_with_last_emitted_token():
    """A token separated from its previous emission only by blanks is not re-emitted."""
    assert _ctc([0, 2, 0, 1, 2, 1]).tokens == [0, 1]


def test_ctc_respects_valid_length():
    assert _ctc([0, 1, 0, 1], length=2).tokens == [0, 1]
    assert _ctc([0, 1, 0, 1], length=0).tokens == []


def test_ctc_length_beyond_time_axis_is_clamped():
    assert _ctc([0, 1], length=10).tokens == [0, 1]


def test_ctc_tie_goes_to_lowest_index():
    log_probs = torch.zeros(1, 1, 3)
    hyp = next(ctc_greedy_decode(log_probs, torch.tensor([1]), blank_id=2))
    assert hyp.tokens == [0]


def test_ctc_is_lazy_per_item():
    log_probs = torch.stack([
        _frames_to_log_probs([0, 2, 1], 3)[0],
        _frames_to_log_probs([1, 1, 2], 3)[0],
    ])
    gen = ctc_greedy_decode(log_probs, torch.tensor([3, 2]), blank_id=2)
    assert next(gen).tokens == [0, 1]
    assert next(gen).tokens == [1]
    with pytest.raises(StopIteration):
        next(gen)


def test_ctc_rejects_non_batched_input():
    with pytest.raises(ValueError):
        next(ctc_greedy_decode(torch.zeros(4, 3), torch.tensor([4]), blank_id=2))


@pytest.mark.parametrize('seed', range(20))
def test_ctc_properties(seed):
    """No blank emitted, aligned frames, monotonic, collapse is idempotent."""
    rng = random.Random(seed)
    frames = [rng.randrange(4) for _ in range(rng.randrange(0, 30))]
    hyp = _ctc(frames, vocab_size=4, blank_id=3)

    assert 3 not in hyp.tokens
    assert len(hyp.tokens) == len(hyp.frames)
    assert hyp.frames == sorted(hyp.frames)

    again = _ctc(hyp.tokens, vocab_size=4, blank_id=3) if hyp.tokens else Hypothesis()
    assert again.tokens == hyp.tokens


# ---------------------------------------------------------------------------
# Transducer
# ---------------------------------------------------------------------------

X, BLANK, V = 0, 2, 3


def test_transducer_emission_scenario():
    """Token then blank on frame 0, blank on frame 1, token then blank on frame 2."""
    script = {
        0: [(X, NO_DURATION), (BLANK, NO_DURATION)],
        1: [(BLANK, NO_DURATION)],
        2: [(X, NO_DURATION), (BLANK, NO_DURATION)],
    }
    fake = ScriptedSteps(script, V, BLANK)
    hyp = transducer_greedy_decode(torch.zeros(3, 1), 3, fake.steps(max_tokens_per_step=2), BLANK)

    assert hyp.tokens == [X, X]
    assert hyp.frames == [0, 2]
    assert len(fake.calls) <= 3 * (2 + 1)
    assert [t for t, _ in fake.calls] == [0, 0, 1, 2, 2]


def test_transducer_duration_skip_jumps_frames():
    """A duration of 5 on frame 0 makes the next call look at frame 5."""
    fake = ScriptedSteps({0: [(X, 5)]}, V, BLANK)
    hyp = transducer_greedy_decode(torch.zeros(8, 1), 8, fake.steps(max_tokens_per_step=3), BLANK)

    assert [t for t, _ in fake.calls][:2] == [0, 5]
    assert hyp.tokens == [X]
    assert hyp.frames == [0]


def test_transducer_emission_cap_forces_advance():
    fake = ScriptedSteps({0: [(X, NO_DURATION)] * 10}, V, BLANK)
    hyp = transducer_greedy_decode(torch.zeros(2, 1), 2, fake.steps(max_tokens_per_step=3), BLANK)
    assert hyp.tokens == [X, X, X]
    assert [t for t, _ in fake.calls] == [0, 0, 0, 1]


def test_transducer_prev_tokens_grow_with_emissions():
    fake = ScriptedSteps({0: [(X, NO_DURATION), (1, NO_DURATION)]}, V, BLANK)
    transducer_greedy_decode(torch.zeros(1, 1), 1, fake.steps(max_tokens_per_step=5), BLANK)
    assert [prev for _, prev in fake.calls] == [(), (X,), (X, 1)]


def test_transducer_blank_discards_new_state():
    states = []

    def decode(prev_tokens, prev_state, encoded, t):
        states.append(prev_state)
        token = X if t == 1 and not prev_tokens else BLANK
        return one_hot(token, V), NO_DURATION, prev_state + 1

    steps = TransducerSteps(lambda: 0, decode, max_tokens_per_step=2, subsampling_factor=1)
    transducer_greedy_decode(torch.zeros(3, 1), 3, steps, BLANK)
    # frame 0 blank (state kept), frame 1 emits (state adopted), then blanks
    assert states == [0, 0, 1, 1]


@pytest.mark.parametrize('duration', [0, -1, -7])
def test_non_positive_duration_means_no_skip(duration):
    fake = ScriptedSteps({t: [(BLANK, duration)] for t in range(4)}, V, BLANK)
    transducer_greedy_decode(torch.zeros(4, 1), 4, fake.steps(max_tokens_per_step=1), BLANK)
    assert [t for t, _ in fake.calls] == [0, 1, 2, 3]


def test_zero_duration_tokens_still_terminate():
    """A model stuck on 'token, stay' is bounded by the emission cap."""
    def decode(prev_tokens, prev_state, encoded, t):
        return one_hot(X, V), 0, prev_state

    steps = TransducerSteps(lambda: None, decode, max_tokens_per_step=4, subsampling_factor=1)
    hyp = transducer_greedy_decode(torch.zeros(5, 1), 5, steps, BLANK)
    assert len(hyp) == 20


def test_transducer_empty_sequence():
    fake = ScriptedSteps({}, V, BLANK)
    hyp = transducer_greedy_decode(torch.zeros(0, 1), 0, fake.steps(max_tokens_per_step=2), BLANK)
    assert hyp.tokens == [] and fake.calls == []


def test_transducer_rejects_zero_token_cap():
    fake = ScriptedSteps({}, V, BLANK)
    with pytest.raises(ValueError):
        transducer_greedy_decode(torch.zeros(2, 1), 2, fake.steps(max_tokens_per_step=0), BLANK)


def test_transducer_step_error_propagates():
    def decode(prev_tokens, prev_state, encoded, t):
        raise RuntimeError('network failed')

    steps = TransducerSteps(lambda: None, decode, max_tokens_per_step=1, subsampling_factor=1)
    with pytest.raises(RuntimeError, match='network failed'):
        transducer_greedy_decode(torch.zeros(2, 1), 2, steps, BLANK)


@pytest.mark.parametrize('seed', range(25))
def test_transducer_properties(seed):
    """Bounded step calls, no blanks, aligned and monotonic frames."""
    rng = random.Random(seed)
    length = rng.randrange(0, 12)
    max_tokens = rng.randrange(1, 4)
    calls = []

    def decode(prev_tokens, prev_state, encoded, t):
        calls.append(t)
        return one_hot(rng.randrange(V), V), rng.choice([NO_DURATION, 0, 1, 2, 3]), prev_state

    steps = TransducerSteps(lambda: None, decode, max_tokens, subsampling_factor=1)
    hyp = transducer_greedy_decode(torch.zeros(max(length, 1), 1), length, steps, BLANK)

    assert len(calls) <= length * (max_tokens + 1)
    assert BLANK not in hyp.tokens
    assert len(hyp.tokens) == len(hyp.frames)
    assert hyp.frames == sorted(hyp.frames)
    assert all(0 <= f < length for f in hyp.frames)


# ---------------------------------------------------------------------------
# TDT duration head
# ---------------------------------------------------------------------------

def _tdt_logits(token, duration_index, vocab_size=V, n_dur=len(TDT_DURATIONS)):
    return torch.cat([one_hot(token, vocab_size), one_hot(duration_index, n_dur)])


def test_with_durations_reads_duration_head():
    frames = []

    def decode(prev_tokens, prev_state, encoded, t):
        frames.append(t)
        if t == 0 and not prev_tokens:
            return _tdt_logits(X, 2), NO_DURATION, prev_state  # durations[2] == 2
        return _tdt_logits(BLANK, 1), NO_DURATION, prev_state

    base = TransducerSteps(lambda: None, decode, max_tokens_per_step=3, subsampling_factor=8)
    steps = with_durations(base, V)
    hyp = transducer_greedy_decode(torch.zeros(4, 1), 4, steps, BLANK)

    assert hyp.tokens == [X]
    assert frames == [0, 2, 3]
    assert steps.subsampling_factor == 8


def test_with_durations_returns_token_logits_only():
    def decode(prev_tokens, prev_state, encoded, t):
        return _tdt_logits(1, 4), NO_DURATION, 'state'

    steps = with_durations(TransducerSteps(lambda: None, decode, 1, 1), V)
    logits, duration, state = steps.decode([], None, torch.zeros(1, 1), 0)
    assert logits.shape == (V,)
    assert duration == TDT_DURATIONS[4]
    assert state == 'state'


def test_with_durations_rejects_wrong_logit_count():
    def decode(prev_tokens, prev_state, encoded, t):
        return torch.zeros(V), NO_DURATION, None

    steps = with_durations(TransducerSteps(lambda: None, decode, 1, 1), V)
    with pytest.raises(ValueError):
        steps.decode([], None, torch.zeros(1, 1), 0)


def test_frames_to_seconds():
    assert frames_to_seconds([0, 1, 10], 0.01, 8) == pytest.approx([0.0, 0.08, 0.8])
