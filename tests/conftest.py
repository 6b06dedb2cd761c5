"""Shared fakes: scripted step functions and onnxruntime-like sessions."""
from collections import namedtuple

import pytest
import torch

from nano_asr.decoding import NO_DURATION, TransducerSteps
from nano_asr.vocab import Vocabulary

FakeInput = namedtuple('FakeInput', ['name', 'type', 'shape'])


class FakeSession:
    """Stands in for onnxruntime.InferenceSession: declared inputs + a run() callback."""

    def __init__(self, inputs, fn):
        self._inputs = [FakeInput(*i) for i in inputs]
        self.fn = fn
        self.calls = []

    def get_inputs(self):
        return self._inputs

    def run(self, output_names, feeds):
        self.calls.append(feeds)
        out = self.fn(feeds)
        return [out[name] for name in output_names]


def one_hot(token: int, size: int) -> torch.Tensor:
    logits = torch.zeros(size)
    logits[token] = 1.0
    return logits


class ScriptedSteps:
    """Step function replaying a per-frame script of (token, duration) pairs.

    script[t] lists the outputs for successive calls on frame t; once exhausted
    the frame answers blank. Every call is recorded as (t, tuple(prev_tokens)).
    """

    def __init__(self, script: dict, vocab_size: int, blank_id: int):
        self.script = script
        self.vocab_size = vocab_size
        self.blank_id = blank_id
        self.calls = []
        self._seen = {}

    def create_state(self):
        return {'emitted': 0}

    def decode(self, prev_tokens, prev_state, encoded, t):
        self.calls.append((t, tuple(prev_tokens)))
        k = self._seen.get(t, 0)
        self._seen[t] = k + 1
        outputs = self.script.get(t, [])
        token, duration = outputs[k] if k < len(outputs) else (self.blank_id, NO_DURATION)
        return one_hot(token, self.vocab_size), duration, {'emitted': prev_state['emitted'] + 1}

    def steps(self, max_tokens_per_step: int, subsampling_factor: int = 1) -> TransducerSteps:
        return TransducerSteps(
            create_state=self.create_state,
            decode=self.decode,
            max_tokens_per_step=max_tokens_per_step,
            subsampling_factor=subsampling_factor,
        )


@pytest.fixture
def abc_vocab():
    """{0: 'a', 1: 'b', 2: '<blk>'}"""
    return Vocabulary.from_tokens({'a': 0, 'b': 1, '<blk>': 2})


@pytest.fixture
def word_vocab():
    return Vocabulary.from_tokens({'▁hel': 0, 'lo': 1, '▁world': 2, ',': 3, '<blk>': 4})
