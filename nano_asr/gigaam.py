"""GigaAM v2 exports (CTC and RNN-T heads)."""
import numpy as np
import torch

from nano_asr.asr import Recognizer
from nano_asr.config import AsrConfig, OnnxOptions
from nano_asr.decoding import NO_DURATION, TransducerSteps
from nano_asr.preprocessor import get_preprocessor
from nano_asr.session import create_session, int_input, run
from nano_asr.vocab import load_vocab

SUBSAMPLING_FACTOR  = 4
MAX_TOKENS_PER_STEP = 3
PRED_HIDDEN         = 320

MODEL_FILES = {
    'gigaam-v2-ctc': {
        'model':  'v2_ctc{q}.onnx',
        'vocab':  'v2_vocab.txt',
        'config': 'config.json',
    },
    'gigaam-v2-rnnt': {
        'encoder': 'v2_rnnt_encoder{q}.onnx',
        'decoder': 'v2_rnnt_decoder{q}.onnx',
        'joint':   'v2_rnnt_joint{q}.onnx',
        'vocab':   'v2_vocab.txt',
        'config':  'config.json',
    },
}


class GigaamCtcEncoder:
    """features [B, 64, T] -> log_probs [B, T', V]."""

    def __init__(self, session, subsampling_factor: int):
        self.session = session
        self.subsampling_factor = subsampling_factor

    def __call__(self, features: torch.Tensor, lengths: torch.Tensor):
        out = run(self.session, ['log_probs'], {
            'features':        features.numpy(),
            'feature_lengths': int_input(self.session, 'feature_lengths', lengths.tolist()),
        })
        encoded_len = torch.div(lengths - 1, self.subsampling_factor, rounding_mode='floor') + 1
        return torch.from_numpy(out['log_probs']), encoded_len.clamp(min=0)


class GigaamTransducer:
    """Separate encoder / LSTM decoder / joint networks.

    The state is the decoder LSTM (h, c) *before* the last emitted token was
    fed, so each step re-runs the decoder on that token. A blank keeps the old
    pair, which makes the next step see the same inputs again.
    """

    def __init__(self, encoder, decoder, joint, blank_id: int):
        self.encoder = encoder
        self.decoder = decoder
        self.joint   = joint
        self.blank_id = blank_id

    def encode(self, features: torch.Tensor, lengths: torch.Tensor):
        out = run(self.encoder, ['encoded', 'encoded_len'], {
            'audio_signal': features.numpy(),
            'length':       int_input(self.encoder, 'length', lengths.tolist()),
        })
        encoded = torch.from_numpy(out['encoded']).transpose(1, 2).contiguous()  # [B, D, T] -> [B, T, D]
        return encoded, torch.from_numpy(out['encoded_len']).long()

    def create_state(self):
        return [np.zeros((1, 1, PRED_HIDDEN), dtype=np.float32),
                np.zeros((1, 1, PRED_HIDDEN), dtype=np.float32)]

    def decode(self, prev_tokens, prev_state, encoded: torch.Tensor, t: int):
        last = prev_tokens[-1] if prev_tokens else self.blank_id
        dec = run(self.decoder, ['dec', 'h', 'c'], {
            'x':   int_input(self.decoder, 'x', [[last]]),
            'h.1': prev_state[0],
            'c.1': prev_state[1],
        })
        out = run(self.joint, ['joint'], {
            'enc': encoded[t].numpy()[None, :, None],  # [1, D, 1]
            'dec': dec['dec'].transpose(0, 2, 1),
        })
        logits = torch.from_numpy(out['joint']).reshape(-1)
        return logits, NO_DURATION, [dec['h'], dec['c']]

    def steps(self, config: AsrConfig) -> TransducerSteps:
        return TransducerSteps(
            create_state=self.create_state,
            decode=self.decode,
            max_tokens_per_step=config.get('max_tokens_per_step', MAX_TOKENS_PER_STEP),
            subsampling_factor=config.get('subsampling_factor', SUBSAMPLING_FACTOR),
        )


def build_ctc(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    subsampling = config.get('subsampling_factor', SUBSAMPLING_FACTOR)
    return Recognizer(
        preprocessor=get_preprocessor('gigaam'),
        encode=GigaamCtcEncoder(create_session(files['model'], options), subsampling),
        vocab=load_vocab(files['vocab']),
        subsampling_factor=subsampling,
    )


def build_rnnt(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    vocab = load_vocab(files['vocab'])
    model = GigaamTransducer(
        create_session(files['encoder'], options),
        create_session(files['decoder'], options),
        create_session(files['joint'], options),
        vocab.blank_id,
    )
    steps = model.steps(config)
    return Recognizer(
        preprocessor=get_preprocessor('gigaam'),
        encode=model.encode,
        vocab=vocab,
        subsampling_factor=steps.subsampling_factor,
        transducer=steps,
    )
