"""NeMo FastConformer exports: CTC, RNN-T and TDT heads."""
import numpy as np
import torch

from nano_asr.asr import Recognizer
from nano_asr.config import AsrConfig, OnnxOptions
from nano_asr.decoding import NO_DURATION, TransducerSteps, with_durations
from nano_asr.preprocessor import get_preprocessor
from nano_asr.session import create_session, input_meta, int_input, run
from nano_asr.vocab import load_vocab

SUBSAMPLING_FACTOR  = 8
MAX_TOKENS_PER_STEP = 10
FEATURES_SIZE       = 80
PRED_HIDDEN         = 640

MODEL_FILES = {
    'nemo-conformer-ctc': {
        'model':  'model{q}.onnx',
        'vocab':  'vocab.txt',
        'config': 'config.json',
    },
    'nemo-conformer-rnnt': {
        'encoder':       'encoder-model{q}.onnx',
        'decoder_joint': 'decoder_joint-model{q}.onnx',
        'vocab':         'vocab.txt',
        'config':        'config.json',
    },
}
MODEL_FILES['nemo-conformer-tdt'] = MODEL_FILES['nemo-conformer-rnnt']


def _static_dim(dim, default: int) -> int:
    """Declared input dims may be symbolic ('batch'); fall back to a default."""
    return dim if isinstance(dim, int) and dim > 0 else default


class NemoCtcEncoder:
    """audio_signal [B, n_mels, T] -> logprobs [B, T', V]."""

    def __init__(self, session, subsampling_factor: int):
        self.session = session
        self.subsampling_factor = subsampling_factor

    def __call__(self, features: torch.Tensor, lengths: torch.Tensor):
        out = run(self.session, ['logprobs'], {
            'audio_signal': features.numpy(),
            'length':       int_input(self.session, 'length', lengths.tolist()),
        })
        encoded_len = torch.div(lengths - 1, self.subsampling_factor, rounding_mode='floor') + 1
        return torch.from_numpy(out['logprobs']), encoded_len.clamp(min=0)


class NemoTransducer:
    """Encoder + fused decoder_joint network; state is the prediction LSTM (h, c) pair."""

    def __init__(self, encoder, decoder_joint, blank_id: int):
        self.encoder = encoder
        self.decoder_joint = decoder_joint
        self.blank_id = blank_id

    def encode(self, features: torch.Tensor, lengths: torch.Tensor):
        out = run(self.encoder, ['outputs', 'encoded_lengths'], {
            'audio_signal': features.numpy(),
            'length':       int_input(self.encoder, 'length', lengths.tolist()),
        })
        encoded = torch.from_numpy(out['outputs']).transpose(1, 2).contiguous()  # [B, D, T] -> [B, T, D]
        return encoded, torch.from_numpy(out['encoded_lengths']).long()

    def create_state(self):
        states = []
        for name in ('input_states_1', 'input_states_2'):
            shape = input_meta(self.decoder_joint, name).shape  # [layers, batch, hidden]
            layers = _static_dim(shape[0], 1)
            hidden = _static_dim(shape[2], PRED_HIDDEN)
            states.append(np.zeros((layers, 1, hidden), dtype=np.float32))
        return tuple(states)

    def decode(self, prev_tokens, prev_state, encoded: torch.Tensor, t: int):
        last = prev_tokens[-1] if prev_tokens else self.blank_id
        out = run(self.decoder_joint, ['outputs', 'output_states_1', 'output_states_2'], {
            'encoder_outputs': encoded[t].numpy()[None, :, None],  # [1, D, 1]
            'targets':         int_input(self.decoder_joint, 'targets', [[last]]),
            'target_length':   int_input(self.decoder_joint, 'target_length', [1]),
            'input_states_1':  prev_state[0],
            'input_states_2':  prev_state[1],
        })
        logits = torch.from_numpy(out['outputs']).reshape(-1)
        return logits, NO_DURATION, (out['output_states_1'], out['output_states_2'])

    def steps(self, config: AsrConfig) -> TransducerSteps:
        return TransducerSteps(
            create_state=self.create_state,
            decode=self.decode,
            max_tokens_per_step=config.get('max_tokens_per_step', MAX_TOKENS_PER_STEP),
            subsampling_factor=config.get('subsampling_factor', SUBSAMPLING_FACTOR),
        )


def _preprocessor(config: AsrConfig):
    return get_preprocessor(f"nemo{config.get('features_size', FEATURES_SIZE)}")


def build_ctc(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    subsampling = config.get('subsampling_factor', SUBSAMPLING_FACTOR)
    return Recognizer(
        preprocessor=_preprocessor(config),
        encode=NemoCtcEncoder(create_session(files['model'], options), subsampling),
        vocab=load_vocab(files['vocab']),
        subsampling_factor=subsampling,
    )


def build_rnnt(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    vocab = load_vocab(files['vocab'])
    model = NemoTransducer(
        create_session(files['encoder'], options),
        create_session(files['decoder_joint'], options),
        vocab.blank_id,
    )
    steps = model.steps(config)
    return Recognizer(
        preprocessor=_preprocessor(config),
        encode=model.encode,
        vocab=vocab,
        subsampling_factor=steps.subsampling_factor,
        transducer=steps,
    )


def build_tdt(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    """RNN-T whose joint output carries duration logits after the vocabulary."""
    recognizer = build_rnnt(files, config, options)
    recognizer.transducer = with_durations(recognizer.transducer, recognizer.vocab.size)
    return recognizer
