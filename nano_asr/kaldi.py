"""Kaldi / icefall stateless transducer exports (also used for Vosk models)."""
import torch

from nano_asr.asr import Recognizer
from nano_asr.config import AsrConfig, OnnxOptions
from nano_asr.decoding import NO_DURATION, TransducerSteps
from nano_asr.preprocessor import get_preprocessor
from nano_asr.session import create_session, int_input, run
from nano_asr.vocab import load_vocab

SUBSAMPLING_FACTOR  = 4
MAX_TOKENS_PER_STEP = 1
CONTEXT_SIZE        = 2

MODEL_FILES = {
    'kaldi-rnnt': {
        'encoder': '*/encoder{q}.onnx',
        'decoder': '*/decoder{q}.onnx',
        'joiner':  '*/joiner{q}.onnx',
        'vocab':   '*/tokens.txt',
        'config':  'config.json',
    },
}
MODEL_FILES['vosk'] = MODEL_FILES['kaldi-rnnt']


class KaldiTransducer:
    """Stateless decoder over the last CONTEXT_SIZE tokens.

    The decoder output depends only on its token context, so the per-utterance
    state is a {context: decoder_out} cache, filled in place.
    """

    def __init__(self, encoder, decoder, joiner, blank_id: int):
        self.encoder = encoder
        self.decoder = decoder
        self.joiner  = joiner
        self.blank_id = blank_id

    def encode(self, features: torch.Tensor, lengths: torch.Tensor):
        out = run(self.encoder, ['encoder_out', 'encoder_out_lens'], {
            'x':      features.numpy(),  # [B, T, 80]
            'x_lens': int_input(self.encoder, 'x_lens', lengths.tolist()),
        })
        return torch.from_numpy(out['encoder_out']), torch.from_numpy(out['encoder_out_lens']).long()

    def context(self, prev_tokens) -> tuple:
        """Last CONTEXT_SIZE tokens, left-padded with -1 then blank."""
        return tuple([-1, self.blank_id, *prev_tokens][-CONTEXT_SIZE:])

    def create_state(self) -> dict:
        return {}

    def decode(self, prev_tokens, prev_state, encoded: torch.Tensor, t: int):
        context = self.context(prev_tokens)
        decoder_out = prev_state.get(context)
        if decoder_out is None:
            decoder_out = run(self.decoder, ['decoder_out'], {
                'y': int_input(self.decoder, 'y', [context]),
            })['decoder_out']
            prev_state[context] = decoder_out

        out = run(self.joiner, ['logit'], {
            'encoder_out': encoded[t].numpy()[None],  # [1, D]
            'decoder_out': decoder_out,
        })
        return torch.from_numpy(out['logit']).reshape(-1), NO_DURATION, prev_state

    def steps(self, config: AsrConfig) -> TransducerSteps:
        return TransducerSteps(
            create_state=self.create_state,
            decode=self.decode,
            max_tokens_per_step=config.get('max_tokens_per_step', MAX_TOKENS_PER_STEP),
            subsampling_factor=config.get('subsampling_factor', SUBSAMPLING_FACTOR),
        )


def build_rnnt(files: dict, config: AsrConfig, options: OnnxOptions = None) -> Recognizer:
    vocab = load_vocab(files['vocab'])
    model = KaldiTransducer(
        create_session(files['encoder'], options),
        create_session(files['decoder'], options),
        create_session(files['joiner'], options),
        vocab.blank_id,
    )
    steps = model.steps(config)
    return Recognizer(
        preprocessor=get_preprocessor('kaldi'),
        encode=model.encode,
        vocab=vocab,
        subsampling_factor=steps.subsampling_factor,
        transducer=steps,
    )
