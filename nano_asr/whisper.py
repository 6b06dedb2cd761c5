"""
Whisper exported with onnxruntime's beam-search graph.

Decoding happens inside the graph, so this recognizer only builds the decoder
prompt, runs the network and turns the returned token ids back into text.
No per-token timestamps are produced.
"""
import json
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import torch
from tokenizers.decoders import ByteLevel

from nano_asr.asr import BatchResults, SpeechRecognizer
from nano_asr.config import AsrConfig, OnnxOptions
from nano_asr.preprocessor import get_preprocessor
from nano_asr.result import TimestampedResult
from nano_asr.session import create_session, int_input, run

logger = logging.getLogger(__name__)

FEATURES_SIZE   = 80
MAX_LENGTH      = 448
DEFAULT_LANGUAGE = 'en'

MODEL_FILES = {
    'whisper': {
        'model':        'whisper-*_beamsearch{q}.onnx',
        'vocab':        'vocab.json',
        'added_tokens': 'added_tokens.json',
        'config':       'config.json',
    },
}


# GPT-2 byte-level BPE: pieces spell bytes with printable stand-ins ('Ġ' == b' ').
_BYTE_LEVEL = ByteLevel()


def _is_special(token: str) -> bool:
    return token.startswith('<|') and token.endswith('|>')


class WhisperRecognizer(SpeechRecognizer):
    """Whisper beam-search graph wrapped as a SpeechRecognizer.

    Args:
        session: onnxruntime session of the *_beamsearch.onnx graph.
        tokens: token -> id mapping (vocab.json merged with added_tokens.json).
        preprocessor: whisper log-mel frontend.
    """

    def __init__(self, session, tokens: dict, preprocessor):
        self.session = session
        self.tokens = tokens
        self.id_to_token = {idx: token for token, idx in tokens.items()}
        self.preprocessor = preprocessor
        for name in ('<|startoftranscript|>', '<|transcribe|>', '<|notimestamps|>'):
            if name not in tokens:
                raise ValueError(f"Whisper vocabulary has no {name} token")

    def prompt(self, language: Optional[str] = None) -> list:
        """Decoder prompt: <|startoftranscript|> <|lang|> <|transcribe|> <|notimestamps|>."""
        language = language or DEFAULT_LANGUAGE
        lang_token = f'<|{language}|>'
        if lang_token not in self.tokens:
            raise ValueError(f"Unsupported language {language!r}")
        return [
            self.tokens['<|startoftranscript|>'],
            self.tokens[lang_token],
            self.tokens['<|transcribe|>'],
            self.tokens['<|notimestamps|>'],
        ]

    def decode_text(self, token_ids) -> str:
        """Token ids -> text: special tokens dropped, byte-level BPE undone."""
        pieces = []
        for idx in token_ids:
            token = self.id_to_token.get(int(idx))
            if token is None or _is_special(token):
                continue
            pieces.append(token)
        return _BYTE_LEVEL.decode(pieces).strip()

    @torch.inference_mode()
    def recognize_batch(
        self,
        waveforms: torch.Tensor,
        waveforms_len: torch.Tensor,
        language: Optional[str] = None,
    ) -> BatchResults:
        features, _ = self.preprocessor(waveforms, waveforms_len)  # [B, n_mels, 3000]
        batch_size = features.shape[0]
        prompt = [self.prompt(language)] * batch_size

        out = run(self.session, ['sequences'], {
            'input_features':       features.numpy(),
            'decoder_input_ids':    int_input(self.session, 'decoder_input_ids', prompt),
            'max_length':           np.array([MAX_LENGTH], dtype=np.int32),
            'min_length':           np.array([0], dtype=np.int32),
            'num_beams':            np.array([1], dtype=np.int32),
            'num_return_sequences': np.array([1], dtype=np.int32),
            'length_penalty':       np.array([1.0], dtype=np.float32),
            'repetition_penalty':   np.array([1.0], dtype=np.float32),
        })
        sequences = out['sequences']  # [B, num_return_sequences, L]
        logger.debug("Whisper sequences: %s", sequences.shape)

        def decode_item(b):
            return TimestampedResult(text=self.decode_text(sequences[b, 0]))

        return BatchResults(decode_item, batch_size)


def load_tokens(vocab_path, added_tokens_path) -> dict:
    """Read vocab.json and merge added_tokens.json over it."""
    tokens = json.loads(Path(vocab_path).read_text(encoding='utf-8'))
    tokens.update(json.loads(Path(added_tokens_path).read_text(encoding='utf-8')))
    return tokens


def build(files: dict, config: AsrConfig, options: OnnxOptions = None) -> WhisperRecognizer:
    return WhisperRecognizer(
        session=create_session(files['model'], options),
        tokens=load_tokens(files['vocab'], files['added_tokens']),
        preprocessor=get_preprocessor(f"whisper{config.get('features_size', FEATURES_SIZE)}"),
    )
