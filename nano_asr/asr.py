"""
Recognizers: waveform -> features -> encoder -> greedy decoding -> TimestampedResult.

A Recognizer is assembled from parts rather than subclassed per model family:
the feature frontend, the family's encode function and, for transducers, its
TransducerSteps. Without steps the encoder output is treated as CTC log-probs.
"""
import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterator, Optional, Tuple, Union

import numpy as np
import torch

from nano_asr.audio import (DEFAULT_CHUNK_LENGTH, TARGET_SAMPLE_RATE, convert_to_wav,
                            load_audio, pad_batch, resample, split_audio, to_tensor)
from nano_asr.decoding import (TransducerSteps, ctc_greedy_decode, frames_to_seconds,
                               transducer_greedy_decode)
from nano_asr.result import TimestampedResult, combine_results
from nano_asr.vocab import Vocabulary, decode_tokens

logger = logging.getLogger(__name__)

# 10 ms feature hop at 16 kHz
FRAME_DURATION = 0.01

EncodeFn = Callable[[torch.Tensor, torch.Tensor], Tuple[torch.Tensor, torch.Tensor]]
AudioLike = Union[str, Path, np.ndarray, torch.Tensor]


class BatchResults:
    """Lazy, restartable results of one batch: decoding runs as items are consumed.

    Each iteration starts over from the encoded batch; items never share state.
    """

    def __init__(self, decode_item: Callable[[int], TimestampedResult], batch_size: int):
        self._decode_item = decode_item
        self._batch_size  = batch_size

    def __len__(self) -> int:
        return self._batch_size

    def __iter__(self) -> Iterator[TimestampedResult]:
        for b in range(self._batch_size):
            yield self._decode_item(b)

    def parallel(self, max_workers: Optional[int] = None) -> Iterator[TimestampedResult]:
        """Decode items on a thread pool; results are yielded in batch order."""
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            yield from pool.map(self._decode_item, range(self._batch_size))


class SpeechRecognizer(ABC):
    """Common entry points; families implement recognize_batch()."""

    @abstractmethod
    def recognize_batch(
        self,
        waveforms: torch.Tensor,
        waveforms_len: torch.Tensor,
        language: Optional[str] = None,
    ):
        """Recognize [B, N] 16 kHz waveforms; returns one TimestampedResult per item, lazily."""

    def recognize(
        self,
        audio: AudioLike,
        sample_rate: int = TARGET_SAMPLE_RATE,
        language: Optional[str] = None,
    ) -> TimestampedResult:
        """Recognize one waveform (file path, numpy array or tensor)."""
        audio = _prepare(audio, sample_rate)
        batch, lengths = pad_batch([audio])
        return next(iter(self.recognize_batch(batch, lengths, language)))

    def recognize_long(
        self,
        audio: AudioLike,
        sample_rate: int = TARGET_SAMPLE_RATE,
        language: Optional[str] = None,
        chunk_length: float = DEFAULT_CHUNK_LENGTH,
    ) -> TimestampedResult:
        """Recognize audio of any length in fixed chunks, merging the results."""
        audio = _prepare(audio, sample_rate)
        results, offsets = [], []
        for chunk, offset in split_audio(audio, TARGET_SAMPLE_RATE, chunk_length):
            logger.info("Recognizing chunk at %.1fs (%d samples)", offset, len(chunk))
            batch, lengths = pad_batch([chunk])
            results.append(next(iter(self.recognize_batch(batch, lengths, language))))
            offsets.append(offset)
        return combine_results(results, offsets)


class Recognizer(SpeechRecognizer):
    """Greedy CTC / transducer speech recognizer.

    Args:
        preprocessor: feature frontend, (waveforms [B, N], lengths [B]) -> (features, lengths).
        encode: (features, lengths) -> (encoded [B, T, D], encoded_lengths [B]).
        vocab: token vocabulary.
        subsampling_factor: encoder time compression.
        transducer: step functions for transducer families; None means CTC.
        frame_duration: seconds per feature frame.
    """

    def __init__(
        self,
        preprocessor: Callable,
        encode: EncodeFn,
        vocab: Vocabulary,
        subsampling_factor: int,
        transducer: Optional[TransducerSteps] = None,
        frame_duration: float = FRAME_DURATION,
    ):
        self.preprocessor = preprocessor
        self.encode = encode
        self.vocab = vocab
        self.subsampling_factor = subsampling_factor
        self.transducer = transducer
        self.frame_duration = frame_duration

    def _result(self, hyp) -> TimestampedResult:
        seconds = frames_to_seconds(hyp.frames, self.frame_duration, self.subsampling_factor)
        return decode_tokens(self.vocab, hyp.tokens, seconds)

    @torch.inference_mode()
    def recognize_batch(
        self,
        waveforms: torch.Tensor,
        waveforms_len: torch.Tensor,
        language: Optional[str] = None,
    ) -> BatchResults:
        """Recognize a batch of 16 kHz waveforms.

        Features and encoder outputs are computed immediately; decoding of each
        item is deferred until the returned BatchResults is iterated.

        Args:
            waveforms:     [B, N] float32.
            waveforms_len: [B] valid sample counts.
            language:      unused by CTC / transducer models.
        """
        features, features_len = self.preprocessor(waveforms, waveforms_len)
        encoded, encoded_len = self.encode(features, features_len)
        logger.debug("Encoded batch: %s, lengths %s", tuple(encoded.shape), encoded_len.tolist())

        if self.transducer is None:
            def decode_item(b):
                hyp = next(ctc_greedy_decode(encoded[b:b + 1], encoded_len[b:b + 1], self.vocab.blank_id))
                return self._result(hyp)
        else:
            def decode_item(b):
                hyp = transducer_greedy_decode(
                    encoded[b], int(encoded_len[b]), self.transducer, self.vocab.blank_id,
                )
                return self._result(hyp)

        return BatchResults(decode_item, encoded.shape[0])


def _prepare(audio: AudioLike, sample_rate: int) -> np.ndarray:
    if isinstance(audio, (str, Path)):
        path = str(audio)
        wav = convert_to_wav(path)
        try:
            audio, sample_rate = load_audio(wav)
        finally:
            if wav != path:
                os.remove(wav)
    audio = to_tensor(audio).reshape(-1).numpy()
    return resample(audio, sample_rate)
