"""
Feature frontends: waveforms -> acoustic features, one per model family.

All take a batch of 16 kHz waveforms [B, N] with valid sample counts [B] and
return (features, feature_lengths) laid out the way the family's encoder
expects them.
"""
import librosa
import torch
import torch.nn as nn
import torchaudio
from torchaudio.compliance import kaldi

SAMPLE_RATE = 16000
HOP_LENGTH  = 160  # 10 ms
WIN_LENGTH  = 400  # 25 ms


def _valid_mask(lengths: torch.Tensor, size: int) -> torch.Tensor:
    """[B, size] bool, True inside each item's valid length."""
    return torch.arange(size, device=lengths.device).unsqueeze(0) < lengths.unsqueeze(1)


class NemoPreprocessor(nn.Module):
    """Log mel spectrogram + per-feature normalization (mirrors NeMo's featurizer).

    Output: [B, n_mels, T'], lengths [B].
    """

    def __init__(self, n_mels: int = 80, n_fft: int = 512,
                 log_zero_guard: float = 2 ** -24, preemph: float = 0.97):
        super().__init__()
        self.n_fft = n_fft
        self.log_zero_guard = log_zero_guard
        self.preemph = preemph
        fb = librosa.filters.mel(sr=SAMPLE_RATE, n_fft=n_fft, n_mels=n_mels,
                                 fmin=0.0, fmax=SAMPLE_RATE / 2, norm='slaney')
        self.register_buffer('window', torch.hann_window(WIN_LENGTH, periodic=False))
        self.register_buffer('fb', torch.from_numpy(fb).float())  # [n_mels, n_fft//2+1]

    def forward(self, waveforms: torch.Tensor, lengths: torch.Tensor):
        lengths = lengths.long()
        x = waveforms.float()
        x = torch.cat([x[:, :1], x[:, 1:] - self.preemph * x[:, :-1]], dim=1)
        x = x.masked_fill(~_valid_mask(lengths, x.shape[1]), 0.0)

        stft = torch.stft(
            x, n_fft=self.n_fft, hop_length=HOP_LENGTH, win_length=WIN_LENGTH,
            window=self.window, center=True, pad_mode='constant', return_complex=True,
        )  # [B, n_fft//2+1, T']
        power   = stft.abs().pow(2)
        mel     = torch.matmul(self.fb, power)  # [B, n_mels, T']
        log_mel = torch.log(mel + self.log_zero_guard)

        feat_lens = lengths // HOP_LENGTH + 1
        valid = _valid_mask(feat_lens, log_mel.shape[-1]).unsqueeze(1)  # [B, 1, T']
        n     = feat_lens.view(-1, 1, 1).to(log_mel.dtype)
        mean  = (log_mel * valid).sum(dim=-1, keepdim=True) / n
        var   = ((log_mel - mean).pow(2) * valid).sum(dim=-1, keepdim=True) / (n - 1).clamp(min=1)
        feats = (log_mel - mean) / (var.sqrt() + 1e-5)
        return feats.masked_fill(~valid, 0.0), feat_lens


class GigaamPreprocessor(nn.Module):
    """GigaAM v2 log mel spectrogram (64 mels, no centering). Output: [B, 64, T']."""

    def __init__(self, n_mels: int = 64):
        super().__init__()
        self.mel = torchaudio.transforms.MelSpectrogram(
            sample_rate=SAMPLE_RATE, n_fft=WIN_LENGTH, win_length=WIN_LENGTH,
            hop_length=HOP_LENGTH, n_mels=n_mels, center=False,
        )

    def forward(self, waveforms: torch.Tensor, lengths: torch.Tensor):
        lengths = lengths.long()
        x = waveforms.float()
        if x.shape[1] < WIN_LENGTH:
            x = nn.functional.pad(x, (0, WIN_LENGTH - x.shape[1]))
        feats = self.mel(x).clamp(min=1e-9, max=1e9).log()
        feat_lens = torch.div(lengths - WIN_LENGTH, HOP_LENGTH, rounding_mode='floor') + 1
        return feats, feat_lens.clamp(min=0)


class KaldiPreprocessor(nn.Module):
    """Kaldi-compatible 80-bin fbank (no dither, no edge snipping). Output: [B, T', 80]."""

    def __init__(self, n_mels: int = 80):
        super().__init__()
        self.n_mels = n_mels

    def forward(self, waveforms: torch.Tensor, lengths: torch.Tensor):
        lengths = lengths.long()
        items = []
        for wav, n in zip(waveforms.float(), lengths.tolist()):
            if n == 0:
                items.append(torch.zeros(0, self.n_mels))
                continue
            items.append(kaldi.fbank(
                wav[:n].unsqueeze(0), num_mel_bins=self.n_mels, dither=0.0,
                snip_edges=False, sample_frequency=SAMPLE_RATE,
            ))  # [T', n_mels]

        feat_lens = torch.tensor([f.shape[0] for f in items], dtype=torch.long)
        feats = torch.zeros(len(items), int(feat_lens.max()) if items else 0, self.n_mels)
        for i, f in enumerate(items):
            feats[i, :f.shape[0]] = f
        return feats, feat_lens


class WhisperPreprocessor(nn.Module):
    """Whisper log mel spectrogram over a fixed 30 s window. Output: [B, n_mels, 3000]."""

    CHUNK_LENGTH = 30
    N_SAMPLES    = CHUNK_LENGTH * SAMPLE_RATE
    N_FRAMES     = N_SAMPLES // HOP_LENGTH

    def __init__(self, n_mels: int = 80):
        super().__init__()
        fb = librosa.filters.mel(sr=SAMPLE_RATE, n_fft=WIN_LENGTH, n_mels=n_mels)
        self.register_buffer('window', torch.hann_window(WIN_LENGTH))
        self.register_buffer('fb', torch.from_numpy(fb).float())  # [n_mels, 201]

    def forward(self, waveforms: torch.Tensor, lengths: torch.Tensor):
        lengths = lengths.long()
        x = waveforms.float()
        x = x.masked_fill(~_valid_mask(lengths, x.shape[1]), 0.0)
        if x.shape[1] < self.N_SAMPLES:
            x = nn.functional.pad(x, (0, self.N_SAMPLES - x.shape[1]))
        x = x[:, :self.N_SAMPLES]

        stft = torch.stft(x, n_fft=WIN_LENGTH, hop_length=HOP_LENGTH,
                          window=self.window, return_complex=True)
        power   = stft[..., :-1].abs().pow(2)     # [B, 201, 3000]
        log_mel = torch.matmul(self.fb, power).clamp(min=1e-10).log10()
        log_mel = torch.maximum(log_mel, log_mel.amax(dim=(-2, -1), keepdim=True) - 8.0)
        feats   = (log_mel + 4.0) / 4.0
        return feats, torch.full_like(lengths, self.N_FRAMES)


_PREPROCESSORS = {
    'nemo80':     lambda: NemoPreprocessor(n_mels=80),
    'nemo128':    lambda: NemoPreprocessor(n_mels=128),
    'gigaam':     GigaamPreprocessor,
    'kaldi':      KaldiPreprocessor,
    'whisper80':  lambda: WhisperPreprocessor(n_mels=80),
    'whisper128': lambda: WhisperPreprocessor(n_mels=128),
}


def get_preprocessor(name: str) -> nn.Module:
    if name not in _PREPROCESSORS:
        raise ValueError(f"Unknown preprocessor {name!r}; available: {', '.join(_PREPROCESSORS)}")
    return _PREPROCESSORS[name]().eval()
