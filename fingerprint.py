import logging
from dataclasses import dataclass, field

import numpy as np
import librosa
from scipy.ndimage import maximum_filter

logger = logging.getLogger(__name__)

FREQ_BITS = 12   # n_fft 4096 gives 2049 bins
DT_BITS = 8      # pairs are at most 200 frames apart


@dataclass
class SongFingerprint:
    hashes: list = field(default_factory=list)
    duration: float = 0.0
    sample_rate: int = 0

    @property
    def hash_count(self):
        return len(self.hashes)

    @property
    def metadata(self):
        return {"duration": self.duration, "sample_rate": self.sample_rate, "hash_count": self.hash_count}


@dataclass
class QueryFingerprint:
    hashes: list = field(default_factory=list)
    duration: float = 0.0


def pack_hash(freq_anchor, freq_target, delta_t):
    """Packs (freq_anchor, freq_target, delta_t) into one non-negative integer."""
    return (int(freq_anchor) << (FREQ_BITS + DT_BITS)) | (int(freq_target) << DT_BITS) | int(delta_t)


class AudioFingerprinter:
    def __init__(self):
        # Constants for DSP
        self.sampling_rate = 22050  # Standard for audio analysis
        self.n_fft = 4096           # Window size for FFT
        self.hop_length = 2048      # Overlap between windows
        self.fan_value = 40         # How many neighbors to pair with each peak
        self.max_delta_t = 200
        self.amp_min = -40          # Ignore silence below this many dB

    def load_audio(self, file_path):
        """Reads any file librosa can decode as mono samples at our sampling rate."""
        y, sr = librosa.load(file_path, sr=self.sampling_rate, mono=True)
        logger.debug("Loaded %s: %d samples at %d Hz", file_path, len(y), sr)
        return y, sr

    def samples_to_spectrogram(self, samples, sample_rate):
        y = np.asarray(samples, dtype=np.float32)
        if sample_rate != self.sampling_rate:
            y = librosa.resample(y, orig_sr=sample_rate, target_sr=self.sampling_rate)

        D = librosa.stft(y, n_fft=self.n_fft, hop_length=self.hop_length)
        S = librosa.amplitude_to_db(np.abs(D), ref=np.max)
        return S

    def find_peaks(self, S, amp_min=None):
        """
        Finds local maxima (peaks) in the spectrogram.
        These are the 'stars' in our constellation.
        """
        if amp_min is None:
            amp_min = self.amp_min

        # This structure defines the "local" area
        struct = np.ones((10, 10))

        # Replaces each pixel with the max value in its neighborhood
        local_max = maximum_filter(S, footprint=struct)

        # True where the original pixel equals the local max, and loud enough
        background = (S == local_max) & (S > amp_min)

        # peaks is an array of [frequency_index, time_index]
        return np.argwhere(background)

    def generate_hashes(self, peaks):
        """
        Combinatorial Hashing:
        Don't just store peaks. Store relationships between peaks.
        Hash = (freq_anchor, freq_target, time_difference)
        """
        hashes = []

        # Sort peaks by time to process sequentially
        peaks = sorted(peaks.tolist() if isinstance(peaks, np.ndarray) else peaks, key=lambda x: x[1])

        for i in range(len(peaks)):
            freq_anchor, time_anchor = peaks[i]

            # Look at the next 'fan_value' peaks to create pairs
            for j in range(1, self.fan_value):
                if i + j >= len(peaks):
                    break
                freq_target, time_target = peaks[i + j]

                delta_t = time_target - time_anchor
                # Target must be within the time window to be a valid pair
                if 0 < delta_t < self.max_delta_t:
                    hashes.append(pack_hash(freq_anchor, freq_target, delta_t))

        return hashes

    def _hashes_of(self, samples, sample_rate):
        y = np.asarray(samples, dtype=np.float32)
        duration = y.size / float(sample_rate)
        if y.size == 0 or not np.any(y):
            # Pure silence: every bin would tie for the maximum
            logger.warning("Audio is empty or silent, no hashes generated")
            return [], duration

        S = self.samples_to_spectrogram(y, sample_rate)
        peaks = self.find_peaks(S, amp_min=self.amp_min)
        hashes = self.generate_hashes(peaks)
        logger.debug("Generated %d hashes from %d peaks (%.2fs)", len(hashes), len(peaks), duration)
        return hashes, duration

    def generate_song_fingerprint(self, samples, sample_rate):
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        hashes, duration = self._hashes_of(samples, sample_rate)
        return SongFingerprint(hashes=hashes, duration=duration, sample_rate=int(sample_rate))

    def generate_query_fingerprint(self, samples, sample_rate):
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        hashes, duration = self._hashes_of(samples, sample_rate)
        return QueryFingerprint(hashes=hashes, duration=duration)
