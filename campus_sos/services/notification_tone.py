from __future__ import annotations

import io
import math
import sys
import wave
from array import array
from dataclasses import dataclass
from functools import lru_cache

SAMPLE_RATE = 22050
PEAK_GAIN = 0.3
SUSTAIN_GAIN = 0.1


@dataclass(frozen=True)
class Beep:
    frequency_hz: float
    start_s: float
    attack_s: float
    decay_s: float
    stop_s: float


# Two rising beeps: A5 then a higher note overlapping its tail.
ALERT_BEEPS = (
    Beep(frequency_hz=880.0, start_s=0.0, attack_s=0.01, decay_s=0.1, stop_s=0.3),
    Beep(frequency_hz=1100.0, start_s=0.15, attack_s=0.01, decay_s=0.1, stop_s=0.45),
)


def _envelope(beep: Beep, t: float) -> float:
    local = t - beep.start_s
    length = beep.stop_s - beep.start_s
    if local < 0 or local > length:
        return 0.0
    if local <= beep.attack_s:
        return PEAK_GAIN * local / beep.attack_s
    if local <= beep.decay_s:
        span = beep.decay_s - beep.attack_s
        return PEAK_GAIN + (SUSTAIN_GAIN - PEAK_GAIN) * (local - beep.attack_s) / span
    span = length - beep.decay_s
    return SUSTAIN_GAIN * max(0.0, 1.0 - (local - beep.decay_s) / span)


def render_samples(beeps: tuple[Beep, ...] = ALERT_BEEPS, sample_rate: int = SAMPLE_RATE) -> array:
    duration = max(beep.stop_s for beep in beeps)
    total = int(math.ceil(duration * sample_rate))
    samples = array("h")
    for index in range(total):
        t = index / sample_rate
        value = 0.0
        for beep in beeps:
            gain = _envelope(beep, t)
            if gain:
                value += gain * math.sin(2 * math.pi * beep.frequency_hz * (t - beep.start_s))
        value = max(-1.0, min(1.0, value))
        samples.append(int(value * 32767))
    return samples


@lru_cache(maxsize=1)
def notification_wav() -> bytes:
    samples = render_samples()
    if sys.byteorder == "big":
        samples.byteswap()
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(SAMPLE_RATE)
        handle.writeframes(samples.tobytes())
    return buffer.getvalue()
