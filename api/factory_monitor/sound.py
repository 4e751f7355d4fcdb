"""
Audible alerting.

``AlertSoundDriver`` watches the store and decides whether an alarm should be
sounding and with which waveform. Actual sound output lives behind an
``AudioBackend``; the HTTP app uses one that forwards pulse events to the
dashboard over the WebSocket, where the browser synthesises them.

Browsers refuse to play audio before the user has interacted with the page,
so nothing is played until ``grant_permission()`` has been called once.
"""
import asyncio
from dataclasses import asdict, dataclass
from typing import Callable, Iterable, Optional, Protocol, Tuple

import structlog

from .models import Alert, Settings, Severity, SoundProfile

logger = structlog.get_logger()


@dataclass(frozen=True)
class EnvelopeStep:
    at: float  # seconds from pulse start
    gain: float
    ramp: str  # "set", "linear" or "exponential"


@dataclass(frozen=True)
class Waveform:
    profile: SoundProfile
    critical: bool
    oscillator: str
    frequency: float
    sweep_to: Optional[float]
    pulse_duration: float
    pause_duration: float
    envelope: Tuple[EnvelopeStep, ...]

    @property
    def interval(self) -> float:
        return self.pulse_duration + self.pause_duration

    def to_dict(self) -> dict:
        data = asdict(self)
        data["profile"] = self.profile.value
        data["interval"] = self.interval
        return data


def _hold_envelope(pulse: float, gain: float = 0.3) -> Tuple[EnvelopeStep, ...]:
    return (
        EnvelopeStep(0.0, 0.0, "set"),
        EnvelopeStep(0.05, gain, "linear"),
        EnvelopeStep(pulse, gain, "linear"),
        EnvelopeStep(pulse + 0.05, 0.0, "linear"),
    )


def waveform_for(profile: SoundProfile, critical: bool) -> Waveform:
    if profile is SoundProfile.SIREN:
        return Waveform(
            profile=profile,
            critical=critical,
            oscillator="sawtooth",
            frequency=400.0,
            sweep_to=800.0,
            pulse_duration=0.5,
            pause_duration=0.5,
            envelope=_hold_envelope(0.5),
        )
    pulse = 0.2 if critical else 0.3
    pause = 0.2 if critical else 0.5
    if profile is SoundProfile.CHIME:
        return Waveform(
            profile=profile,
            critical=critical,
            oscillator="sine",
            frequency=1046.5 if critical else 523.25,  # C6 / C5
            sweep_to=None,
            pulse_duration=pulse,
            pause_duration=pause,
            envelope=(
                EnvelopeStep(0.0, 0.0, "set"),
                EnvelopeStep(0.01, 0.4, "linear"),
                EnvelopeStep(pulse, 0.01, "exponential"),
            ),
        )
    if profile is SoundProfile.BEEP:
        return Waveform(
            profile=profile,
            critical=critical,
            oscillator="sine",
            frequency=880.0 if critical else 440.0,
            sweep_to=None,
            pulse_duration=pulse,
            pause_duration=pause,
            envelope=_hold_envelope(pulse),
        )
    raise ValueError(f"unknown sound profile {profile!r}")


def select_waveform(alerts: Iterable[Alert], settings: Settings) -> Optional[Waveform]:
    """The waveform the current alerts call for, or None for silence."""
    severities = {a.severity for a in alerts if a.active}
    if Severity.CRITICAL in severities:
        return waveform_for(settings.critical_sound, critical=True)
    if Severity.WARNING in severities:
        return waveform_for(settings.warning_sound, critical=False)
    return None


class AudioBackend(Protocol):
    def open(self, waveform: Waveform) -> None: ...

    def pulse(self, waveform: Waveform) -> None: ...

    def close(self) -> None: ...


class BroadcastAudioBackend:
    """Forwards start/pulse/stop events to a callable, e.g. a WebSocket fan-out."""

    def __init__(self, send: Callable[[dict], None]) -> None:
        self._send = send

    def open(self, waveform: Waveform) -> None:
        self._send({"type": "sound", "action": "start", "waveform": waveform.to_dict()})

    def pulse(self, waveform: Waveform) -> None:
        self._send({"type": "sound", "action": "pulse", "waveform": waveform.to_dict()})

    def close(self) -> None:
        self._send({"type": "sound", "action": "stop"})


class AlertSoundDriver:
    """Play/stop state machine over the active alert set.

    Playback starts when a critical or warning alert is active and permission
    has been granted, and stops only once no active alert is left. A set that
    drops to info-only alerts keeps the current waveform sounding.
    """

    def __init__(self, backend: AudioBackend, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.backend = backend
        self._loop = loop
        self._permission = False
        self._playing = False
        self._waveform: Optional[Waveform] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._last: Tuple[Tuple[Alert, ...], Optional[Settings]] = ((), None)

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def waveform(self) -> Optional[Waveform]:
        return self._waveform

    @property
    def permission_granted(self) -> bool:
        return self._permission

    def grant_permission(self) -> None:
        # one-way latch
        if self._permission:
            return
        self._permission = True
        logger.info("Audio permission granted")
        alerts, settings = self._last
        if settings is not None:
            self.update(alerts, settings)

    def observe(self, snapshot) -> None:
        """Store observer hook."""
        self.update(snapshot.alerts, snapshot.settings)

    def update(self, alerts: Iterable[Alert], settings: Settings) -> None:
        alerts = tuple(alerts)
        self._last = (alerts, settings)
        if not any(a.active for a in alerts):
            if self._playing:
                self._stop()
            return
        wanted = select_waveform(alerts, settings)
        if wanted is None or not self._permission:
            # info-only alerts never start playback but do not end it either
            return
        if self._playing and wanted == self._waveform:
            return
        if self._playing:
            # severity or profile changed while sounding
            self._stop()
        self._start(wanted)

    def shutdown(self) -> None:
        if self._playing:
            self._stop()

    def _start(self, waveform: Waveform) -> None:
        try:
            self.backend.open(waveform)
        except Exception as e:
            logger.error("Could not start alert sound", profile=waveform.profile.value, error=str(e))
            return
        self._waveform = waveform
        self._playing = True
        logger.info("Alert sound started", profile=waveform.profile.value, critical=waveform.critical)
        self._pulse()

    def _pulse(self) -> None:
        self._handle = None
        if not self._playing or self._waveform is None:
            return
        try:
            self.backend.pulse(self._waveform)
        except Exception as e:
            logger.error("Alert sound pulse failed", error=str(e))
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self._waveform.interval, self._pulse)

    def _stop(self) -> None:
        self._playing = False
        self._waveform = None
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        try:
            self.backend.close()
        except Exception as e:
            logger.error("Could not stop alert sound", error=str(e))
        logger.info("Alert sound stopped")
