"""
Audio Activation Gate — sound is only played once a user gesture unlocked it.

Behavioral Contract:
- is_activated() is persisted per tenant and device, so a reload keeps it.
- activate() must run inside the user-initiated event; it performs the
  one-time unlock through the tone player and persists the flag.
- play_tone() never raises. Backend failures are logged as AudioUnavailable
  and swallowed; silence must not block the visual alert.
- start_repeating()/stop_repeating() drive the chime while the alert
  session is ALERTING: once immediately, then every interval.
"""

import asyncio
from typing import Callable, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from ops_kernel.errors import AudioUnavailable
from ops_kernel.ledger.store import KeyValueStore
from ops_kernel.logging import get_logger
from ops_kernel.models.alert import AlertState

logger = get_logger(__name__)

ACTIVATED_KEY = "audio_activated"
SOUND_ENABLED_KEY = "sound_enabled"


class ToneStep(BaseModel):
    """One oscillator burst of a chime."""

    frequency_hz: float
    duration_ms: int
    offset_ms: int = 0            # Start relative to the first burst
    waveform: str = "square"
    gain: float = 0.9


ORDER_CHIME: List[ToneStep] = [
    ToneStep(frequency_hz=880, duration_ms=250, offset_ms=0),
    ToneStep(frequency_hz=1100, duration_ms=250, offset_ms=200),
]

KITCHEN_CHIME: List[ToneStep] = [
    ToneStep(frequency_hz=1000, duration_ms=200, offset_ms=0),
    ToneStep(frequency_hz=1200, duration_ms=200, offset_ms=150),
]

UNLOCK_TONE: List[ToneStep] = [
    ToneStep(frequency_hz=440, duration_ms=10, gain=0.001),
]

CHIMES = {
    "order": ORDER_CHIME,
    "kitchen": KITCHEN_CHIME,
}


class TonePlayer(Protocol):
    """Low-level oscillator backend."""

    def unlock(self) -> None: ...

    def play(self, steps: Sequence[ToneStep]) -> None: ...


class NullTonePlayer:
    """Backend for hosts with no audio output."""

    def unlock(self) -> None:
        raise AudioUnavailable("No audio backend available")

    def play(self, steps: Sequence[ToneStep]) -> None:
        raise AudioUnavailable("No audio backend available")


class AudioActivationGate:
    """Capability flag plus repeating-chime scheduler for one tenant screen."""

    def __init__(
        self,
        tenant_id: str,
        player: TonePlayer,
        kv_store: KeyValueStore,
        device_id: str = "default",
        chime: Sequence[ToneStep] = ORDER_CHIME,
    ):
        self.tenant_id = tenant_id
        self.player = player
        self.kv_store = kv_store
        self.device_id = device_id
        self.chime = list(chime)
        self._repeat_task: Optional[asyncio.Task] = None
        self._unbind: Optional[Callable[[], None]] = None
        self._controller = None
        self._interval_seconds: Optional[float] = None

    @property
    def namespace(self) -> str:
        return f"{self.tenant_id}:{self.device_id}"

    def is_activated(self) -> bool:
        return self.kv_store.get_bool(self.namespace, ACTIVATED_KEY)

    @property
    def sound_enabled(self) -> bool:
        """Staff-facing mute toggle, on unless explicitly switched off."""
        return self.kv_store.get_bool(self.namespace, SOUND_ENABLED_KEY, default=True)

    def set_sound_enabled(self, enabled: bool) -> None:
        self.kv_store.set_bool(self.namespace, SOUND_ENABLED_KEY, enabled)
        if not enabled:
            self.stop_repeating()

    def activate(self) -> bool:
        """
        Unlock audio. Call synchronously from the user's click/tap handler.
        Returns False if the backend refused; the flag is then not persisted.
        """
        try:
            self.player.unlock()
            self.player.play(UNLOCK_TONE)
        except Exception as e:
            logger.warning(
                "Audio activation failed: %s",
                e,
                extra={"tenant_id": self.tenant_id, "device_id": self.device_id},
            )
            return False

        self.kv_store.set_bool(self.namespace, ACTIVATED_KEY, True)
        logger.info(
            "Audio activated",
            extra={"tenant_id": self.tenant_id, "device_id": self.device_id},
        )
        if (
            self._controller is not None
            and self._controller.state == AlertState.ALERTING
        ):
            self._follow(AlertState.ALERTING)
        return True

    def deactivate(self) -> None:
        """Forget the unlock (e.g. device handed to another tenant)."""
        self.stop_repeating()
        self.kv_store.delete(self.namespace, ACTIVATED_KEY)

    def play_tone(self) -> bool:
        """Play the chime once. Returns whether anything was played."""
        if not self.is_activated() or not self.sound_enabled:
            return False
        try:
            self.player.play(self.chime)
        except Exception as e:
            logger.warning(
                "Audio unavailable, chime skipped: %s",
                e,
                extra={"tenant_id": self.tenant_id, "device_id": self.device_id},
            )
            return False
        return True

    @property
    def repeating(self) -> bool:
        return self._repeat_task is not None and not self._repeat_task.done()

    def start_repeating(self, interval_seconds: float) -> None:
        """
        Chime now and then every interval until stop_repeating().
        Must be called with a running event loop. A second call while
        already repeating is a no-op.
        """
        if self.repeating:
            return
        if not self.is_activated():
            logger.debug(
                "Audio not activated; repeating chime not started",
                extra={"tenant_id": self.tenant_id},
            )
            return
        self._repeat_task = asyncio.get_running_loop().create_task(
            self._repeat(interval_seconds)
        )

    def stop_repeating(self) -> None:
        if self._repeat_task is not None:
            self._repeat_task.cancel()
            self._repeat_task = None

    async def _repeat(self, interval_seconds: float) -> None:
        while True:
            self.play_tone()
            await asyncio.sleep(interval_seconds)

    def bind(self, controller, interval_seconds: float) -> None:
        """
        Follow an AlertSessionController: repeat while ALERTING, stop otherwise.
        """
        self.unbind()
        self._controller = controller
        self._interval_seconds = interval_seconds

        def on_change(old_state: AlertState, new_state: AlertState, _session) -> None:
            self._follow(new_state)

        self._unbind = controller.on_state_changed(on_change)
        self._follow(controller.state)

    def unbind(self) -> None:
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        self._controller = None
        self.stop_repeating()

    def _follow(self, state: AlertState) -> None:
        if state != AlertState.ALERTING:
            self.stop_repeating()
            return
        try:
            self.start_repeating(self._interval_seconds)
        except RuntimeError:
            # No running loop (synchronous caller): single chime instead
            self.play_tone()
