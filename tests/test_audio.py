"""Tests for the Audio Activation Gate."""

import asyncio

from ops_kernel.alerts.session import AlertSessionController
from ops_kernel.audio.gate import (
    KITCHEN_CHIME,
    ORDER_CHIME,
    AudioActivationGate,
    NullTonePlayer,
)
from ops_kernel.errors import AudioUnavailable
from ops_kernel.ledger.store import KeyValueStore


class FakeTonePlayer:
    """Records chimes instead of making noise."""

    def __init__(self, fail_play: bool = False, fail_unlock: bool = False):
        self.unlocked = False
        self.played = []
        self.fail_play = fail_play
        self.fail_unlock = fail_unlock

    def unlock(self):
        if self.fail_unlock:
            raise AudioUnavailable("autoplay blocked")
        self.unlocked = True

    def play(self, steps):
        if self.fail_play and self.unlocked and len(steps) > 1:
            raise AudioUnavailable("device lost")
        self.played.append(list(steps))

    @property
    def chimes(self):
        return [s for s in self.played if len(s) > 1]


class TestActivation:
    def setup_method(self):
        self.kv = KeyValueStore(db_path=":memory:")
        self.player = FakeTonePlayer()
        self.gate = AudioActivationGate("t1", self.player, self.kv, device_id="tablet")

    def test_not_activated_by_default(self):
        assert self.gate.is_activated() is False
        assert self.gate.play_tone() is False
        assert self.player.played == []

    def test_activate_persists(self):
        assert self.gate.activate() is True
        assert self.player.unlocked
        reloaded = AudioActivationGate("t1", FakeTonePlayer(), self.kv, device_id="tablet")
        assert reloaded.is_activated() is True

    def test_activation_is_per_tenant_and_device(self):
        self.gate.activate()
        other_device = AudioActivationGate("t1", FakeTonePlayer(), self.kv, device_id="kiosk")
        other_tenant = AudioActivationGate("t2", FakeTonePlayer(), self.kv, device_id="tablet")
        assert not other_device.is_activated()
        assert not other_tenant.is_activated()

    def test_failed_activation_not_persisted(self):
        gate = AudioActivationGate("t1", FakeTonePlayer(fail_unlock=True), self.kv)
        assert gate.activate() is False
        assert gate.is_activated() is False

    def test_null_player(self):
        gate = AudioActivationGate("t1", NullTonePlayer(), self.kv)
        assert gate.activate() is False

    def test_play_tone_swallows_backend_errors(self):
        gate = AudioActivationGate("t1", FakeTonePlayer(fail_play=True), self.kv)
        gate.activate()
        assert gate.play_tone() is False

    def test_chime_shape(self):
        self.gate.activate()
        self.gate.play_tone()
        steps = self.player.chimes[0]
        assert [s.frequency_hz for s in steps] == [880, 1100]
        assert steps[0].frequency_hz < steps[1].frequency_hz
        assert [s.frequency_hz for s in KITCHEN_CHIME] == [1000, 1200]

    def test_muted(self):
        self.gate.activate()
        self.gate.set_sound_enabled(False)
        assert self.gate.play_tone() is False
        self.gate.set_sound_enabled(True)
        assert self.gate.play_tone() is True

    def test_deactivate(self):
        self.gate.activate()
        self.gate.deactivate()
        assert not self.gate.is_activated()


class TestRepeating:
    def setup_method(self):
        self.kv = KeyValueStore(db_path=":memory:")
        self.player = FakeTonePlayer()
        self.gate = AudioActivationGate("t1", self.player, self.kv, chime=ORDER_CHIME)

    def test_repeats_until_stopped(self):
        self.gate.activate()

        async def run():
            self.gate.start_repeating(0.01)
            self.gate.start_repeating(0.01)  # no second task
            await asyncio.sleep(0.055)
            self.gate.stop_repeating()
            count = len(self.player.chimes)
            await asyncio.sleep(0.03)
            return count

        count = asyncio.run(run())
        assert count >= 3
        assert len(self.player.chimes) == count
        assert not self.gate.repeating

    def test_not_started_when_not_activated(self):
        async def run():
            self.gate.start_repeating(0.01)
            await asyncio.sleep(0.02)
            return self.gate.repeating

        assert asyncio.run(run()) is False
        assert self.player.played == []

    def test_follows_alert_session(self):
        self.gate.activate()
        alerts = AlertSessionController("t1")

        async def run():
            self.gate.bind(alerts, 0.01)
            alerts.flag("ord_1")
            await asyncio.sleep(0.025)
            repeating_while_alerting = self.gate.repeating
            alerts.dismiss()
            stopped_on_dismiss = not self.gate.repeating
            alerts.flag("ord_2")
            restarted = self.gate.repeating
            alerts.handle("ord_1")
            alerts.handle("ord_2")
            stopped_on_idle = not self.gate.repeating
            self.gate.unbind()
            return repeating_while_alerting, stopped_on_dismiss, restarted, stopped_on_idle

        assert asyncio.run(run()) == (True, True, True, True)
        assert len(self.player.chimes) >= 2

    def test_activation_during_alert_starts_chime(self):
        alerts = AlertSessionController("t1")

        async def run():
            self.gate.bind(alerts, 0.01)
            alerts.flag("ord_1")
            before = self.gate.repeating
            self.gate.activate()
            after = self.gate.repeating
            self.gate.unbind()
            return before, after

        assert asyncio.run(run()) == (False, True)

    def test_bind_without_loop_plays_once(self):
        self.gate.activate()
        alerts = AlertSessionController("t1")
        self.gate.bind(alerts, 0.01)
        alerts.flag("ord_1")
        assert len(self.player.chimes) == 1
        assert not self.gate.repeating
