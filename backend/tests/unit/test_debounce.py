"""
Unit tests for fallwatch.debounce
"""
import pytest

from fallwatch.debounce import AlertDebouncer, DebounceState, NotificationState

COOLDOWN_MS = 60_000
T0 = 1_700_000_000_000


class TestAlertDebouncer:
    def test_first_call_allowed_then_suppressed(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        assert debouncer.should_dispatch("+15551234567", T0) is True
        assert debouncer.should_dispatch("+15551234567", T0 + 1) is False

    def test_allowed_again_after_cooldown(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        assert debouncer.should_dispatch("A", T0)
        assert debouncer.should_dispatch("A", T0 + COOLDOWN_MS + 1) is True

    def test_exact_cooldown_boundary_is_idle(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        debouncer.should_dispatch("A", T0)
        assert debouncer.state_of("A", T0 + COOLDOWN_MS - 1) is DebounceState.COOLING
        assert debouncer.state_of("A", T0 + COOLDOWN_MS) is DebounceState.IDLE

    def test_suppressed_call_does_not_extend_window(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        debouncer.should_dispatch("A", T0)
        debouncer.should_dispatch("A", T0 + 30_000)
        assert debouncer.should_dispatch("A", T0 + COOLDOWN_MS) is True

    def test_recipients_are_isolated(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        assert debouncer.should_dispatch("A", T0)
        assert debouncer.should_dispatch("A", T0 + 5) is False
        assert debouncer.should_dispatch("B", T0 + 5) is True

    def test_remaining_ms(self):
        debouncer = AlertDebouncer(COOLDOWN_MS)
        assert debouncer.remaining_ms("A", T0) == 0
        debouncer.should_dispatch("A", T0)
        assert debouncer.remaining_ms("A", T0 + 10_000) == 50_000
        assert debouncer.remaining_ms("A", T0 + 90_000) == 0

    def test_zero_cooldown_never_suppresses(self):
        debouncer = AlertDebouncer(0)
        assert all(debouncer.should_dispatch("A", T0) for _ in range(3))

    def test_negative_cooldown_rejected(self):
        with pytest.raises(ValueError):
            AlertDebouncer(-1)

    def test_injected_state_is_shared(self):
        state = NotificationState()
        AlertDebouncer(COOLDOWN_MS, state).should_dispatch("A", T0)
        assert state.last_notified_at("A") == T0
        assert AlertDebouncer(COOLDOWN_MS, state).should_dispatch("A", T0 + 1) is False


class TestNotificationState:
    def test_clear_single_recipient(self):
        state = NotificationState()
        state.record("A", 1)
        state.record("B", 2)
        state.clear("A")
        assert state.last_notified_at("A") is None
        assert state.last_notified_at("B") == 2
        assert len(state) == 1

    def test_clear_all(self):
        state = NotificationState()
        state.record("A", 1)
        state.clear()
        assert len(state) == 0

    def test_prune_drops_entries_at_or_before_cutoff(self):
        state = NotificationState()
        state.record("A", 100)
        state.record("B", 200)
        state.record("C", 300)
        assert state.prune(200) == 2
        assert state.last_notified_at("A") is None
        assert state.last_notified_at("B") is None
        assert state.last_notified_at("C") == 300


class TestExpiredRecipients:
    def test_expired_recipients_are_forgotten(self):
        state = NotificationState()
        debouncer = AlertDebouncer(COOLDOWN_MS, state)
        for i in range(1_000):
            assert debouncer.should_dispatch(f"+1555{i:07d}", T0 + i)
        assert len(state) == 1_000

        assert debouncer.should_dispatch("+15559999999", T0 + 1_000 + COOLDOWN_MS)
        assert len(state) == 1

    def test_forgetting_keeps_cooling_recipients(self):
        state = NotificationState()
        debouncer = AlertDebouncer(COOLDOWN_MS, state)
        debouncer.should_dispatch("A", T0)
        debouncer.should_dispatch("B", T0 + 30_000)

        assert debouncer.should_dispatch("C", T0 + COOLDOWN_MS)
        assert state.last_notified_at("A") is None
        assert debouncer.state_of("B", T0 + COOLDOWN_MS) is DebounceState.COOLING
        assert debouncer.should_dispatch("B", T0 + COOLDOWN_MS + 1) is False
        assert debouncer.should_dispatch("A", T0 + COOLDOWN_MS + 1) is True
