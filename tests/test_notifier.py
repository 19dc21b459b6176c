"""Tests for PeriodicNotifier: 15-minute boundaries of active time."""

from vidyut_timer.notifier import TICK_PERIOD_S, NotifierVariant, PeriodicNotifier
from vidyut_timer.session import TimerMode, TimerSession
from vidyut_timer.sinks import LogSink


# ---- Helpers ----

T0 = 1000.0


def running(total=3600, start=T0, accumulated=0):
    return TimerSession(mode=TimerMode.RUNNING, total_duration=total, last_set_duration=total,
                        start_time=start, accumulated_pause_time=accumulated)


def make_notifier(variant=NotifierVariant.BELL):
    sink = LogSink()
    return PeriodicNotifier(sink, variant), sink


# ---- Bell ----

class TestBell:
    def test_no_ring_before_first_boundary(self):
        notifier, sink = make_notifier()
        assert notifier.evaluate(running(), T0 + 899) == 0
        assert sink.rings == []

    def test_crossing_one_boundary_rings_once(self):
        notifier, sink = make_notifier()
        notifier.evaluate(running(), T0 + 899)
        assert notifier.evaluate(running(), T0 + 901) == 1
        assert notifier.evaluate(running(), T0 + 902) == 0
        assert sink.rings == [1]
        assert notifier.last_acknowledged == 1

    def test_two_boundaries_in_one_evaluation(self):
        """After a long suspend, both missed boundaries ring, once."""
        notifier, sink = make_notifier()
        assert notifier.evaluate(running(), T0 + 2 * TICK_PERIOD_S + 50) == 2
        assert notifier.evaluate(running(), T0 + 2 * TICK_PERIOD_S + 60) == 0
        assert sink.rings == [2]

    def test_catch_up_bounded_by_duration(self):
        notifier, sink = make_notifier()
        assert notifier.evaluate(running(total=1000), T0 + 50000) == 1
        assert sink.rings == [1]

    def test_boundary_at_completion_is_silent(self):
        """The last boundary of a 1800 s run coincides with the alarm."""
        notifier, sink = make_notifier()
        notifier.evaluate(running(total=1800), T0 + 901)
        assert notifier.evaluate(running(total=1800), T0 + 1800) == 0
        assert sink.rings == [1]

    def test_catch_up_past_end_skips_final_boundary(self):
        notifier, sink = make_notifier()
        assert notifier.evaluate(running(total=1800), T0 + 5000) == 1

    def test_silent_while_paused(self):
        notifier, sink = make_notifier()
        session = TimerSession(mode=TimerMode.PAUSED, total_duration=3600, last_set_duration=3600,
                               start_time=T0, pause_time=T0 + 950)
        assert notifier.evaluate(session, T0 + 2000) == 0
        assert sink.rings == []

    def test_pause_time_does_not_count(self):
        notifier, sink = make_notifier()
        assert notifier.evaluate(running(accumulated=100), T0 + 950) == 0
        assert notifier.evaluate(running(accumulated=100), T0 + 1000) == 1

    def test_new_run_starts_over(self):
        notifier, sink = make_notifier()
        notifier.evaluate(running(), T0 + 1000)
        restarted = running(start=T0 + 5000)
        assert notifier.evaluate(restarted, T0 + 5100) == 0
        assert notifier.last_acknowledged == 0
        assert notifier.evaluate(restarted, T0 + 5901) == 1
        assert sink.rings == [1, 1]

    def test_due_intervals_has_no_side_effects(self):
        notifier, sink = make_notifier()
        assert notifier.due_intervals(running(), T0 + 1000) == 1
        assert notifier.due_intervals(running(), T0 + 1000) == 1
        assert sink.rings == []


# ---- Voice ----

class TestVoice:
    def test_announces_remaining_minutes(self):
        notifier, sink = make_notifier(NotifierVariant.VOICE)
        notifier.evaluate(running(), T0 + 901)
        assert sink.announcements == [45]
        assert sink.rings == []

    def test_single_announcement_for_several_boundaries(self):
        notifier, sink = make_notifier(NotifierVariant.VOICE)
        assert notifier.evaluate(running(), T0 + 1850) == 2
        assert sink.announcements == [30]
