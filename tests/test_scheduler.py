"""Tests for the single-loop timer scheduler."""


class TestOneShot:
    def test_fires_once_when_due(self, clock, scheduler):
        fired = []
        scheduler.call_later(100, lambda: fired.append(clock()))
        clock.advance(99)
        assert scheduler.run_due() == 0
        clock.advance(1)
        assert scheduler.run_due() == 1
        clock.advance(500)
        assert scheduler.run_due() == 0
        assert fired == [1100]

    def test_cancel(self, clock, scheduler):
        fired = []
        timer = scheduler.call_later(10, lambda: fired.append(1))
        timer.cancel()
        timer.cancel()
        clock.advance(10)
        scheduler.run_due()
        assert fired == []
        assert scheduler.pending() == 0

    def test_deadline_order(self, clock, scheduler):
        order = []
        scheduler.call_later(30, lambda: order.append("c"))
        scheduler.call_later(10, lambda: order.append("a"))
        scheduler.call_later(20, lambda: order.append("b"))
        clock.advance(30)
        scheduler.run_due()
        assert order == ["a", "b", "c"]


class TestRepeating:
    def test_cadence(self, clock, scheduler):
        fired = []
        scheduler.call_every(33, lambda: fired.append(clock()))
        for _ in range(10):
            clock.advance(11)
            scheduler.run_due()
        assert fired == [1033, 1066, 1099]

    def test_stall_skips_missed_beats(self, clock, scheduler):
        fired = []
        scheduler.call_every(10, lambda: fired.append(clock()))
        clock.advance(100)
        scheduler.run_due()
        assert len(fired) == 1
        clock.advance(10)
        scheduler.run_due()
        assert len(fired) == 2

    def test_cancel_from_callback(self, clock, scheduler):
        fired = []

        def tick():
            fired.append(1)
            if len(fired) == 2:
                timer.cancel()

        timer = scheduler.call_every(5, tick)
        for _ in range(5):
            clock.advance(5)
            scheduler.run_due()
        assert fired == [1, 1]


def test_failing_callback_does_not_stop_others(clock, scheduler):
    fired = []
    scheduler.call_later(1, lambda: 1 / 0)
    scheduler.call_later(1, lambda: fired.append("ok"))
    clock.advance(1)
    assert scheduler.run_due() == 2
    assert fired == ["ok"]


def test_clear(clock, scheduler):
    scheduler.call_later(1, lambda: None)
    scheduler.call_every(1, lambda: None)
    scheduler.clear()
    clock.advance(5)
    assert scheduler.run_due() == 0
