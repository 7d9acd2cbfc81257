import threading

from scheduler_sync.batcher import ChangeBatcher
from scheduler_sync.models import ChangeInfo


def change(title):
    return ChangeInfo("update", "task", title)


def test_enqueue_keeps_one_timer(timers):
    fired = []
    batcher = ChangeBatcher(30, fired.append, timer_factory=timers)

    assert batcher.enqueue(change("a")) == 1
    assert batcher.enqueue(change("b")) == 2

    assert len(timers.timers) == 2
    assert timers.timers[0].cancelled
    assert len(timers.active) == 1
    assert batcher.has_pending_timer


def test_fire_drains_queue_in_arrival_order(timers):
    fired = []
    batcher = ChangeBatcher(30, fired.append, timer_factory=timers)
    batcher.enqueue(change("a"))
    batcher.enqueue(change("b"))

    timers.fire_all()

    assert [[c.title for c in batch] for batch in fired] == [["a", "b"]]
    assert batcher.pending_count == 0
    assert not batcher.has_pending_timer


def test_superseded_timer_does_nothing(timers):
    fired = []
    batcher = ChangeBatcher(30, fired.append, timer_factory=timers)
    batcher.enqueue(change("a"))
    batcher.enqueue(change("b"))

    timers.timers[0].expire_anyway()

    assert fired == []
    assert batcher.pending_count == 2


def test_cancel_pending_keeps_queue(timers):
    batcher = ChangeBatcher(30, lambda batch: None, timer_factory=timers)
    batcher.enqueue(change("a"))

    batcher.cancel_pending()

    assert not batcher.has_pending_timer
    assert batcher.pending_count == 1
    assert [c.title for c in batcher.take_all()] == ["a"]
    assert batcher.pending_count == 0


def test_take_all_stops_the_timer(timers):
    fired = []
    batcher = ChangeBatcher(30, fired.append, timer_factory=timers)
    batcher.enqueue(change("a"))
    batcher.enqueue(change("b"))

    assert [c.title for c in batcher.take_all()] == ["a", "b"]

    assert timers.active == []
    assert not batcher.has_pending_timer
    timers.timers[-1].expire_anyway()
    assert fired == []


def test_restore_puts_batch_first(timers):
    batcher = ChangeBatcher(30, lambda batch: None, timer_factory=timers)
    batcher.enqueue(change("late"))
    batcher.cancel_pending()

    batcher.restore([change("early")], rearm=True)

    assert batcher.has_pending_timer
    assert [c.title for c in batcher.take_all()] == ["early", "late"]


def test_restore_without_rearm(timers):
    batcher = ChangeBatcher(30, lambda batch: None, timer_factory=timers)
    batcher.restore([change("a")])
    assert batcher.pending_count == 1
    assert timers.timers == []


def test_real_timer_fires_once():
    done = threading.Event()
    batches = []

    def on_fire(batch):
        batches.append(batch)
        done.set()

    batcher = ChangeBatcher(0.05, on_fire)
    batcher.enqueue(change("a"))
    batcher.enqueue(change("b"))

    assert done.wait(5)
    assert [len(b) for b in batches] == [2]
    batcher.shutdown()
