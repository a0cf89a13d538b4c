from wakewatch.notifier import StateNotifier


def test_updates_merge_until_flush():
    notifier = StateNotifier(interval=0.1)
    got = []
    notifier.subscribe(got.append)
    notifier.queue(state="awake", confidence=0.9)
    notifier.queue(confidence=0.8)
    assert notifier.flush_if_due(0.0)
    assert got == [{"state": "awake", "confidence": 0.8}]
    assert notifier.pending == {}


def test_flushes_at_most_once_per_interval():
    notifier = StateNotifier(interval=0.1)
    got = []
    notifier.subscribe(got.append)
    for k in range(100):
        notifier.queue(frame=k)
        notifier.flush_if_due(k * 0.01)
    assert 9 <= len(got) <= 11
    assert got[0] == {"frame": 0}


def test_nothing_pending_means_no_flush():
    notifier = StateNotifier()
    got = []
    notifier.subscribe(got.append)
    assert not notifier.flush_if_due(5.0)
    assert got == []


def test_failing_subscriber_does_not_block_others():
    notifier = StateNotifier()
    got = []

    def broken(payload):
        raise RuntimeError("socket closed")

    notifier.subscribe(broken)
    notifier.subscribe(got.append)
    notifier.queue(state="sleeping")
    notifier.flush(0.0)
    assert got == [{"state": "sleeping"}]


def test_unsubscribe_and_reset():
    notifier = StateNotifier()
    got = []
    notifier.subscribe(got.append)
    notifier.unsubscribe(got.append)
    notifier.queue(state="awake")
    notifier.reset()
    assert notifier.pending == {}
    notifier.queue(state="awake")
    notifier.flush(1.0)
    assert got == []
