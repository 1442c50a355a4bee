import threading

from raceclub.realtime import ChangeFeed


def test_publish_without_debounce_delivers_immediately():
    feed = ChangeFeed(debounce=0)
    seen = []
    feed.subscribe(seen.append)
    feed.publish("nominations")
    feed.publish("drivers")
    assert seen == [{"nominations"}, {"drivers"}]


def test_burst_is_coalesced_into_one_callback():
    feed = ChangeFeed(debounce=0.05)
    seen = []
    delivered = threading.Event()

    def on_change(tables):
        seen.append(tables)
        delivered.set()

    feed.subscribe(on_change)
    for table in ("nominations", "nomination_entries", "nominations"):
        feed.publish(table)
    assert delivered.wait(2)
    assert seen == [{"nominations", "nomination_entries"}]
    feed.close()


def test_unsubscribe_stops_delivery():
    feed = ChangeFeed(debounce=0)
    seen = []
    unsubscribe = feed.subscribe(seen.append)
    unsubscribe()
    feed.publish("nominations")
    assert seen == []


def test_subscribing_twice_delivers_once():
    feed = ChangeFeed(debounce=0)
    seen = []
    feed.subscribe(seen.append)
    feed.subscribe(seen.append)
    feed.publish("nominations")
    assert seen == [{"nominations"}]


def test_failing_subscriber_does_not_block_others(caplog):
    feed = ChangeFeed(debounce=0)
    seen = []

    def broken(tables):
        raise RuntimeError("subscriber down")

    feed.subscribe(broken)
    feed.subscribe(seen.append)
    caplog.set_level("ERROR")
    feed.publish("events")
    assert seen == [{"events"}]
    assert any("Change subscriber failed" in r.getMessage() for r in caplog.records)


def test_flush_with_nothing_pending_is_a_no_op():
    feed = ChangeFeed(debounce=0)
    seen = []
    feed.subscribe(seen.append)
    feed.flush()
    assert seen == []
