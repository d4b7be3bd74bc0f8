"""ConnectivityMonitor: edge-triggered notifications and replay trigger."""
from fitlife.offline.connectivity import ConnectivityMonitor


def test_listeners_get_transitions_only():
    monitor = ConnectivityMonitor(online=True)
    seen = []
    monitor.subscribe(seen.append)
    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)
    assert seen == [False, True]
    assert monitor.is_online()


def test_unsubscribe():
    monitor = ConnectivityMonitor()
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    monitor.set_online(False)
    assert seen == []


def test_sync_triggered_on_reconnect_after_listeners():
    monitor = ConnectivityMonitor(online=False)
    order = []
    monitor.subscribe(lambda online: order.append(("listener", online)))
    monitor.bind_sync(lambda: order.append(("sync", None)))
    monitor.set_online(True)
    monitor.set_online(False)
    assert order == [("listener", True), ("sync", None), ("listener", False)]


def test_broken_listener_does_not_block_others():
    monitor = ConnectivityMonitor()
    seen = []

    def broken(online):
        raise RuntimeError("boom")

    monitor.subscribe(broken)
    monitor.subscribe(seen.append)
    monitor.set_online(False)
    assert seen == [False]
    assert not monitor.is_online()
