import asyncio

from services.connectivity import ConnectivityMonitor, ProbeConnectivityMonitor


def test_subscribers_see_transitions_only():
    monitor = ConnectivityMonitor(online=True)
    seen = []
    monitor.subscribe(seen.append)

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)

    assert seen == [False, True]
    assert monitor.is_online() is True


def test_unsubscribe_stops_notifications():
    monitor = ConnectivityMonitor(online=False)
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    unsubscribe()
    unsubscribe()

    monitor.set_online(True)
    assert seen == []


def test_failing_listener_does_not_block_others():
    monitor = ConnectivityMonitor(online=False)
    seen = []

    def broken(_):
        raise RuntimeError("listener bug")

    monitor.subscribe(broken)
    monitor.subscribe(seen.append)
    monitor.set_online(True)

    assert seen == [True]


def test_probe_reports_reachable_server():
    async def scenario():
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        monitor = ProbeConnectivityMonitor("127.0.0.1", port, timeout=1.0)
        seen = []
        monitor.subscribe(seen.append)
        try:
            result = await monitor.probe_once()
        finally:
            server.close()
            await server.wait_closed()
        return result, seen, monitor.is_online()

    result, seen, online = asyncio.run(scenario())
    assert result is True
    assert seen == [True]
    assert online is True


def test_probe_reports_unreachable_server():
    async def scenario():
        # Grab a free port, then close the listener so nothing answers there.
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        monitor = ProbeConnectivityMonitor("127.0.0.1", port, timeout=1.0, online=True)
        return await monitor.probe_once(), monitor.is_online()

    assert asyncio.run(scenario()) == (False, False)


def test_poll_loop_start_stop():
    async def scenario():
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        monitor = ProbeConnectivityMonitor("127.0.0.1", port, timeout=1.0, poll_interval=0.01)
        try:
            monitor.start()
            await asyncio.sleep(0.1)
            await monitor.stop()
            await monitor.stop()
        finally:
            server.close()
            await server.wait_closed()
        return monitor.is_online()

    assert asyncio.run(scenario()) is True
