"""Tests for the connectivity monitor and network poller."""

from unittest.mock import Mock, patch

from suitewaste_sync.connectivity import ConnectivityMonitor, NetworkPoller


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def setup_method(self):
        """Set up test fixtures."""
        self.trigger = Mock()
        self.monitor = ConnectivityMonitor(initial_online=False, pending_count=lambda: 2)
        self.monitor.set_trigger(self.trigger)

    def test_going_online_fires_trigger(self):
        """Test OFFLINE -> ONLINE fires the sync trigger."""
        self.monitor.on_connectivity_change(True)

        assert self.monitor.is_online is True
        self.trigger.assert_called_once_with("connectivity")

    def test_going_offline_fires_nothing(self):
        """Test ONLINE -> OFFLINE only updates state."""
        self.monitor.on_connectivity_change(True)
        self.trigger.reset_mock()

        self.monitor.on_connectivity_change(False)

        assert self.monitor.is_online is False
        self.trigger.assert_not_called()

    def test_repeated_state_is_ignored(self):
        """Test that a report matching the current state fires nothing."""
        self.monitor.on_connectivity_change(True)
        self.monitor.on_connectivity_change(True)

        assert self.trigger.call_count == 1

    def test_foreground_fires_when_online_with_pending(self):
        """Test foreground regain with queued records."""
        self.monitor.on_connectivity_change(True)
        self.trigger.reset_mock()

        self.monitor.on_foreground()

        self.trigger.assert_called_once_with("foreground")

    def test_foreground_ignored_when_offline(self):
        """Test foreground regain while offline."""
        self.monitor.on_foreground()

        self.trigger.assert_not_called()

    def test_foreground_ignored_when_queue_empty(self):
        """Test foreground regain with nothing queued."""
        monitor = ConnectivityMonitor(initial_online=True, pending_count=lambda: 0)
        monitor.set_trigger(self.trigger)

        monitor.on_foreground()

        self.trigger.assert_not_called()

    def test_listeners_see_every_transition(self):
        """Test that listeners observe both directions."""
        listener = Mock()
        self.monitor.add_listener(listener)

        self.monitor.on_connectivity_change(True)
        self.monitor.on_connectivity_change(False)

        assert [c.args for c in listener.call_args_list] == [(True,), (False,)]

    def test_failing_trigger_is_contained(self):
        """Test that a trigger exception does not escape the monitor."""
        self.trigger.side_effect = RuntimeError("boom")
        listener = Mock(side_effect=ValueError("bad listener"))
        self.monitor.add_listener(listener)

        self.monitor.on_connectivity_change(True)

        assert self.monitor.is_online is True
        self.trigger.assert_called_once()

    def test_no_trigger_registered(self):
        """Test that signals without a trigger are ignored."""
        monitor = ConnectivityMonitor(initial_online=False)

        monitor.on_connectivity_change(True)

        assert monitor.is_online is True


class TestNetworkPoller:
    """Tests for NetworkPoller."""

    def setup_method(self):
        """Set up test fixtures."""
        self.monitor = ConnectivityMonitor(initial_online=True)
        self.poller = NetworkPoller(self.monitor, host="192.0.2.1", port=443, interval=1, timeout=0.1)

    @patch("suitewaste_sync.connectivity.socket.create_connection")
    def test_check_once_online(self, mock_connect):
        """Test a successful probe."""
        assert self.poller.check_once() is True
        mock_connect.assert_called_once_with(("192.0.2.1", 443), timeout=0.1)
        assert self.monitor.is_online is True

    @patch(
        "suitewaste_sync.connectivity.socket.create_connection",
        side_effect=OSError("unreachable"),
    )
    def test_check_once_offline(self, _mock_connect):
        """Test that a failed probe reports offline."""
        assert self.poller.check_once() is False
        assert self.monitor.is_online is False

    @patch("suitewaste_sync.connectivity.socket.create_connection")
    def test_reconnect_fires_trigger(self, mock_connect):
        """Test that a probe after an outage fires the sync trigger."""
        trigger = Mock()
        self.monitor.set_trigger(trigger)
        mock_connect.side_effect = [OSError("unreachable"), Mock()]

        self.poller.check_once()
        self.poller.check_once()

        trigger.assert_called_once_with("connectivity")

    @patch("suitewaste_sync.connectivity.socket.create_connection")
    def test_start_and_stop(self, _mock_connect):
        """Test the polling thread lifecycle."""
        self.poller.start()
        assert self.poller._thread is not None

        self.poller.stop()
        assert self.poller._thread is None
