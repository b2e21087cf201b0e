import threading

import pytest

from bytestep.state_queue import SnapshotQueue


class TestSnapshotQueue:
    """Test suite for the latest-wins snapshot queue"""

    def test_latest_wins(self):
        queue: SnapshotQueue[int] = SnapshotQueue()
        queue.publish(1)
        queue.publish(2)
        assert queue.get(timeout=1) == 2

    def test_pending_value_survives_close(self):
        queue: SnapshotQueue[int] = SnapshotQueue()
        queue.publish(7)
        queue.close()
        assert queue.get(timeout=1) == 7
        assert queue.get(timeout=1) is None

    def test_publish_after_close_is_ignored(self):
        queue: SnapshotQueue[int] = SnapshotQueue()
        queue.close()
        queue.publish(3)
        assert queue.closed
        assert queue.get(timeout=1) is None

    def test_get_times_out(self):
        queue: SnapshotQueue[int] = SnapshotQueue()
        with pytest.raises(TimeoutError):
            queue.get(timeout=0.01)

    def test_wakes_consumer_thread(self):
        queue: SnapshotQueue[str] = SnapshotQueue()
        received = []
        consumer = threading.Thread(target=lambda: received.append(queue.get(timeout=5)))
        consumer.start()
        queue.publish("snapshot")
        consumer.join(timeout=5)
        assert received == ["snapshot"]
