"""
Unit tests for the map server client and batch sender (scanner.transport)
"""

import os
import sys
import threading
from unittest.mock import Mock

import requests

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import ColumnUpdate
from scanner.transport import ChunkSender, MapServerClient
from scanner.world import PlayerInfo
from tests.fakes import make_record


def _response(status=200, body=None):
    r = Mock()
    r.status_code = status
    if body is None:
        r.json.side_effect = ValueError("no json")
    else:
        r.json.return_value = body
    return r


def _client(session, attempts=3):
    return MapServerClient("http://map.local:5000/", session=session, attempts=attempts, backoff_s=0)


class TestMapServerClient:
    """Test cases for MapServerClient"""

    def test_chunk_batch_payload(self):
        """Records are posted under `data` in wire format"""
        session = Mock()
        session.post.return_value = _response(200, {"status": "ok"})
        client = _client(session)
        assert client.send_chunk_batch([make_record(1, 2)])
        url = session.post.call_args[0][0]
        body = session.post.call_args[1]["json"]
        assert url == "http://map.local:5000/api/map/update"
        assert body["data"][0]["cx"] == 1
        assert len(body["data"][0]["s_ids"]) == 256

    def test_partial_updates_payload(self):
        """Column edits are posted under `updates`"""
        session = Mock()
        session.post.return_value = _response(200)
        client = _client(session)
        assert client.send_partial_updates([ColumnUpdate(x=5, z=-3, y=70, block_id="minecraft:stone")])
        assert session.post.call_args[1]["json"] == {
            "updates": [{"x": 5, "z": -3, "y": 70, "block_id": "minecraft:stone", "dimension": "overworld"}]
        }

    def test_empty_sends_nothing(self):
        """Empty batches are not posted"""
        session = Mock()
        client = _client(session)
        assert client.send_chunk_batch([])
        assert client.send_partial_updates([])
        assert client.existing_chunks([]) == set()
        session.post.assert_not_called()

    def test_retry_then_success(self):
        """Transient errors are retried"""
        session = Mock()
        session.post.side_effect = [requests.ConnectionError("down"), _response(503), _response(200, {})]
        client = _client(session)
        assert client.send_chunk_batch([make_record(0, 0)])
        assert session.post.call_count == 3

    def test_gives_up_after_attempts(self):
        """Every attempt failing reports failure"""
        session = Mock()
        session.post.side_effect = requests.Timeout("slow")
        client = _client(session, attempts=2)
        assert not client.send_chunk_batch([make_record(0, 0)])
        assert session.post.call_count == 2

    def test_existing_and_missing(self):
        """The existence check splits coords into stored and missing"""
        session = Mock()
        session.post.return_value = _response(200, {"existing": [{"cx": 1, "cz": 0}]})
        client = _client(session)
        assert client.missing_chunks([(0, 0), (1, 0), (2, 0)], "the_nether") == [(0, 0), (2, 0)]
        body = session.post.call_args[1]["json"]
        assert body["dimension"] == "the_nether"
        assert body["chunks"] == [{"cx": 0, "cz": 0}, {"cx": 1, "cz": 0}, {"cx": 2, "cz": 0}]

    def test_failed_check_reports_all_missing(self):
        """If the server cannot be asked, everything is scanned"""
        session = Mock()
        session.post.side_effect = requests.ConnectionError("down")
        client = _client(session, attempts=1)
        assert client.missing_chunks([(0, 0), (1, 0)]) == [(0, 0), (1, 0)]

    def test_players_payload(self):
        """Players are posted under `data`"""
        session = Mock()
        session.post.return_value = _response(200, {})
        client = _client(session)
        assert client.send_players([PlayerInfo(id="p1", name="Alex", x=10, z=-20, skin="abc")])
        body = session.post.call_args[1]["json"]
        assert body == {"data": [{
            "id": "p1",
            "name": "Alex",
            "point": {"x": 10, "y": -20, "dimension": "overworld", "invisibility": False},
            "skin": "abc",
        }]}


class TestChunkSender:
    """Test cases for ChunkSender"""

    def test_submit_and_flush(self):
        """Submitted batches are all delivered by flush"""
        client = Mock()
        client.send_chunk_batch.return_value = True
        sender = ChunkSender(client, max_in_flight=2)
        for i in range(5):
            sender.submit([make_record(i, 0)])
        sender.flush(timeout=5)
        assert client.send_chunk_batch.call_count == 5
        assert sender.sent == 5
        assert sender.failed == 0
        sender.close()

    def test_submit_does_not_block(self):
        """The caller returns while the network is still busy"""
        gate = threading.Event()
        client = Mock()
        client.send_chunk_batch.side_effect = lambda records: gate.wait(5)
        sender = ChunkSender(client, max_in_flight=1)
        futures = [sender.submit([make_record(i, 0)]) for i in range(3)]
        assert not any(f.done() for f in futures)
        gate.set()
        sender.close()
        assert all(f.result() for f in futures)

    def test_backlog_is_bounded(self):
        """With the backlog full, submit waits for a slot instead of queueing without limit"""
        gate = threading.Event()
        client = Mock()
        client.send_chunk_batch.side_effect = lambda records: gate.wait(5)
        sender = ChunkSender(client, max_in_flight=1, max_queued=2)
        sender.submit([make_record(0, 0)])
        sender.submit([make_record(1, 0)])
        assert sender.backlog() == 2

        third_done = threading.Event()

        def third():
            sender.submit([make_record(2, 0)])
            third_done.set()

        t = threading.Thread(target=third, daemon=True)
        t.start()
        assert not third_done.wait(0.2)
        assert sender.stalls == 1

        gate.set()
        assert third_done.wait(5)
        t.join(5)
        sender.close()
        assert sender.sent == 3
        assert sender.backlog() == 0

    def test_failed_batch_is_counted(self):
        """Undelivered batches are counted, not raised"""
        client = Mock()
        client.send_chunk_batch.return_value = False
        sender = ChunkSender(client)
        sender.submit([make_record(0, 0)])
        sender.close()
        assert sender.failed == 1
        assert sender.sent == 0

    def test_empty_submit(self):
        """Nothing to send means no task"""
        sender = ChunkSender(Mock())
        assert sender.submit([]) is None
        sender.close()
