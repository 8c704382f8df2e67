import json
from pathlib import Path

from memforge.sync.retry_queue import RetryQueue


def _obs(obs_id: int) -> dict:
    return {"id": obs_id, "title": f"obs {obs_id}"}


def test_add_is_idempotent_by_id(tmp_path: Path) -> None:
    queue = RetryQueue(tmp_path / "queue.json")

    queue.add(_obs(1))
    queue.add(_obs(1))

    assert queue.size() == 1
    assert queue.get_retry_items()[0].retry_count == 1


def test_queue_survives_reconstruction(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    queue = RetryQueue(path)
    queue.add(_obs(1))
    queue.add(_obs(2))
    queue.increment_retry(2)

    reloaded = RetryQueue(path)

    assert [item.id for item in reloaded.get_retry_items()] == [1, 2]
    assert reloaded.get_retry_items()[1].retry_count == 1
    data = json.loads(path.read_text())
    assert data["items"][0]["observation"] == _obs(1)
    assert {"id", "observation", "addedAt", "retryCount"} <= set(data["items"][0])


def test_remove_persists(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    queue = RetryQueue(path)
    queue.add(_obs(1))
    queue.add(_obs(2))

    queue.remove(1)

    assert [item.id for item in RetryQueue(path).get_retry_items()] == [2]


def test_remove_missing_id_leaves_file_untouched(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    queue = RetryQueue(path)

    assert queue.remove(7) is False
    assert not path.exists()

    queue.add(_obs(7))
    assert 7 in queue
    assert queue.remove(7) is True
    assert 7 not in queue


def test_items_at_max_retries_are_dead_lettered(tmp_path: Path) -> None:
    queue = RetryQueue(tmp_path / "queue.json", max_retries=5)
    queue.add(_obs(42))
    for _ in range(4):
        queue.increment_retry(42)
    assert [item.id for item in queue.get_retry_items()] == [42]

    queue.increment_retry(42)

    assert queue.get_retry_items() == []
    assert [item.id for item in queue.get_failed_items()] == [42]
    assert queue.size() == 1


def test_dead_letter_add_skips_retry_budget(tmp_path: Path) -> None:
    queue = RetryQueue(tmp_path / "queue.json")
    queue.add(_obs(7), dead_letter=True)
    queue.add(_obs(8))
    queue.add(_obs(8), dead_letter=True)

    assert [item.id for item in queue.get_failed_items()] == [7, 8]
    assert queue.get_retry_items() == []


def test_clear_failed_keeps_active_items(tmp_path: Path) -> None:
    queue = RetryQueue(tmp_path / "queue.json")
    queue.add(_obs(1))
    queue.add(_obs(2), dead_letter=True)

    queue.clear_failed()

    assert [item.id for item in queue.get_retry_items()] == [1]
    assert queue.get_failed_items() == []

    queue.clear()
    assert len(queue) == 0
    assert RetryQueue(tmp_path / "queue.json").size() == 0


def test_corrupt_queue_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    path.write_text("not json")
    assert RetryQueue(path).size() == 0


def test_malformed_entries_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "queue.json"
    path.write_text(
        json.dumps(
            {
                "items": [
                    {"id": 1, "observation": _obs(1), "addedAt": "t", "retryCount": 2},
                    {"id": "nope"},
                    "garbage",
                ]
            }
        )
    )
    queue = RetryQueue(path)
    assert [item.id for item in queue.get_retry_items()] == [1]
