import pytest

from errors import FetchExhaustedError
from importer import ImportQueue
from models import FeedMetadata, ImportStatus


def _feeds(count):
    return [FeedMetadata(title=f"Feed {i}", url=f"https://f{i}.example.com/rss") for i in range(count)]


@pytest.mark.asyncio
async def test_drain_processes_in_order_and_checkpoints():
    seen = []
    checkpoints = []

    async def process(metadata):
        seen.append(metadata.url)

    queue = ImportQueue(process, on_checkpoint=lambda: checkpoints.append(len(seen)), delay_seconds=0, checkpoint_every=2)
    queue.enqueue(*_feeds(5))

    processed = await queue.drain()

    assert processed == 5
    assert seen == [f"https://f{i}.example.com/rss" for i in range(5)]
    # Every second feed, then once more when the queue empties
    assert checkpoints == [2, 4, 5]
    assert all(m.import_status == ImportStatus.COMPLETED for m in queue.finished)
    assert len(queue) == 0
    assert not queue.running


@pytest.mark.asyncio
async def test_failures_are_recorded_and_do_not_stop_the_queue():
    async def process(metadata):
        if "f1." in metadata.url:
            raise FetchExhaustedError(metadata.url, ["direct"])

    queue = ImportQueue(process, delay_seconds=0)
    queue.enqueue(*_feeds(3))

    assert await queue.drain() == 3
    statuses = [m.import_status for m in queue.finished]
    assert statuses == [ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.COMPLETED]
    assert queue.finished[1].import_error


@pytest.mark.asyncio
async def test_stop_leaves_remaining_feeds_pending():
    queue = None

    async def process(metadata):
        queue.stop()

    queue = ImportQueue(process, delay_seconds=0)
    queue.enqueue(*_feeds(3))

    assert await queue.drain() == 1
    assert [m.url for m in queue.pending] == ["https://f1.example.com/rss", "https://f2.example.com/rss"]
    assert all(m.import_status == ImportStatus.PENDING for m in queue.pending)


def test_enqueue_skips_duplicates_and_resets_status():
    async def process(metadata):
        pass

    queue = ImportQueue(process)
    failed = FeedMetadata(title="Again", url="https://a.example.com/rss", import_status=ImportStatus.FAILED, import_error="x")
    queue.enqueue(failed, FeedMetadata(title="Again", url="https://a.example.com/rss"))

    assert len(queue) == 1
    assert queue.pending[0].import_status == ImportStatus.PENDING
    assert queue.pending[0].import_error is None
