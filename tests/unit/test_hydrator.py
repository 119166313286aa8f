"""Tests for hydration of indexed task files."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from branchtasks.cache import ParseCache
from branchtasks.codec import MarkdownTaskCodec
from branchtasks.crossbranch import HydrationDecision, Hydrator, decide
from branchtasks.gitops import InMemoryGateway
from branchtasks.models import IndexEntry

T1 = datetime(2026, 5, 1, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=2)


def task_content(title, status="To Do"):
    return f"---\ntitle: {title}\nstatus: {status}\n---\n"


def entry(branch, path, modified=T1, is_remote=False):
    task_id = path.rsplit("/", 1)[-1].split(" ")[0].upper().removesuffix(".MD")
    return IndexEntry(branch=branch, path=path, modified=modified, task_id=task_id, is_remote=is_remote)


@pytest.fixture
def gateway():
    gateway = InMemoryGateway()
    gateway.add_branch("feature", T1)
    gateway.add_branch("origin/release", T1, is_remote=True)
    gateway.write("feature", "backlog/tasks/task-1 - One.md", task_content("One", "In Progress"), T1)
    gateway.write("feature", "backlog/tasks/task-2 - Two.md", task_content("Two"), T1)
    gateway.write("feature", "backlog/tasks/task-3 - Broken.md", "---\ntitle: [oops\n---\n", T1)
    gateway.write("origin/release", "backlog/tasks/task-4 - Four.md", task_content("Four", "Done"), T1)
    return gateway


@pytest.fixture
def cache():
    return ParseCache()


@pytest.fixture
def hydrator(gateway, cache):
    return Hydrator(gateway, MarkdownTaskCodec(), cache, concurrency=2)


class TestDecide:
    """Test the hydration decision."""

    def test_unknown_locally_is_fetched(self):
        assert decide(entry("feature", "backlog/tasks/task-1.md"), None) is HydrationDecision.FETCH

    def test_strictly_newer_is_fetched(self):
        assert decide(entry("feature", "backlog/tasks/task-1.md", T2), T1) is HydrationDecision.FETCH

    def test_same_or_older_is_skipped(self):
        assert decide(entry("feature", "backlog/tasks/task-1.md", T1), T1) is HydrationDecision.SKIP
        assert decide(entry("feature", "backlog/tasks/task-1.md", T1), T2) is HydrationDecision.SKIP


@pytest.mark.asyncio
async def test_hydrate_tags_source_and_branch(hydrator):
    results, warnings = await hydrator.hydrate(
        [
            entry("feature", "backlog/tasks/task-1 - One.md"),
            entry("origin/release", "backlog/tasks/task-4 - Four.md", is_remote=True),
        ]
    )

    assert warnings == []
    assert [(r.task_id, r.branch, r.record.source) for r in results] == [
        ("TASK-1", "feature", "local-branch"),
        ("TASK-4", "origin/release", "remote"),
    ]
    assert results[0].record.status == "In Progress"
    assert results[0].record.last_modified == T1
    assert results[0].timestamp == T1


@pytest.mark.asyncio
async def test_decode_failure_drops_only_that_file(hydrator):
    """Test that a codec failure is logged and excluded, not fatal."""
    results, warnings = await hydrator.hydrate(
        [
            entry("feature", "backlog/tasks/task-1 - One.md"),
            entry("feature", "backlog/tasks/task-3 - Broken.md"),
            entry("feature", "backlog/tasks/task-2 - Two.md"),
        ]
    )

    assert [r.task_id for r in results] == ["TASK-1", "TASK-2"]
    assert len(warnings) == 1
    assert "task-3 - Broken.md" in warnings[0]


@pytest.mark.asyncio
async def test_read_timeout_is_isolated(gateway, hydrator):
    gateway.timing_out.add("feature:backlog/tasks/task-1 - One.md")

    results, warnings = await hydrator.hydrate(
        [entry("feature", "backlog/tasks/task-1 - One.md"), entry("feature", "backlog/tasks/task-2 - Two.md")]
    )

    assert [r.task_id for r in results] == ["TASK-2"]
    assert len(warnings) == 1


@pytest.mark.asyncio
async def test_unchanged_file_is_not_read_twice(gateway, hydrator):
    """Test that the parse cache prevents a second content read."""
    batch = [entry("feature", "backlog/tasks/task-1 - One.md")]

    await hydrator.hydrate(batch)
    await hydrator.hydrate(batch)

    assert gateway.reads == [("feature", "backlog/tasks/task-1 - One.md")]
    assert hydrator.reads == 1


@pytest.mark.asyncio
async def test_changed_time_rereads_only_that_file(gateway, hydrator):
    one = "backlog/tasks/task-1 - One.md"
    two = "backlog/tasks/task-2 - Two.md"
    await hydrator.hydrate([entry("feature", one), entry("feature", two)])
    gateway.reads.clear()

    gateway.write("feature", one, task_content("One", "Done"), T2)
    results, _ = await hydrator.hydrate([entry("feature", one, T2), entry("feature", two)])

    assert gateway.reads == [("feature", one)]
    assert results[0].record.status == "Done"


@pytest.mark.asyncio
async def test_vanished_file_is_dropped(gateway, hydrator, cache):
    path = "backlog/tasks/task-2 - Two.md"
    gateway.remove("feature", path)

    results, warnings = await hydrator.hydrate([entry("feature", path)])

    assert results == []
    assert "disappeared" in warnings[0]
    assert f"feature:{path}" not in cache


@pytest.mark.asyncio
async def test_returned_records_do_not_alias_cache(hydrator, cache):
    batch = [entry("feature", "backlog/tasks/task-1 - One.md")]
    results, _ = await hydrator.hydrate(batch)

    results[0].record.status = "Mutated"

    again, _ = await hydrator.hydrate(batch)
    assert again[0].record.status == "In Progress"


@pytest.mark.asyncio
async def test_concurrency_is_bounded(gateway, cache):
    """Test that no more than the configured number of reads are in flight."""
    in_flight = 0
    peak = 0
    original = gateway.read_file

    async def tracking_read(branch, path):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        try:
            return await original(branch, path)
        finally:
            in_flight -= 1

    gateway.read_file = tracking_read
    gateway.delay = 0.01
    hydrator = Hydrator(gateway, MarkdownTaskCodec(), cache, concurrency=2)
    entries = []
    for i in range(10, 16):
        path = f"backlog/tasks/task-{i}.md"
        gateway.write("feature", path, task_content(f"Task {i}"), T1)
        entries.append(entry("feature", path))

    results, _ = await hydrator.hydrate(entries)

    assert len(results) == 6
    assert peak == 2


@pytest.mark.asyncio
async def test_codec_is_injectable(gateway, cache):
    codec = MagicMock()
    codec.decode.side_effect = MarkdownTaskCodec().decode
    hydrator = Hydrator(gateway, codec, cache)

    await hydrator.hydrate([entry("feature", "backlog/tasks/task-2 - Two.md")])

    codec.decode.assert_called_once()
