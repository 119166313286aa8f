"""End-to-end tests for the refresh pipeline over an in-memory repository."""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from branchtasks import InMemoryGateway, ParseCache, RefreshOptions, Settings, TaskRefresher

T0 = datetime(2026, 4, 20, tzinfo=timezone.utc)
T1 = datetime(2026, 5, 1, tzinfo=timezone.utc)
T2 = T1 + timedelta(days=2)
NOW = T2 + timedelta(days=1)

ONE = "backlog/tasks/task-1 - One.md"
TWO = "backlog/tasks/task-2 - Two.md"


def task_content(title, status="To Do"):
    return f"---\ntitle: {title}\nstatus: {status}\n---\n\n{title} body\n"


def cross_branch(**raw):
    return RefreshOptions.from_raw_config({"checkActiveBranches": True, **raw}, now=NOW)


@pytest.fixture
def workspace():
    """Create a working tree whose backlog holds TASK-1."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        path = root / ONE
        path.parent.mkdir(parents=True)
        path.write_text(task_content("One"))
        yield root


@pytest.fixture
def gateway():
    """main carries TASK-1; feature adds TASK-2."""
    gateway = InMemoryGateway(current="main")
    gateway.add_branch("main", T1)
    gateway.add_branch("feature", T1)
    gateway.write("main", ONE, task_content("One"), T1)
    gateway.write("feature", ONE, task_content("One"), T1)
    gateway.write("feature", TWO, task_content("Two", "In Progress"), T2)
    return gateway


@pytest.fixture
def refresher(workspace, gateway):
    return TaskRefresher(workspace, gateway=gateway, settings=Settings(backlog_dir="backlog"))


@pytest.mark.asyncio
async def test_local_and_branch_tasks_merged(refresher):
    """Test that a task only present on another branch joins the local list."""
    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1", "TASK-2"]
    one, two = result.tasks
    assert one.source == "local"
    assert one.last_modified == T1
    assert two.source == "local-branch"
    assert two.branch == "feature"
    assert two.status == "In Progress"
    assert result.cross_branch is True
    assert result.repository_available is True
    assert result.warnings == []


@pytest.mark.asyncio
async def test_unchanged_branch_files_not_read_again(refresher, gateway):
    await refresher.refresh(cross_branch())
    assert gateway.reads == [("feature", TWO)]

    gateway.reads.clear()
    result = await refresher.refresh(cross_branch())

    assert gateway.reads == []
    assert [t.id for t in result.tasks] == ["TASK-1", "TASK-2"]


@pytest.mark.asyncio
async def test_changed_branch_file_reread(refresher, gateway):
    await refresher.refresh(cross_branch())
    gateway.reads.clear()

    gateway.write("feature", TWO, task_content("Two", "Done"), T2 + timedelta(hours=1))
    result = await refresher.refresh(cross_branch())

    assert gateway.reads == [("feature", TWO)]
    assert result.tasks[1].status == "Done"


@pytest.mark.asyncio
async def test_deleted_branch_file_drops_out(refresher, gateway):
    await refresher.refresh(cross_branch())
    gateway.remove("feature", TWO)

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert "feature:" + TWO not in refresher.cache


@pytest.mark.asyncio
async def test_local_copy_wins_over_newer_branch_copy(refresher, gateway):
    """Test that local tasks are authoritative and branch copies are alternates."""
    gateway.write("feature", ONE, task_content("One", "Done"), T2)

    result = await refresher.refresh(cross_branch())

    one = result.tasks[0]
    assert one.source == "local"
    assert one.status == "To Do"
    assert [(a.branch, a.status) for a in result.alternates["TASK-1"]] == [("feature", "Done")]


@pytest.mark.asyncio
async def test_older_branch_copy_not_fetched(refresher, gateway):
    gateway.write("feature", ONE, task_content("One", "Done"), T0)

    result = await refresher.refresh(cross_branch())

    assert ("feature", ONE) not in gateway.reads
    assert "TASK-1" not in result.alternates


@pytest.mark.asyncio
async def test_cross_branch_disabled_skips_git(refresher, gateway):
    result = await refresher.refresh(RefreshOptions())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert result.cross_branch is False
    assert gateway.reads == []
    assert gateway.modified_map_calls == []


@pytest.mark.asyncio
async def test_not_a_repository(workspace):
    gateway = InMemoryGateway(is_repo=False)
    refresher = TaskRefresher(workspace, gateway=gateway, settings=Settings(backlog_dir="backlog"))

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert result.repository_available is False
    assert any("not a git repository" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_failing_branch_reported_others_kept(refresher, gateway):
    gateway.add_branch("hotfix", T1)
    gateway.write("hotfix", "backlog/tasks/task-3 - Three.md", task_content("Three"), T2)
    gateway.failing.add("feature")

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1", "TASK-3"]
    assert any(w.startswith("Skipped branch feature") for w in result.warnings)


@pytest.mark.asyncio
async def test_timed_out_file_reported(refresher, gateway):
    gateway.timing_out.add("feature:" + TWO)

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert len(result.warnings) == 1
    assert "task-2 - Two.md" in result.warnings[0]


@pytest.mark.asyncio
async def test_stale_branches_outside_window(refresher, gateway):
    gateway.add_branch("ancient", NOW - timedelta(days=90))
    gateway.write("ancient", "backlog/tasks/task-9 - Nine.md", task_content("Nine"), NOW - timedelta(days=90))

    result = await refresher.refresh(cross_branch())
    assert "TASK-9" not in [t.id for t in result.tasks]

    result = await refresher.refresh(cross_branch(activeBranchDays=120))
    assert "TASK-9" in [t.id for t in result.tasks]


@pytest.mark.asyncio
async def test_remote_branches_opt_in(refresher, gateway):
    gateway.add_branch("origin/review", T1, is_remote=True)
    gateway.write("origin/review", "backlog/tasks/task-5 - Five.md", task_content("Five"), T2)

    result = await refresher.refresh(cross_branch())
    assert "TASK-5" not in [t.id for t in result.tasks]

    result = await refresher.refresh(cross_branch(remoteOperations=True))
    five = result.tasks[-1]
    assert five.id == "TASK-5"
    assert five.source == "remote"
    assert five.branch == "origin/review"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "strategy,expected_branch",
    [("most_recent", "feature-b"), ("most_progressed", "feature-a")],
)
async def test_branch_only_conflict_strategy(refresher, gateway, strategy, expected_branch):
    gateway.add_branch("feature-a", T1)
    gateway.add_branch("feature-b", T1)
    path = "backlog/tasks/task-7 - Seven.md"
    gateway.write("feature-a", path, task_content("Seven", "Done"), T1)
    gateway.write("feature-b", path, task_content("Seven", "In Progress"), T2)

    result = await refresher.refresh(cross_branch(taskResolutionStrategy=strategy))

    seven = [t for t in result.tasks if t.id == "TASK-7"][0]
    assert seven.branch == expected_branch


@pytest.mark.asyncio
async def test_overlapping_refreshes_keep_latest(refresher):
    """Test that a slower, older refresh cannot replace a newer result."""
    slow, fast = await asyncio.gather(
        refresher.refresh(cross_branch()),
        refresher.refresh(RefreshOptions()),
    )

    assert fast.generation == 2
    assert fast.stale is False
    assert slow.generation == 1
    assert slow.stale is True
    assert refresher.latest.generation == 2


@pytest.mark.asyncio
async def test_shared_cache_across_refreshers(workspace, gateway):
    cache = ParseCache()
    settings = Settings(backlog_dir="backlog")
    await TaskRefresher(workspace, gateway=gateway, cache=cache, settings=settings).refresh(cross_branch())
    gateway.reads.clear()

    await TaskRefresher(workspace, gateway=gateway, cache=cache, settings=settings).refresh(cross_branch())

    assert gateway.reads == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    ["---\nid: ' '\ntitle: Bad\n---\n", "---\ntitle: Bad\n2024: note\nstatus: [a, b\n---\n", "---\nid: ' '\n---\n"],
)
async def test_invalid_branch_file_becomes_warning(refresher, gateway, content):
    gateway.write("feature", "backlog/tasks/task-8 - Bad.md", content, T2)

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1", "TASK-2"]
    assert len(result.warnings) == 1
    assert "task-8 - Bad.md" in result.warnings[0]


@pytest.mark.asyncio
async def test_numeric_frontmatter_key_does_not_break_refresh(refresher, gateway):
    gateway.write("feature", "backlog/tasks/task-8 - Dated.md", "---\ntitle: Dated\n2024: note\n---\n", T2)

    result = await refresher.refresh(cross_branch())

    dated = [t for t in result.tasks if t.id == "TASK-8"][0]
    assert dated.fields == {"2024": "note"}
    assert result.warnings == []


@pytest.mark.asyncio
async def test_invalid_local_file_becomes_warning(workspace):
    (workspace / "backlog/tasks/task-8 - Bad.md").write_text("---\nid: ' '\ntitle: Bad\n---\n")
    refresher = TaskRefresher(
        workspace, gateway=InMemoryGateway(is_repo=False), settings=Settings(backlog_dir="backlog")
    )

    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert any("task-8 - Bad.md" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_local_tasks_tagged_with_current_branch(refresher):
    result = await refresher.refresh(cross_branch())

    assert result.tasks[0].branch == "main"


@pytest.mark.asyncio
async def test_deleted_branch_evicted_from_cache(refresher, gateway):
    await refresher.refresh(cross_branch())
    assert "feature:" + TWO in refresher.cache
    size = len(refresher.cache)

    del gateway.branches["feature"]
    result = await refresher.refresh(cross_branch())

    assert [t.id for t in result.tasks] == ["TASK-1"]
    assert "feature:" + TWO not in refresher.cache
    assert len(refresher.cache) < size


@pytest.mark.asyncio
async def test_aged_out_branch_evicted_but_failing_branch_kept(refresher, gateway):
    gateway.add_branch("hotfix", T1)
    three = "backlog/tasks/task-3 - Three.md"
    gateway.write("hotfix", three, task_content("Three"), T2)
    await refresher.refresh(cross_branch())
    assert "hotfix:" + three in refresher.cache

    # hotfix is still enumerated but cannot be indexed; feature leaves the window
    gateway.failing.add("hotfix")
    gateway.branches["feature"].last_commit = NOW - timedelta(days=60)
    await refresher.refresh(cross_branch())

    assert "hotfix:" + three in refresher.cache
    assert "feature:" + TWO not in refresher.cache
