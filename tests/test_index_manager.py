"""Tests for the caching index manager: dedup, debounce, notifications, failures."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from promptindex.scanner.errors import IndexContractError, PromptIndexError
from promptindex.scanner.events import RefreshEvent
from promptindex.scanner.fs import static_root
from promptindex.scanner.manager import IndexManager, IndexState
from promptindex.scanner.organizer import PromptOrganizer
from promptindex.scanner.types import PromptStructure

DEBOUNCE_MS = 30
QUIET = DEBOUNCE_MS / 1000 * 4


def _manager(root, fs, walker=None, **kwargs) -> IndexManager:
    return IndexManager(
        fs,
        static_root(root),
        walker=walker,
        debounce_ms=kwargs.pop("debounce_ms", DEBOUNCE_MS),
        **kwargs,
    )


def _record(manager: IndexManager) -> List[RefreshEvent]:
    events: List[RefreshEvent] = []
    manager.subscribe(events.append)
    return events


class TestGetStructure:
    @pytest.mark.asyncio
    async def test_builds_then_caches_identical_object(self, prompt_tree, recording_fs):
        fs = recording_fs()
        manager = _manager(prompt_tree, fs)

        first = await manager.get_structure()
        calls_after_first = fs.total_calls
        second = await manager.get_structure()
        third = await manager.get_structure()

        assert first is second is third
        assert fs.total_calls == calls_after_first
        assert manager.state == IndexState.READY
        await manager.close()

    @pytest.mark.asyncio
    async def test_structure_content(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        structure = await manager.get_structure()
        assert [p.name for p in structure.root_prompts] == ["alpha", "zulu-notes"]
        assert {f.relative_path for f in structure.folders} == {"empty", "team", "team/deep"}
        await manager.close()

    @pytest.mark.asyncio
    async def test_none_root_no_io(self, recording_fs):
        fs = recording_fs()
        manager = IndexManager(fs, lambda: None)
        structure = await manager.get_structure()
        assert structure == PromptStructure(folders=(), root_prompts=())
        assert structure.is_empty
        assert fs.total_calls == 0
        assert manager.state == IndexState.READY
        await manager.close()

    @pytest.mark.asyncio
    async def test_missing_root_is_empty(self, tmp_path, recording_fs):
        manager = _manager(tmp_path / "missing", recording_fs())
        assert (await manager.get_structure()).is_empty
        await manager.close()

    @pytest.mark.asyncio
    async def test_first_build_notifies_initial(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        events = _record(manager)
        await manager.get_structure()
        await manager.get_structure()
        assert events == [RefreshEvent("initial")]
        await manager.close()


class TestBuildDeduplication:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_scan(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs, delay=0.02)
        manager = _manager(prompt_tree, fs, walker=walker)
        events = _record(manager)

        results = await asyncio.gather(
            manager.get_structure(),
            manager.build(),
            manager.get_structure(),
            manager.build(),
        )

        assert walker.scans == 1
        assert all(r is results[0] for r in results)
        assert len(events) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_state_building_while_in_flight(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        manager = _manager(prompt_tree, fs, walker=counting_walker(fs, delay=0.02))
        task = asyncio.ensure_future(manager.build())
        await asyncio.sleep(0)
        assert manager.state == IndexState.BUILDING
        await task
        assert manager.state == IndexState.READY
        await manager.close()

    @pytest.mark.asyncio
    async def test_sequential_builds_rescan(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        await manager.build()
        await manager.build()
        assert walker.scans == 2
        await manager.close()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_build(
        self, prompt_tree, recording_fs, counting_walker
    ):
        fs = recording_fs()
        walker = counting_walker(fs, delay=0.03)
        manager = _manager(prompt_tree, fs, walker=walker)
        impatient = asyncio.ensure_future(manager.build())
        patient = asyncio.ensure_future(manager.build())
        await asyncio.sleep(0.005)
        impatient.cancel()
        structure = await patient
        assert not structure.is_empty
        assert walker.scans == 1
        await manager.close()


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_rebuild(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        await manager.get_structure()
        events = _record(manager)
        walker.scans = 0

        futures = []
        for _ in range(10):
            futures.append(manager.invalidate())
            await asyncio.sleep(DEBOUNCE_MS / 1000 / 5)

        assert manager.state == IndexState.PENDING_DEBOUNCE
        assert manager.cached is None
        results = await asyncio.gather(*futures)
        await asyncio.sleep(QUIET)

        assert walker.scans == 1
        assert events == [RefreshEvent("file-change")]
        assert all(r is results[0] for r in results)
        assert manager.cached is results[0]
        await manager.close()

    @pytest.mark.asyncio
    async def test_read_during_window_scans_once(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        await manager.get_structure()
        events = _record(manager)
        walker.scans = 0

        futures = [manager.invalidate() for _ in range(3)]
        structure = await manager.get_structure()
        await asyncio.sleep(QUIET)

        assert walker.scans == 1
        assert events == [RefreshEvent("file-change")]
        assert manager.cached is structure
        assert all(f.result() is structure for f in futures)
        assert manager.state == IndexState.READY
        await manager.close()

    @pytest.mark.asyncio
    async def test_cancelled_read_still_completes_window(
        self, prompt_tree, recording_fs, counting_walker
    ):
        fs = recording_fs()
        walker = counting_walker(fs, delay=0.02)
        manager = _manager(prompt_tree, fs, walker=walker)
        pending = manager.invalidate()
        reader = asyncio.ensure_future(manager.get_structure())
        await asyncio.sleep(0.005)
        reader.cancel()

        structure = await asyncio.wait_for(pending, timeout=1.0)
        assert not structure.is_empty
        assert walker.scans == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_rebuild_waiters_share_result(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        a, b, c = await asyncio.gather(
            manager.rebuild(), manager.rebuild(), manager.rebuild()
        )
        assert a is b is c
        assert walker.scans == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_rebuild_sees_new_file(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        before = await manager.get_structure()
        (prompt_tree / "bravo.md").write_text("---\ntitle: Bravo\n---\n")
        after = await manager.rebuild()
        assert before.find_prompt((prompt_tree / "bravo.md").absolute()) is None
        assert after.find_prompt((prompt_tree / "bravo.md").absolute()).title == "Bravo"
        await manager.close()

    @pytest.mark.asyncio
    async def test_separate_windows_rebuild_separately(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        events = _record(manager)
        await manager.rebuild()
        await manager.rebuild()
        assert walker.scans == 2
        assert len(events) == 2
        await manager.close()

    @pytest.mark.asyncio
    async def test_invalidation_during_build_triggers_follow_up(
        self, prompt_tree, recording_fs, counting_walker
    ):
        fs = recording_fs()
        walker = counting_walker(fs, delay=0.05)
        manager = _manager(prompt_tree, fs, walker=walker, debounce_ms=5)
        events = _record(manager)

        first = asyncio.ensure_future(manager.build())
        await asyncio.sleep(0.01)
        (prompt_tree / "late.md").write_text("# Late")
        pending = manager.invalidate()

        await first
        fresh = await pending

        assert fresh.find_prompt((prompt_tree / "late.md").absolute()) is not None
        assert manager.cached is fresh
        assert walker.scans == 2
        # The stale build is not installed, so only the follow-up notifies.
        assert len(events) == 1
        await manager.close()


class TestForcedRebuild:
    @pytest.mark.asyncio
    async def test_supersedes_pending_debounce(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        events = _record(manager)

        pending = manager.invalidate()
        forced = await manager.rebuild_now()
        assert await pending is forced

        await asyncio.sleep(QUIET)
        assert walker.scans == 1
        assert events == [RefreshEvent("manual")]
        assert manager.state == IndexState.READY
        await manager.close()

    @pytest.mark.asyncio
    async def test_invalidate_force_alias(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        manager.invalidate()
        await manager.invalidate_force()
        await asyncio.sleep(QUIET)
        assert walker.scans == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_waits_for_stale_build_then_rescans(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs, delay=0.03)
        manager = _manager(prompt_tree, fs, walker=walker)

        running = asyncio.ensure_future(manager.build())
        await asyncio.sleep(0.005)
        moved = prompt_tree / "moved"
        (prompt_tree / "team").rename(moved)

        forced = await manager.rebuild_now()
        await running

        assert walker.scans == 2
        assert "moved" in {f.relative_path for f in forced.folders}
        assert "team" not in {f.relative_path for f in forced.folders}
        assert manager.cached is forced
        await manager.close()


class TestFailures:
    @pytest.mark.asyncio
    async def test_unreadable_file_absent(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs(fail_reads={"cherry.md"}))
        structure = await manager.get_structure()
        team = next(f for f in structure.folders if f.name == "team")
        assert [p.title for p in team.prompts] == ["apple", "Banana"]
        assert len(structure.root_prompts) == 2
        await manager.close()

    @pytest.mark.asyncio
    async def test_invalid_header_value_does_not_empty_index(self, prompt_tree, recording_fs):
        (prompt_tree / "bad.md").write_text("---\ncount: !!int abc\n---\n")
        manager = _manager(prompt_tree, recording_fs())
        structure = await manager.get_structure()
        assert structure.prompt_count == 7
        assert structure.find_prompt((prompt_tree / "bad.md").absolute()).title == "bad"
        await manager.close()

    @pytest.mark.asyncio
    async def test_listing_failure_yields_empty_not_partial(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs(fail_listing={"deep"}))
        events = _record(manager)
        structure = await manager.get_structure()
        assert structure.is_empty
        assert manager.state == IndexState.READY
        assert len(events) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_resolver_error_yields_empty(self, recording_fs):
        def _broken():
            raise RuntimeError("workspace not ready")

        manager = IndexManager(recording_fs(), _broken)
        assert (await manager.get_structure()).is_empty
        await manager.close()

    @pytest.mark.asyncio
    async def test_contract_violation_propagates(self, prompt_tree, recording_fs):
        class _BrokenOrganizer(PromptOrganizer):
            async def organize(self, prompts, root):
                return await super().organize(None, root)

        fs = recording_fs()
        manager = _manager(prompt_tree, fs, organizer=_BrokenOrganizer(fs))
        with pytest.raises(IndexContractError):
            await manager.get_structure()
        assert manager.cached is None
        await manager.close()


class TestNotifications:
    @pytest.mark.asyncio
    async def test_unsubscribe(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        events: List[RefreshEvent] = []
        unsubscribe = manager.subscribe(events.append)
        await manager.build()
        unsubscribe()
        await manager.build()
        assert len(events) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_listener_error_does_not_break_build(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        events: List[RefreshEvent] = []

        def _boom(event):
            raise RuntimeError("listener bug")

        manager.subscribe(_boom)
        manager.subscribe(events.append)
        structure = await manager.build()
        assert not structure.is_empty
        assert events == [RefreshEvent("manual")]
        await manager.close()

    @pytest.mark.asyncio
    async def test_snapshot_installed_before_notification(self, prompt_tree, recording_fs):
        manager = _manager(prompt_tree, recording_fs())
        seen = []
        manager.subscribe(lambda event: seen.append(manager.cached))
        structure = await manager.build()
        assert seen == [structure]
        await manager.close()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self, prompt_tree, recording_fs):
        async with _manager(prompt_tree, recording_fs()) as manager:
            await manager.get_structure()
        assert manager.closed
        assert manager.cached is None
        with pytest.raises(PromptIndexError):
            await manager.get_structure()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_debounce(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        walker = counting_walker(fs)
        manager = _manager(prompt_tree, fs, walker=walker)
        pending = manager.invalidate()
        await manager.close()
        await asyncio.sleep(QUIET)
        assert pending.cancelled()
        assert walker.scans == 0

    @pytest.mark.asyncio
    async def test_close_waits_for_running_build(self, prompt_tree, recording_fs, counting_walker):
        fs = recording_fs()
        manager = _manager(prompt_tree, fs, walker=counting_walker(fs, delay=0.02))
        running = asyncio.ensure_future(manager.build())
        await asyncio.sleep(0)
        await manager.close()
        assert not (await running).is_empty

    @pytest.mark.asyncio
    async def test_independent_managers(self, prompt_tree, tmp_path, recording_fs):
        other = tmp_path / "other"
        other.mkdir()
        (other / "solo.md").write_text("# Solo")
        async with _manager(prompt_tree, recording_fs()) as a, _manager(other, recording_fs()) as b:
            sa, sb = await asyncio.gather(a.get_structure(), b.get_structure())
        assert sa.prompt_count == 6
        assert [p.title for p in sb.root_prompts] == ["Solo"]

    def test_negative_debounce_rejected(self, recording_fs):
        with pytest.raises(IndexContractError):
            IndexManager(recording_fs(), lambda: None, debounce_ms=-1)
