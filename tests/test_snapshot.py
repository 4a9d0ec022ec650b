"""Tests for the immutable Snapshot and its optimistic operations."""

import pytest

from optimist import (
    ErrorKind,
    MemoryReconciler,
    MutationRequest,
    ReconciliationError,
    ReconciliationResult,
    Snapshot,
    create_cache,
)


class TestImmutability:
    """Snapshots never change once created."""

    def test_insert_leaves_receiver_unchanged(self, cache: Snapshot) -> None:
        """Test that deriving a snapshot does not touch the original."""
        first = cache.insert("x", {"title": "t"}).immediate
        second = first.insert("x", {"title": "other"}).immediate

        assert cache.get_by_id("x") is None
        assert first.get_by_id("x") == {"title": "t"}
        assert second.get_by_id("x") == {"title": "other"}

    def test_update_and_remove_leave_receiver_unchanged(self, cache: Snapshot) -> None:
        base = cache.insert("x", {"a": 1}).immediate
        base.update("x", {"a": 2})
        base.remove("x")
        assert base.get_by_id("x") == {"a": 1}

    def test_records_are_read_only(self, cache: Snapshot) -> None:
        """Test that holders cannot mutate a snapshot through its records."""
        snap = cache.insert("x", {"title": "t"}).immediate
        with pytest.raises(TypeError):
            snap.get_by_id("x")["title"] = "changed"  # type: ignore[index]
        with pytest.raises(TypeError):
            snap["y"] = {}  # type: ignore[index]

    def test_caller_dict_is_copied(self, cache: Snapshot) -> None:
        """Test that mutating the caller's dict afterwards has no effect."""
        record = {"title": "t"}
        snap = cache.insert("x", record).immediate
        record["title"] = "changed"
        assert snap.get_by_id("x") == {"title": "t"}

    def test_versions_increase_along_lineage(self, cache: Snapshot) -> None:
        first = cache.insert("x", {}).immediate
        second = first.remove("x").immediate
        assert (cache.version, first.version, second.version) == (0, 1, 2)


class TestOptimisticOperations:
    """Tests for the immediate half of insert/update/remove."""

    def test_insert_overwrites(self, cache: Snapshot) -> None:
        snap = cache.insert("x", {"a": 1, "b": 2}).immediate
        snap = snap.insert("x", {"c": 3}).immediate
        assert snap.get_by_id("x") == {"c": 3}

    def test_update_merges_fields(self, cache: Snapshot) -> None:
        """Test that successive updates union their fields."""
        snap = cache.update("x", {"a": 1}).immediate
        snap = snap.update("x", {"b": 2}).immediate
        assert snap.get_by_id("x") == {"a": 1, "b": 2}

    def test_update_patch_wins(self, cache: Snapshot) -> None:
        snap = cache.insert("x", {"a": 1, "b": 1}).immediate
        snap = snap.update("x", {"b": 2}).immediate
        assert snap.get_by_id("x") == {"a": 1, "b": 2}

    def test_update_absent_merges_over_empty(self, cache: Snapshot) -> None:
        snap = cache.update("missing", {"a": 1}).immediate
        assert snap.get_by_id("missing") == {"a": 1}

    def test_remove_drops_id(self, cache: Snapshot) -> None:
        snap = cache.insert("x", {"a": 1}).immediate
        snap = snap.remove("x").immediate
        assert snap.get_by_id("x") is None
        assert "x" not in snap

    def test_remove_absent_is_noop(self, cache: Snapshot) -> None:
        """Test that removing an absent id does not fail."""
        base = cache.insert("y", {"a": 1}).immediate
        snap = base.remove("x").immediate
        assert snap.get_by_id("x") is None
        assert snap == base

    def test_outcome_carries_request(self, cache: Snapshot) -> None:
        outcome = cache.update("x", {"a": 1})
        assert outcome.request == MutationRequest.for_update("x", {"a": 1})
        assert outcome.request.kind == "update"

    def test_mapping_protocol(self, cache: Snapshot) -> None:
        snap = cache.insert("a", {"n": 1}).immediate.insert("b", {"n": 2}).immediate
        assert len(snap) == 2
        assert sorted(snap) == ["a", "b"]
        assert snap["a"] == {"n": 1}

    def test_custom_merge(self, reconciler: MemoryReconciler) -> None:
        """Test that a merge supplied at creation is used for every update."""

        def append_log(current, patch):
            merged = {**(current or {}), **patch}
            merged["log"] = [*(current or {}).get("log", []), *patch.get("log", [])]
            return merged

        snap = create_cache(reconciler, merge=append_log)
        snap = snap.update("x", {"log": ["a"]}).immediate
        snap = snap.update("x", {"log": ["b"]}).immediate
        assert snap.get_by_id("x")["log"] == ["a", "b"]


class TestEventual:
    """Tests for the reconciled half of each mutation."""

    async def test_eventual_is_lazy(
        self, cache: Snapshot, reconciler: MemoryReconciler
    ) -> None:
        """Test that no request is sent until eventual is awaited."""
        outcome = cache.insert("x", {"title": "t"})
        assert reconciler.calls == []

        await outcome.eventual
        await outcome.eventual
        assert reconciler.calls == [MutationRequest.for_create("x", {"title": "t"})]

    async def test_replace_on_reconcile(self, cache: Snapshot) -> None:
        """Test that the authoritative record replaces the optimistic guess."""
        outcome = cache.insert("x", {"title": "t"})
        assert outcome.immediate.get_by_id("x") == {"title": "t"}

        reconciled = await outcome.eventual
        assert reconciled.get_by_id("x") == {"title": "t", "id": "x", "status": "new"}

    async def test_reconcile_drops_optimistic_only_fields(self) -> None:
        """Test that fields the authority does not keep disappear."""
        reconciler = MemoryReconciler(
            fill=lambda id, record: {"id": id, "title": record["title"]}
        )
        cache = create_cache(reconciler)

        reconciled = await cache.insert("x", {"title": "t", "draft": True}).eventual
        assert reconciled.get_by_id("x") == {"id": "x", "title": "t"}

    async def test_remove_reconciles(
        self, cache: Snapshot, reconciler: MemoryReconciler
    ) -> None:
        reconciler.seed({"x": {"id": "x"}})
        reconciled = await cache.remove("x").eventual
        assert reconciled.get_by_id("x") is None
        assert reconciler.records == {}

    async def test_fold_back_is_relative_to_issue_time(self, cache: Snapshot) -> None:
        """Test that later snapshots do not leak into an earlier fold-back."""
        outcome = cache.insert("x", {"title": "t"})
        unrelated = outcome.immediate.insert("y", {"title": "u"}).immediate

        reconciled = await outcome.eventual
        assert "y" in unrelated
        assert "y" not in reconciled
        assert reconciled.provenance is not None
        assert set(reconciled.provenance.records) == {"x"}

    async def test_reconciler_sees_receiver_as_view(self) -> None:
        seen: list[Snapshot] = []

        async def recording(view: Snapshot, request: MutationRequest):
            seen.append(view)
            return ReconciliationResult(records={"x": {"id": "x"}})

        root = create_cache(recording)
        await root.insert("x", {}).eventual
        assert seen == [root]
        assert seen[0] is root

    async def test_failure_surfaces(self, cache: Snapshot) -> None:
        """Test that reconciler errors reach whoever awaits eventual."""
        outcome = cache.update("missing", {"a": 1})
        with pytest.raises(ReconciliationError) as exc_info:
            await outcome.eventual
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.request == outcome.request

    async def test_incomplete_result_is_invalid(self) -> None:
        async def forgetful(view: Snapshot, request: MutationRequest):
            return ReconciliationResult()

        outcome = create_cache(forgetful).insert("x", {"title": "t"})
        with pytest.raises(ReconciliationError) as exc_info:
            await outcome.eventual
        assert exc_info.value.kind is ErrorKind.INVALID


class TestCompletionOrderRace:
    """Raw snapshots fold back in completion order, not issue order."""

    async def test_slower_first_mutation_overwrites_second(self, gated, drain) -> None:
        gated.backing.seed({"x": {"id": "x", "v": 0}})
        root = create_cache(gated)

        first = root.update("x", {"v": 1})
        second = first.immediate.update("x", {"v": 2})
        first_task = first.eventual.start()
        second_task = second.eventual.start()
        await gated.wait_for_calls(2)

        # Second request resolves first
        gated.release(1)
        adopted = await second_task
        assert adopted.get_by_id("x") == {"id": "x", "v": 2}

        # First resolves last and, adopted last, shows the stale value
        gated.release(0)
        adopted = await first_task
        assert adopted.get_by_id("x") == {"id": "x", "v": 1}

        await drain()
        assert gated.backing.records["x"]["v"] == 2


class TestCreateCache:
    def test_starts_empty(self, reconciler: MemoryReconciler) -> None:
        snap = create_cache(reconciler)
        assert len(snap) == 0
        assert snap.version == 0
        assert snap.provenance is None

    def test_initial_records(self, reconciler: MemoryReconciler) -> None:
        snap = create_cache(reconciler, initial={"x": {"a": 1}})
        assert snap.get_by_id("x") == {"a": 1}

    def test_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError, match="reconciler must be callable"):
            create_cache("not a reconciler")  # type: ignore[arg-type]
