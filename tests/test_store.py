"""
Tests for XennonStore CRUD, queries and notifications.

Every mutation returns a Future; tests call .result() where they need the
value, and deliberately skip waiting where they exercise queue ordering.
"""

import json
import threading

import pytest

from conftest import on_disk
from xennon import InvalidFilter, Match, StoreCorrupt, Where, XennonStore


class TestConstruction:
    def test_creates_directory_and_empty_file(self, tmp_path):
        path = tmp_path / "nested" / "dir"
        with XennonStore(name="fresh", path=path, backups={"enabled": False}) as store:
            assert store.path == path / "fresh.json"
            assert json.loads(store.path.read_text()) == {}
            assert store.all() == []

    def test_loads_existing_file_in_order(self, tmp_path):
        (tmp_path / "s.json").write_text(json.dumps({"z": {"n": 1}, "a": {"n": 2}}))
        with XennonStore(name="s", path=tmp_path, backups={"enabled": False}) as store:
            assert [it["id"] for it in store.all()] == ["z", "a"]

    def test_corrupt_file_is_not_overwritten(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json")
        with pytest.raises(StoreCorrupt):
            XennonStore(name="bad", path=tmp_path, backups={"enabled": False})
        assert (tmp_path / "bad.json").read_text() == "{not json"

    @pytest.mark.parametrize("content", ["[]", '{"a": 1}'])
    def test_wrong_shape_is_corrupt(self, tmp_path, content):
        (tmp_path / "bad.json").write_text(content)
        with pytest.raises(StoreCorrupt):
            XennonStore(name="bad", path=tmp_path, backups={"enabled": False})

    def test_data_survives_reopen(self, make_store):
        first = make_store("persist")
        item_id = first.add({"name": "Ada"}).result()
        first.close()
        second = make_store("persist")
        assert second.get(item_id) == {"name": "Ada"}


class TestAddGet:
    def test_add_returns_id_and_get_roundtrips(self, store):
        fields = {"name": "Ada", "age": 36, "tags": ["math"], "meta": {"x": None}}
        item_id = store.add(fields).result()
        assert isinstance(item_id, str)
        assert store.get(item_id) == fields

    def test_add_list_returns_ids_in_order(self, store):
        ids = store.add([{"n": 1}, {"n": 2}, {"n": 3}]).result()
        assert len(set(ids)) == 3
        assert [store.get(i)["n"] for i in ids] == [1, 2, 3]
        assert [it["n"] for it in store.all()] == [1, 2, 3]

    def test_add_empty_list(self, store):
        assert store.add([]).result() == []

    def test_add_persists(self, store):
        item_id = store.add({"name": "Ada"}).result()
        assert on_disk(store) == {item_id: {"name": "Ada"}}

    def test_get_missing_is_none(self, store):
        assert store.get("missing") is None

    def test_get_returns_copy(self, store):
        item_id = store.add({"tags": ["a"]}).result()
        store.get(item_id)["tags"].append("b")
        assert store.get(item_id) == {"tags": ["a"]}

    def test_caller_mutation_after_add_does_not_leak(self, store):
        fields = {"tags": ["a"]}
        item_id = store.add(fields).result()
        fields["tags"].append("b")
        assert store.get(item_id) == {"tags": ["a"]}

    @pytest.mark.parametrize("bad", ["text", 5, None, [1, 2]])
    def test_add_rejects_non_mappings(self, store, bad):
        with pytest.raises(TypeError):
            store.add(bad)

    def test_unserializable_fields_fail_and_roll_back(self, store):
        keep = store.add({"ok": True}).result()
        with pytest.raises(TypeError):
            store.add({"bad": object()}).result()
        assert list(store.object()) == [keep]
        assert on_disk(store) == {keep: {"ok": True}}


class TestQueries:
    def test_has_id(self, people):
        store, ids = people
        assert store.has(ids[0]) is True
        assert store.has("never-added") is False

    def test_has_object_returns_matches(self, people):
        store, ids = people
        found = store.has({"team": "web"})
        assert [it["id"] for it in found] == [ids[2], ids[3]]
        assert store.has({"team": "nobody"}) == []

    def test_has_predicate(self, people):
        store, ids = people
        assert [it["id"] for it in store.has(lambda it: it["name"] == "Ed")] == [ids[4]]

    def test_has_invalid_filter(self, store):
        with pytest.raises(InvalidFilter):
            store.has(42)

    def test_only_loose_vs_strict(self, people):
        store, ids = people
        assert [it["id"] for it in store.only({"age": 30})] == [ids[1], ids[2]]
        assert [it["id"] for it in store.only({"age": 30}, strict=True)] == [ids[2]]
        assert [it["id"] for it in store.only({"age": 30}, {"strict": True})] == [ids[2]]

    def test_only_count_30_strict(self, store):
        """A numeric filter value never strictly matches its string form."""
        store.add({"count": "30"}).result()
        assert store.only({"count": 30}, strict=True) == []
        assert len(store.only({"count": 30})) == 1

    def test_only_strict_float_matches_int(self, store):
        item_id = store.add({"count": 30.0}).result()
        assert [it["id"] for it in store.only({"count": 30}, strict=True)] == [item_id]

    def test_only_empty_object_returns_everything(self, people):
        store, _ = people
        assert len(store.only({})) == 5

    def test_only_requires_mapping(self, store):
        with pytest.raises(InvalidFilter):
            store.only(lambda it: True)

    def test_filter_and_first(self, people):
        store, ids = people
        older = store.filter(lambda it: int(it["age"]) > 30)
        assert [it["id"] for it in older] == [ids[0], ids[3]]
        assert store.first(lambda it: it["team"] == "web")["name"] == "Cy"
        assert store.first(lambda it: False) is None

    def test_filter_requires_predicate(self, store):
        with pytest.raises(InvalidFilter):
            store.filter({"a": 1})
        with pytest.raises(InvalidFilter):
            store.first("id")

    def test_all_includes_ids(self, people):
        store, ids = people
        everything = store.all()
        assert [it["id"] for it in everything] == ids
        assert everything[0] == {"id": ids[0], "name": "Ada", "age": 36, "team": "core"}

    def test_object_is_raw_mapping(self, people):
        store, ids = people
        raw = store.object()
        assert list(raw) == ids
        assert "id" not in raw[ids[0]]

    def test_count(self, people):
        store, _ = people
        assert store.count() == 5
        assert len(store) == 5
        assert store.count({"team": "core"}) == 2

    def test_tagged_filters_accepted(self, people):
        store, ids = people
        assert [it["id"] for it in store.has(Match({"name": "Di"}))] == [ids[3]]
        assert store.has(Where(lambda it: it["name"] == "Zed")) == []


class TestEnsure:
    def test_ensure_inserts_once(self, store):
        first = store.ensure({"article": "Test"}, {"article": "Test", "count": 1}).result()
        second = store.ensure({"article": "Test"}, {"article": "Test", "count": 2}).result()
        assert isinstance(first, str)
        assert second is True
        assert store.object() == {first: {"article": "Test", "count": 1}}

    def test_ensure_with_id_filter(self, store):
        existing = store.add({"a": 1}).result()
        assert store.ensure(existing, {"a": 2}).result() is True
        new_id = store.ensure("not-there", {"a": 3}).result()
        assert new_id != "not-there"
        assert store.get(new_id) == {"a": 3}

    def test_ensure_back_to_back_without_waiting(self, store):
        """Both calls are queued; the second sees the first's insert."""
        f1 = store.ensure({"k": "v"}, {"k": "v"})
        f2 = store.ensure({"k": "v"}, {"k": "v"})
        assert isinstance(f1.result(), str)
        assert f2.result() is True
        assert store.count() == 1


class TestEdit:
    def test_edit_merges(self, store):
        item_id = store.add({"name": "Ada", "age": 36}).result()
        assert store.edit(item_id, {"age": 37, "city": "London"}).result() is True
        assert store.get(item_id) == {"name": "Ada", "age": 37, "city": "London"}
        assert on_disk(store)[item_id] == {"name": "Ada", "age": 37, "city": "London"}

    def test_edit_none_overwrites_but_never_removes(self, store):
        item_id = store.add({"name": "Ada", "age": 36}).result()
        store.edit(item_id, {"age": None}).result()
        assert store.get(item_id) == {"name": "Ada", "age": None}

    def test_edit_by_object_uses_loose_match(self, people):
        store, ids = people
        assert store.edit({"age": 30}, {"seen": True}).result() is True
        assert store.get(ids[1])["seen"] is True
        assert "seen" not in store.get(ids[2])

    def test_edit_missing_is_none(self, store):
        assert store.edit("missing", {"a": 1}).result() is None
        assert store.edit(lambda it: False, {"a": 1}).result() is None

    def test_edit_rejects_bad_patch(self, store):
        with pytest.raises(TypeError):
            store.edit("x", ["not", "a", "mapping"])


class TestUpsert:
    def test_upsert_edits_existing(self, store):
        item_id = store.add({"name": "Ada", "age": 36}).result()
        assert store.upsert({"name": "Ada"}, {"age": 40}).result() is True
        assert store.get(item_id) == {"name": "Ada", "age": 40}
        assert store.count() == 1

    def test_upsert_inserts_truthy_fields_only(self, store):
        assert store.upsert({"name": "Bob"}, {"name": "Bob", "age": 0, "nick": "", "tags": [], "x": None}).result() is True
        assert store.all()[0] == {"id": store.all()[0]["id"], "name": "Bob"}


class TestReplace:
    def test_replace_is_wholesale(self, store):
        item_id = store.add({"name": "Ada", "age": 36}).result()
        assert store.replace(item_id, {"title": "Countess"}).result() is True
        assert store.get(item_id) == {"title": "Countess"}

    def test_replace_missing_is_none(self, store):
        assert store.replace({"name": "nobody"}, {"a": 1}).result() is None
        assert on_disk(store) == {}


class TestDelete:
    def test_delete(self, people):
        store, ids = people
        assert store.delete({"name": "Bob"}).result() is True
        assert store.get(ids[1]) is None
        assert ids[1] not in on_disk(store)

    def test_delete_missing_is_none(self, store):
        assert store.delete("missing").result() is None

    def test_delete_only_first_match(self, people):
        store, ids = people
        store.delete({"team": "core"}).result()
        assert store.get(ids[0]) is None
        assert store.get(ids[1]) is not None

    def test_add_then_delete_without_waiting(self, store):
        """The queue serializes add before delete; the item ends up absent."""
        added = store.add({"name": "A"})
        deleted = store.delete({"name": "A"})
        assert deleted.result() is True
        item_id = added.result()
        assert store.get(item_id) is None
        assert on_disk(store) == {}


class TestSweep:
    def test_sweep_three_of_five(self, people):
        store, ids = people
        assert store.sweep(lambda it: it["team"] in ("core", "ops")).result() == 3
        remaining = on_disk(store)
        assert list(remaining) == [ids[2], ids[3]]
        assert remaining[ids[2]] == {"name": "Cy", "age": 30, "team": "web"}

    def test_sweep_object(self, people):
        store, _ = people
        assert store.sweep({"team": "web"}).result() == 2
        assert store.count() == 3

    def test_sweep_nothing(self, people):
        store, _ = people
        assert store.sweep({"team": "nobody"}).result() == 0
        assert store.count() == 5

    def test_sweep_predicate_error_rolls_back(self, people):
        store, _ = people

        def flaky(it):
            if it["name"] == "Di":
                raise RuntimeError("bad predicate")
            return True

        with pytest.raises(RuntimeError):
            store.sweep(flaky).result()
        assert store.count() == 5
        assert len(on_disk(store)) == 5


class TestEmpty:
    def test_empty(self, people):
        store, _ = people
        assert store.empty().result() is True
        assert store.all() == []
        assert on_disk(store) == {}

    def test_empty_empty_store(self, store):
        assert store.empty().result() is True


class TestNotifications:
    def test_events_and_payloads(self, store):
        seen = []
        for name in ("added", "edited", "replaced", "deleted", "emptied"):
            store.on(name, lambda payload, name=name: seen.append((name, payload)))

        a = store.add({"n": 1}).result()
        ids = store.add([{"n": 2}, {"n": 3}]).result()
        store.edit(a, {"n": 10}).result()
        store.replace(a, {"n": 11}).result()
        store.delete(a).result()
        store.sweep({}).result()
        store.empty().result()
        store.flush()

        assert seen == [
            ("added", {"id": a}),
            ("added", {"ids": ids}),
            ("edited", {"id": a}),
            ("replaced", {"id": a}),
            ("deleted", {"id": a}),
            ("deleted", {"id": ids[0]}),
            ("deleted", {"id": ids[1]}),
            ("emptied", {}),
        ]

    def test_no_event_when_nothing_changed(self, store):
        seen = []
        store.on("edited", seen.append)
        store.edit("missing", {"a": 1}).result()
        store.flush()
        assert seen == []

    def test_flush_waits_for_notifications(self, store):
        seen = []
        store.on("added", seen.append)
        store.add({"n": 1})
        store.flush()
        assert len(seen) == 1

    def test_handlers_run_off_the_worker(self, store):
        """A handler may wait on a store operation it submits."""
        edited = []

        def on_added(payload):
            edited.append(store.edit(payload["id"], {"seen": True}).result(timeout=5))

        store.on("added", on_added)
        item_id = store.add({"n": 1}).result()
        store.flush()
        assert edited == [True]
        assert store.get(item_id) == {"n": 1, "seen": True}

    def test_failing_listener_does_not_fail_operation(self, store):
        def broken(payload):
            raise RuntimeError("listener bug")

        store.on("added", broken)
        item_id = store.add({"n": 1}).result()
        store.flush()
        assert store.get(item_id) == {"n": 1}

    def test_off(self, store):
        seen = []
        store.on("added", seen.append)
        assert store.off("added", seen.append) is True
        assert store.off("added", seen.append) is False
        store.add({"n": 1}).result()
        store.flush()
        assert seen == []

    def test_unknown_event(self, store):
        with pytest.raises(ValueError):
            store.on("inserted", print)


class TestConcurrency:
    def test_parallel_adds_no_data_loss(self, store):
        """8 threads each add 25 items without waiting; all land on disk."""
        futures = []
        lock = threading.Lock()

        def worker(n):
            for i in range(25):
                f = store.add({"worker": n, "i": i})
                with lock:
                    futures.append(f)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        store.flush()
        ids = {f.result() for f in futures}
        assert len(ids) == 200
        assert set(on_disk(store)) == ids

    def test_reads_never_see_partial_sweep(self, people):
        store, _ = people
        store.add([{"team": "bulk"} for _ in range(200)]).result()
        counts = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                counts.append(len(store.only({"team": "bulk"})))

        t = threading.Thread(target=reader)
        t.start()
        store.sweep({"team": "bulk"}).result()
        done.set()
        t.join()
        assert set(counts) <= {0, 200}

    def test_flush_waits_for_pending(self, store):
        for i in range(20):
            store.add({"i": i})
        store.flush()
        assert store.pending == 0
        assert len(on_disk(store)) == 20
