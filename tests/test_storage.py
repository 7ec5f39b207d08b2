import datetime as dt
import threading

from sci_librarian.models import ArticleMetadata, FileStatus
from sci_librarian.storage import RecordStore, UpsertOutcome

METADATA = ArticleMetadata(
    title="Attention Is All You Need",
    authors=["Ashish Vaswani", "Noam Shazeer"],
    summary="Transformers replace recurrence with attention.",
    abstract="The dominant sequence transduction models...",
)


def test_upsert_inserts_pending_record(store):
    outcome = store.upsert("id:1", "paper.pdf", "hash-1", path="/0_inbox/paper.pdf")

    record = store.get("id:1")
    assert outcome is UpsertOutcome.INSERTED
    assert record.status is FileStatus.PENDING
    assert record.name == "paper.pdf"
    assert record.path == "/0_inbox/paper.pdf"
    assert record.content_hash == "hash-1"
    assert record.updated_at.tzinfo is dt.timezone.utc


def test_upsert_same_hash_keeps_status_and_refreshes_name(store):
    store.upsert("id:1", "old.pdf", "hash-1")
    store.mark_processed("id:1", METADATA, ["/papers/ml/old.pdf"])

    outcome = store.upsert("id:1", "new.pdf", "hash-1")

    record = store.get("id:1")
    assert outcome is UpsertOutcome.UNCHANGED
    assert record.status is FileStatus.PROCESSED
    assert record.name == "new.pdf"
    assert record.title == METADATA.title


def test_upsert_same_hash_keeps_error(store):
    store.upsert("id:1", "paper.pdf", "hash-1")
    store.mark_error("id:1", "Download failed: boom")

    store.upsert("id:1", "paper.pdf", "hash-1")

    record = store.get("id:1")
    assert record.status is FileStatus.ERROR
    assert record.last_error == "Download failed: boom"


def test_upsert_changed_hash_resets_to_pending(store):
    store.upsert("id:1", "paper.pdf", "hash-1")
    store.mark_error("id:1", "Classification failed: timeout")

    outcome = store.upsert("id:1", "paper.pdf", "hash-2")

    record = store.get("id:1")
    assert outcome is UpsertOutcome.RESET
    assert record.status is FileStatus.PENDING
    assert record.content_hash == "hash-2"
    assert record.last_error is None


def test_load_pending_orders_newest_first_and_limits(store):
    for index in range(1, 4):
        store.upsert(f"id:{index}", f"{index}.pdf", f"hash-{index}")
    store.set_status("id:2", FileStatus.PROCESSED)
    store.upsert("id:4", "4.pdf", "hash-4")

    pending = store.load_pending(10)
    assert [record.remote_id for record in pending] == ["id:4", "id:3", "id:1"]

    assert [record.remote_id for record in store.load_pending(2)] == ["id:4", "id:3"]


def test_load_pending_with_non_positive_limit(store):
    store.upsert("id:1", "1.pdf", "hash-1")

    assert store.load_pending(0) == []
    assert store.load_pending(-1) == []


def test_load_pending_on_empty_store(store):
    assert store.load_pending(10) == []


def test_set_status_clears_error_unless_error(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    store.mark_error("id:1", "boom")

    store.set_status("id:1", FileStatus.ERROR)
    assert store.get("id:1").last_error == "boom"

    store.set_status("id:1", FileStatus.PENDING)
    record = store.get("id:1")
    assert record.status is FileStatus.PENDING
    assert record.last_error is None


def test_updated_at_is_strictly_increasing(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    stamps = [store.get("id:1").updated_at]
    for _ in range(20):
        store.set_status("id:1", FileStatus.PENDING)
        stamps.append(store.get("id:1").updated_at)

    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))


def test_updated_at_stays_ahead_of_a_lagging_clock(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    future = dt.datetime(2999, 1, 1)
    store._last_stamp = future

    store.set_status("id:1", FileStatus.PENDING)

    expected = (future + dt.timedelta(microseconds=1)).replace(tzinfo=dt.timezone.utc)
    assert store.get("id:1").updated_at == expected


def test_mark_processed_stores_metadata(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    store.mark_error("id:1", "previous failure")

    store.mark_processed("id:1", METADATA, ["/papers/ml/1.pdf", "/papers/nlp/1.pdf"])

    record = store.get("id:1")
    assert record.status is FileStatus.PROCESSED
    assert record.title == METADATA.title
    assert record.authors == METADATA.authors
    assert record.summary == METADATA.summary
    assert record.target_paths == ["/papers/ml/1.pdf", "/papers/nlp/1.pdf"]
    assert record.last_error is None


def test_update_of_unknown_record_is_ignored(store):
    store.mark_error("id:missing", "boom")

    assert store.get("id:missing") is None


def test_find_by_target_prefix(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    store.upsert("id:2", "2.pdf", "hash-2")
    store.upsert("id:3", "3.pdf", "hash-3")
    store.mark_processed(
        "id:1", ArticleMetadata("Zeta", ["A"], "s", "a"), ["/papers/ml/1.pdf"]
    )
    store.mark_processed(
        "id:2", ArticleMetadata("Alpha", ["B"], "s", "a"), ["/papers/ml/2.pdf"]
    )
    store.mark_processed(
        "id:3", ArticleMetadata("Beta", ["C"], "s", "a"), ["/papers/bio/3.pdf"]
    )

    found = store.find_by_target_prefix("/papers/ml")

    assert [record.title for record in found] == ["Alpha", "Zeta"]
    assert store.find_by_target_prefix("/papers/physics") == []


def test_count_by_status_and_iter_records(store):
    store.upsert("id:1", "1.pdf", "hash-1")
    store.upsert("id:2", "2.pdf", "hash-2")
    store.mark_error("id:2", "boom")

    counts = store.count_by_status()

    assert counts[FileStatus.PENDING] == 1
    assert counts[FileStatus.ERROR] == 1
    assert counts[FileStatus.PROCESSED] == 0
    assert set(counts) == set(FileStatus)
    assert [r.remote_id for r in store.iter_records(FileStatus.ERROR)] == ["id:2"]
    assert [r.remote_id for r in store.iter_records()] == ["id:1", "id:2"]


def test_records_persist_across_reopen(tmp_path):
    first = RecordStore.for_work_dir(tmp_path)
    first.upsert("id:1", "1.pdf", "hash-1")
    stamp = first.get("id:1").updated_at
    first.close()

    reopened = RecordStore.for_work_dir(tmp_path)
    try:
        assert reopened.get("id:1").status is FileStatus.PENDING
        reopened.set_status("id:1", FileStatus.PENDING)
        assert reopened.get("id:1").updated_at > stamp
    finally:
        reopened.close()

    assert (tmp_path / "state.db").exists()


def test_in_memory_store_is_shared_between_threads():
    memory_store = RecordStore("sqlite://")
    memory_store.upsert("id:1", "1.pdf", "hash-1")
    seen = []

    thread = threading.Thread(target=lambda: seen.append(memory_store.get("id:1")))
    thread.start()
    thread.join()

    assert seen[0].remote_id == "id:1"
    memory_store.close()


def test_find_by_target_prefix_with_non_ascii_folder(store):
    store.upsert("id:1", "a.pdf", "hash-1")
    store.mark_processed(
        "id:1",
        ArticleMetadata("Théorie des jeux", ["Émile Borel"], "s", "a"),
        ["/papers/théorie/a.pdf"],
    )

    found = store.find_by_target_prefix("/papers/théorie")

    assert [record.remote_id for record in found] == ["id:1"]
    assert found[0].authors == ["Émile Borel"]
    assert found[0].target_paths == ["/papers/théorie/a.pdf"]
