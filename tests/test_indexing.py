import datetime as dt

from sci_librarian.indexing import generate_index, render_index
from sci_librarian.models import ArticleMetadata, FileRecord, FileStatus


def _record(title, authors, summary, target_paths, name="paper.pdf"):
    return FileRecord(
        remote_id=f"id:{title}",
        name=name,
        content_hash="h",
        status=FileStatus.PROCESSED,
        updated_at=dt.datetime.now(dt.timezone.utc),
        title=title,
        authors=authors,
        summary=summary,
        target_paths=target_paths,
    )


def test_render_index_builds_markdown_table():
    records = [
        _record(
            "Deep Learning",
            ["Yann LeCun", "Geoffrey Hinton"],
            "A review.",
            ["/papers/bio/deep learning.pdf", "/papers/ml/deep learning.pdf"],
        ),
    ]

    assert render_index(records, "/papers/ml") == (
        "| Title | Authors | Summary |\n"
        "| :--- | :--- | :--- |\n"
        "| [Deep Learning](deep%20learning.pdf) | Yann LeCun, Geoffrey Hinton "
        "| A review. |\n"
    )


def test_render_index_escapes_cells():
    records = [_record("A | B", ["X"], "line one\nline two", ["/f/a.pdf"])]

    row = render_index(records, "/f").splitlines()[2]

    assert row == "| [A \\| B](a.pdf) | X | line one line two |"


def test_generate_index_uploads_readme(store, remote):
    store.upsert("id:1", "a.pdf", "h1")
    store.mark_processed(
        "id:1", ArticleMetadata("Alpha", ["Ann"], "First.", "abs"), ["/papers/ml/a.pdf"]
    )
    store.upsert("id:2", "b.pdf", "h2")
    store.mark_processed(
        "id:2", ArticleMetadata("Beta", ["Bob"], "Second.", "abs"), ["/papers/bio/b.pdf"]
    )

    path = generate_index(store, remote, "/papers/ml")

    assert path == "/papers/ml/README.md"
    content = remote.files[path].decode("utf-8")
    assert "[Alpha](a.pdf)" in content
    assert "Beta" not in content


def test_generate_index_skips_empty_folder(store, remote):
    assert generate_index(store, remote, "/papers/empty") is None
    assert remote.uploads == []


def test_generate_index_ignores_sibling_folders(store, remote):
    store.upsert("id:1", "a.pdf", "h1")
    store.mark_processed(
        "id:1", ArticleMetadata("Other", ["A"], "s", "abs"), ["/papers/ml-theory/a.pdf"]
    )
    store.upsert("id:2", "b.pdf", "h2")
    store.mark_processed(
        "id:2", ArticleMetadata("Nested", ["B"], "s", "abs"), ["/papers/ml/old/b.pdf"]
    )

    assert generate_index(store, remote, "/papers/ml") is None
    assert remote.uploads == []


def test_generate_index_for_non_ascii_folder(store, remote):
    store.upsert("id:1", "jeux.pdf", "h1")
    store.mark_processed(
        "id:1",
        ArticleMetadata("Théorie des jeux", ["Émile Borel"], "s", "abs"),
        ["/papers/théorie/jeux.pdf"],
    )

    path = generate_index(store, remote, "/papers/théorie")

    assert path == "/papers/théorie/README.md"
    assert "[Théorie des jeux](jeux.pdf)" in remote.files[path].decode("utf-8")
