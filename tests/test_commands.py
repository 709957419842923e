import io
import json
import threading
from datetime import datetime, timedelta, timezone

from ccbuild.client import BuildClient
from ccbuild.commands import (
    delete_candidates,
    list_builds,
    prune_builds,
    render_build_table,
    render_prune_report,
    select_candidates,
)
from ccbuild.errors import APIError
from ccbuild.types import Build, PruneOutcome

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(n):
    return NOW - timedelta(days=n)


class FakeClient:
    """Stands in for BuildClient; records delete calls in order."""

    def __init__(self, builds, fail_ids=(), error_ids=(), on_delete=None):
        self.builds = list(builds)
        self.fail_ids = set(fail_ids)
        self.error_ids = set(error_ids)
        self.on_delete = on_delete
        self.deleted = []
        self.list_calls = []

    def list_builds(self, project_id, environment_id, limit):
        self.list_calls.append((project_id, environment_id, limit))
        return list(self.builds)

    def delete_build(self, project_id, environment_id, build):
        self.deleted.append(build.id)
        if self.on_delete is not None:
            self.on_delete(build)
        if build.id in self.error_ids:
            raise APIError("connection reset")
        if build.id in self.fail_ids:
            return PruneOutcome(build_id=build.id, deleted=False, status_code=409, message="Build is deployed")
        return PruneOutcome(build_id=build.id, deleted=True, status_code=204, message="Deleted")


def test_select_candidates_filters_deletable_and_age():
    a = Build(id="A", deletable=True, created_at=days_ago(40))
    b = Build(id="B", deletable=False, created_at=days_ago(40))
    c = Build(id="C", deletable=True, created_at=days_ago(5))
    d = Build(id="D", deletable=True)
    assert [x.id for x in select_candidates([a, b, c, d], NOW - timedelta(days=30))] == ["A"]


def test_select_candidates_sorted_oldest_first():
    builds = [
        Build(id="T2", deletable=True, created_at=days_ago(50)),
        Build(id="T3", deletable=True, created_at=days_ago(40)),
        Build(id="T1", deletable=True, created_at=days_ago(60)),
    ]
    assert [x.id for x in select_candidates(builds, NOW)] == ["T1", "T2", "T3"]


def _overdue_builds():
    return [
        Build(id="T3", deletable=True, created_at=days_ago(40)),
        Build(id="T1", deletable=True, created_at=days_ago(60)),
        Build(id="T2", deletable=True, created_at=days_ago(50)),
        Build(id="new", deletable=True, created_at=days_ago(1)),
    ]


def test_prune_deletes_in_age_order():
    client = FakeClient(_overdue_builds())
    out = io.StringIO()
    rc = prune_builds(client, "p1", "d1", "30d", now=NOW, out=out)
    assert rc == 0
    assert client.deleted == ["T1", "T2", "T3"]
    assert client.list_calls == [("p1", "d1", 200)]
    assert out.getvalue().strip() == "Deleted 3 builds."


def test_prune_max_caps_deletions():
    client = FakeClient(_overdue_builds())
    out = io.StringIO()
    rc = prune_builds(client, "p1", "d1", "30d", max_deletes=1, now=NOW, out=out)
    assert rc == 0
    assert client.deleted == ["T1"]
    assert out.getvalue().strip() == "Deleted 1 build."


def test_prune_dry_run_deletes_nothing():
    client = FakeClient(_overdue_builds())
    out = io.StringIO()
    rc = prune_builds(client, "p1", "d1", "30d", dry_run=True, now=NOW, out=out)
    assert rc == 0
    assert client.deleted == []
    text = out.getvalue()
    assert text.startswith("[dry-run] 3 builds would be deleted (older than PT720H).")
    assert "T1" in text and "new" not in text


def test_prune_no_candidates():
    client = FakeClient([Build(id="x", deletable=False, created_at=days_ago(100))])
    out = io.StringIO()
    assert prune_builds(client, "p1", "d1", "1d", now=NOW, out=out) == 0
    assert out.getvalue().strip() == "No builds matched the prune criteria."
    assert client.deleted == []


def test_prune_failure_does_not_stop_loop():
    client = FakeClient(_overdue_builds(), fail_ids={"T1"}, error_ids={"T2"})
    out = io.StringIO()
    rc = prune_builds(client, "p1", "d1", "30d", now=NOW, out=out)
    assert rc == 1
    assert client.deleted == ["T1", "T2", "T3"]
    lines = out.getvalue().strip().splitlines()
    assert lines[0] == "Deleted 1 build (2 failures)."
    assert lines[1] == "- T1: Build is deployed (status 409)"
    assert lines[2] == "- T2: connection reset (status 0)"


def test_cancellation_stops_after_current_delete():
    cancel = threading.Event()
    client = FakeClient(_overdue_builds(), on_delete=lambda build: cancel.set())
    outcomes = delete_candidates(client, "p1", "d1", select_candidates(client.builds, days_ago(30)), cancel=cancel)
    assert client.deleted == ["T1"]
    assert [(o.build_id, o.deleted, o.status_code, o.message) for o in outcomes] == [
        ("T1", True, 204, "Deleted"),
        ("T2", False, 0, "Interrupted"),
    ]


def test_keyboard_interrupt_during_delete_is_recorded():
    def interrupt(build):
        if build.id == "T2":
            raise KeyboardInterrupt

    client = FakeClient(_overdue_builds(), on_delete=interrupt)
    outcomes = delete_candidates(client, "p1", "d1", select_candidates(client.builds, days_ago(30)))
    assert client.deleted == ["T1", "T2"]
    assert outcomes[-1].message == "Interrupted"
    assert outcomes[-1].status_code == 0
    assert render_prune_report(outcomes).splitlines()[0] == "Deleted 1 build (1 failure)."


def test_list_filters_non_deletable_by_default():
    builds = [Build(id="keep", deletable=True), Build(id="locked", deletable=False)]
    out = io.StringIO()
    assert list_builds(FakeClient(builds), "p1", "d1", as_json=True, out=out) == 0
    data = json.loads(out.getvalue())
    assert [b["id"] for b in data] == ["keep"]

    out = io.StringIO()
    list_builds(FakeClient(builds), "p1", "d1", include_non_deletable=True, as_json=True, out=out)
    assert [b["id"] for b in json.loads(out.getvalue())] == ["keep", "locked"]


def test_list_json_uses_wire_names():
    raw = {"buildId": "b1", "createdAt": "2024-01-01T00:00:00Z"}
    build = Build(id="b1", deletable=True, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc), self_link="https://x/b1", raw=raw)
    out = io.StringIO()
    list_builds(FakeClient([build]), "p1", "d1", as_json=True, out=out)
    record = json.loads(out.getvalue())[0]
    assert record["createdAt"].startswith("2024-01-01T00:00:00")
    assert record["self"] == "https://x/b1"
    assert record["raw"] == raw
    assert record["lastUsedAt"] is None


def test_render_build_table():
    builds = [
        Build(id="unknown-age", deletable=False),
        Build(id="b-long-identifier", code="20240101.1", branch="main", status="SUCCESS", deletable=True, created_at=days_ago(90)),
    ]
    lines = render_build_table(builds, now=NOW).splitlines()
    assert lines[0].split() == ["ID", "Code", "Branch", "Created", "Age", "Status", "Deletable"]
    assert set(lines[1]) == {"-"}
    assert len(lines[1]) == len(lines[0])
    # known creation time sorts before unknown
    assert lines[2].startswith("b-long-identifier  20240101.1")
    assert "3 months ago" in lines[2]
    assert lines[2].rstrip().endswith("yes")
    assert lines[3].startswith("unknown-age      ")
    assert "n/a" in lines[3] and "unknown" in lines[3]
    assert lines[3].split()[1] == "-"
    assert lines[0].index("Code") == len("b-long-identifier") + 2


def test_render_empty_table():
    assert render_build_table([]) == "No builds found."


def test_build_helpers():
    build = Build(id="b1", deletable=False, last_used_at=days_ago(10))
    assert build.display_name == "b1"
    assert build.effective_delete_reason == "Build is not deletable"
    assert build.is_inactive_since(days_ago(5))
    assert not build.is_inactive_since(days_ago(20))
    assert not build.is_older_than(NOW)
    assert Build().display_name == "<unknown>"
    assert Build(deletable=True).effective_delete_reason == ""
    assert Build(delete_reason="pinned").effective_delete_reason == "pinned"


def test_select_candidates_skips_builds_without_id():
    builds = [
        Build(id="old", deletable=True, created_at=days_ago(60)),
        Build(deletable=True, created_at=days_ago(50)),
        Build(id="  ", deletable=True, created_at=days_ago(45)),
    ]
    assert [b.id for b in select_candidates(builds, days_ago(30))] == ["old"]


def test_prune_ignores_build_without_id():
    builds = [
        Build(id="old", deletable=True, created_at=days_ago(60)),
        Build(code=None, deletable=True, created_at=days_ago(50)),
    ]
    client = FakeClient(builds)
    out = io.StringIO()
    assert prune_builds(client, "p1", "d1", "30d", now=NOW, out=out) == 0
    assert client.deleted == ["old"]
    assert out.getvalue().strip() == "Deleted 1 build."


def test_delete_candidates_records_missing_id_and_continues():
    # the real client rejects a blank id before any request is sent
    client = BuildClient("https://api.example.com", "t")
    builds = [Build(deletable=True), Build(code="orphan", deletable=True)]
    outcomes = delete_candidates(client, "p1", "d1", builds)
    assert [(o.build_id, o.deleted, o.status_code, o.message) for o in outcomes] == [
        ("<unknown>", False, 0, "Build ID is required"),
        ("orphan", False, 0, "Build ID is required"),
    ]
