"""List and prune operations built on top of BuildClient.

Selection, ordering and deletion live here as plain functions so they can be
exercised with a fake client; the CLI only wires options and exit codes.
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Iterator, List, Optional, Sequence

from .errors import APIError, ConfigurationError
from .timeutil import format_duration, format_instant, format_relative, parse_duration, pluralize
from .types import Build, PruneOutcome

DEFAULT_PRUNE_LIMIT = 200
UNLIMITED = -1

TABLE_HEADERS = ("ID", "Code", "Branch", "Created", "Age", "Status", "Deletable")


def _value_or_dash(value: Optional[str]) -> str:
    return value if value is not None and value.strip() else "-"


def _created_key(build: Build):
    # unknown creation times sort last
    return (build.created_at is None, build.created_at or datetime.min.replace(tzinfo=timezone.utc))


def render_build_table(builds: Sequence[Build], now: Optional[datetime] = None) -> str:
    if not builds:
        return "No builds found."

    rows = []
    for build in sorted(builds, key=_created_key):
        rows.append(
            (
                _value_or_dash(build.id),
                _value_or_dash(build.code),
                _value_or_dash(build.branch),
                format_instant(build.created_at),
                format_relative(build.created_at, now=now),
                _value_or_dash(build.status),
                "yes" if build.deletable else "no",
            )
        )

    widths = [len(h) for h in TABLE_HEADERS]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def fmt(cells: Sequence[str]) -> str:
        return "  ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

    header = fmt(TABLE_HEADERS)
    lines = [header, "-" * len(header)]
    lines.extend(fmt(row) for row in rows)
    return "\n".join(lines)


def builds_to_json(builds: Sequence[Build]) -> str:
    payload: List[Any] = [b.model_dump(mode="json", by_alias=True) for b in builds]
    return json.dumps(payload, indent=2)


def list_builds(
    client: Any,
    project_id: Optional[str],
    environment_id: Optional[str],
    limit: int = 50,
    include_non_deletable: bool = False,
    as_json: bool = False,
    out: Optional[IO[str]] = None,
) -> int:
    """Fetch, filter and print builds. Returns the process exit code."""
    builds = client.list_builds(project_id, environment_id, limit)
    if not include_non_deletable:
        builds = [b for b in builds if b.deletable]

    if as_json:
        print(builds_to_json(builds), file=out)
    else:
        print(render_build_table(builds), file=out)
    return 0


def select_candidates(builds: Sequence[Build], cutoff: datetime) -> List[Build]:
    """Deletable builds created before ``cutoff``, oldest first."""
    candidates = []
    for build in builds:
        if not build.id or not build.id.strip():
            logging.debug("Skipping %s: no build id to delete by", build.display_name)
            continue
        if not build.deletable:
            logging.debug("Skipping %s: %s", build.display_name, build.effective_delete_reason)
            continue
        if not build.is_older_than(cutoff):
            logging.debug("Skipping %s: created %s", build.display_name, format_instant(build.created_at))
            continue
        candidates.append(build)
    candidates.sort(key=lambda b: b.created_at)
    return candidates


@contextmanager
def cancel_on_sigint(cancel: Optional[threading.Event]) -> Iterator[None]:
    """While active, SIGINT sets ``cancel`` instead of raising KeyboardInterrupt.

    An in-flight request completes and the delete loop stops before the next
    build. Outside the block (e.g. while builds are fetched) Ctrl-C behaves
    normally. Signal handlers can only be swapped from the main thread.
    """
    if cancel is None or threading.current_thread() is not threading.main_thread():
        yield
        return

    def _on_sigint(signum, frame):
        logging.debug("SIGINT received; stopping after the current delete")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_sigint)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def delete_candidates(
    client: Any,
    project_id: Optional[str],
    environment_id: Optional[str],
    candidates: Sequence[Build],
    max_deletes: int = UNLIMITED,
    cancel: Optional[threading.Event] = None,
) -> List[PruneOutcome]:
    """Delete candidates one at a time, in order.

    A failed delete is recorded and the loop moves on. Once ``cancel`` is set
    (or a KeyboardInterrupt escapes a delete) the current build is recorded as
    "Interrupted" and nothing further is attempted.
    """
    count = len(candidates) if max_deletes < 0 else min(max_deletes, len(candidates))
    outcomes: List[PruneOutcome] = []
    for build in candidates[:count]:
        build_id = build.id or build.display_name
        if cancel is not None and cancel.is_set():
            outcomes.append(PruneOutcome(build_id=build_id, deleted=False, status_code=0, message="Interrupted"))
            break
        try:
            outcomes.append(client.delete_build(project_id, environment_id, build))
        except KeyboardInterrupt:
            outcomes.append(PruneOutcome(build_id=build_id, deleted=False, status_code=0, message="Interrupted"))
            break
        except (APIError, ConfigurationError) as exc:
            outcomes.append(PruneOutcome(build_id=build_id, deleted=False, status_code=0, message=str(exc) or repr(exc)))
    return outcomes


def render_prune_report(outcomes: Sequence[PruneOutcome]) -> str:
    deleted = sum(1 for o in outcomes if o.deleted)
    failed = len(outcomes) - deleted
    summary = f"Deleted {deleted} {pluralize('build', deleted)}"
    if failed > 0:
        summary += f" ({failed} {pluralize('failure', failed)})"
    lines = [summary + "."]
    for o in outcomes:
        if not o.deleted:
            lines.append(f"- {o.build_id}: {o.message} (status {o.status_code})")
    return "\n".join(lines)


def prune_builds(
    client: Any,
    project_id: Optional[str],
    environment_id: Optional[str],
    older_than: str,
    limit: int = DEFAULT_PRUNE_LIMIT,
    max_deletes: int = UNLIMITED,
    dry_run: bool = False,
    cancel: Optional[threading.Event] = None,
    now: Optional[datetime] = None,
    out: Optional[IO[str]] = None,
) -> int:
    """Delete builds older than ``older_than``. Returns the process exit code."""
    retention: timedelta = parse_duration(older_than)
    now = now or datetime.now(timezone.utc)
    cutoff = now - retention

    builds = client.list_builds(project_id, environment_id, limit)
    candidates = select_candidates(builds, cutoff)
    logging.debug("%d of %d builds are older than %s", len(candidates), len(builds), cutoff.isoformat())

    if not candidates:
        print("No builds matched the prune criteria.", file=out)
        return 0

    if dry_run:
        n = len(candidates)
        print(
            f"[dry-run] {n} {pluralize('build', n)} would be deleted (older than {format_duration(retention)}).",
            file=out,
        )
        print(render_build_table(candidates, now=now), file=out)
        return 0

    with cancel_on_sigint(cancel):
        outcomes = delete_candidates(client, project_id, environment_id, candidates, max_deletes, cancel)
    print(render_prune_report(outcomes), file=out)
    return 0 if all(o.deleted for o in outcomes) else 1
