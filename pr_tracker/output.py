"""Plain text and JSON rendering of tracked pull requests."""

from __future__ import annotations

import json

from pr_tracker.schema import PullRequest, RepositoryGroup, Snapshot, StateCounts

STATE_MARKERS = {"open": "o", "merged": "m", "closed": "x"}


def _render_row(pr: PullRequest) -> str:
    marker = "d" if pr.is_draft else STATE_MARKERS[pr.state.value]
    updated = pr.updated_at.strftime("%Y-%m-%d")
    return f"  [{marker}] #{pr.number} {pr.title} ({pr.author}, updated {updated})"


def render_text_report(
    groups: list[RepositoryGroup],
    *,
    snapshot: Snapshot | None,
    counts: StateCounts | None = None,
    error: str | None = None,
) -> str:
    """Render grouped pull requests as indented text."""
    lines: list[str] = []
    if error:
        lines.append(f"Error: {error}")
    if snapshot is None:
        lines.append("No pull requests loaded.")
        return "\n".join(lines)

    if counts is not None:
        lines.append(
            f"open={counts.open} merged={counts.merged} "
            f"closed={counts.closed} draft={counts.draft}"
        )
    if not groups:
        lines.append("No pull requests match the current filter.")
    for group in groups:
        lines.append(f"{group.repository} ({len(group.pull_requests)})")
        lines.extend(_render_row(pr) for pr in group.pull_requests)
    if snapshot.truncated:
        lines.append("Results truncated: only the most recently updated pull requests are shown.")
    lines.append(f"Last updated: {snapshot.updated_at.isoformat()}")
    return "\n".join(lines)


def render_json_report(groups: list[RepositoryGroup], *, snapshot: Snapshot | None) -> str:
    """Render grouped pull requests as a JSON document."""
    payload = {
        "schema_version": "v1",
        "updated_at": snapshot.updated_at.isoformat() if snapshot is not None else None,
        "truncated": snapshot.truncated if snapshot is not None else False,
        "groups": [group.model_dump(mode="json") for group in groups],
    }
    return json.dumps(payload, indent=2, sort_keys=True)
