"""Pick Dashboard objects out of multi-document YAML manifests."""

from __future__ import annotations

import yaml

from homer_operator.models.dashboard import Dashboard

DASHBOARD_KIND = "Dashboard"


def parse_dashboards(manifest: str) -> list[Dashboard]:
    """Return every Dashboard in a multi-document YAML string, in file order."""
    dashboards: list[Dashboard] = []
    if not manifest:
        return dashboards

    for doc in yaml.safe_load_all(manifest):
        if not doc or not isinstance(doc, dict):
            continue
        if doc.get("kind") != DASHBOARD_KIND:
            continue
        dashboards.append(Dashboard.from_dict(doc))
    return dashboards


def first_dashboard(manifest: str) -> Dashboard:
    """Raises ValueError when the manifest holds no Dashboard."""
    try:
        dashboards = parse_dashboards(manifest)
    except yaml.YAMLError as e:
        raise ValueError(f"invalid YAML: {e}") from e
    if not dashboards:
        raise ValueError("no Dashboard found in manifest")
    return dashboards[0]
