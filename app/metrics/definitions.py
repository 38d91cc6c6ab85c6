"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


METADATA_REBUILDS = "ticket_metadata_rebuilds_total"
METADATA_REBUILD_DURATION = "ticket_metadata_rebuild_duration_seconds"
METADATA_WRITE_CONFLICTS = "ticket_metadata_write_conflicts_total"
TIMELINE_BUILDS = "ticket_timeline_builds_total"
TIMELINE_DENIALS = "ticket_timeline_denials_total"
CHANGE_FEED_NOTIFICATIONS = "change_feed_notifications_total"

DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=METADATA_REBUILDS,
        metric_type="counter",
        description="Ticket metadata reconstructions by outcome.",
        label_names=("outcome",),
    ),
    MetricDefinition(
        name=METADATA_REBUILD_DURATION,
        metric_type="distribution",
        description="Duration of a single ticket metadata reconstruction in seconds.",
    ),
    MetricDefinition(
        name=METADATA_WRITE_CONFLICTS,
        metric_type="counter",
        description="Optimistic version conflicts hit while writing ticket metadata.",
    ),
    MetricDefinition(
        name=TIMELINE_BUILDS,
        metric_type="counter",
        description="Ticket timelines rendered for a viewer.",
    ),
    MetricDefinition(
        name=TIMELINE_DENIALS,
        metric_type="counter",
        description="Timeline requests rejected by the access gate.",
    ),
    MetricDefinition(
        name=CHANGE_FEED_NOTIFICATIONS,
        metric_type="counter",
        description="Entity change notifications received by the change feed.",
        label_names=("table",),
    ),
)
