"""Tooltip content for hovered map objects."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from entities import Cluster, GeoFeature, HexBin, PickInfo, Report, classify
from mode_state import Mode


@dataclass(frozen=True)
class Tooltip:
    x: Optional[float]
    y: Optional[float]
    lines: Tuple[str, ...]


def format_coord(value: Any) -> str:
    """Six decimals, or an empty string when the value is missing or non-finite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return ''
    if not math.isfinite(value):
        return ''
    return f'{value:.6f}'


def _coords(lat: Any, lng: Any) -> Tuple[str, str]:
    return (f'latitude: {format_coord(lat)}', f'longitude: {format_coord(lng)}')


def _at(seq: Any, i: int) -> Any:
    try:
        return seq[i]
    except (IndexError, KeyError, TypeError):
        return None


def describe(entity: Any, mode: Any) -> Optional[Tuple[str, ...]]:
    """Tooltip lines for an already classified entity, or None when it has no tooltip."""
    triage = Mode.parse(mode) is Mode.TRIAGE

    if isinstance(entity, HexBin):
        return (f'{entity.count} reports',) + _coords(_at(entity.position, 1), _at(entity.position, 0))
    if isinstance(entity, Report):
        return (str(entity.name),) + _coords(entity.lat, entity.lng) + ('Click for more info',)
    if isinstance(entity, GeoFeature):
        if not entity.name:
            return None
        lines = (str(entity.name),)
        return lines + ('Click to set navigation start',) if triage else lines
    if isinstance(entity, Cluster):
        lines = (f'Cluster - {entity.report_count} reports',)
        return lines + ('Click to set navigation destination',) if triage else lines
    return None


def resolve_tooltip(hovered: Optional[PickInfo], mode: Any) -> Optional[Tooltip]:
    """Resolve a hover event into tooltip content.

    The picked object is classified first (explicit ``kind`` tag, then shape:
    hex bin, report, named feature, cluster). Nothing hovered, nothing
    recognised, or a feature without a name gives None.
    """
    if hovered is None or hovered.object is None:
        return None
    entity = classify(hovered.object)
    lines = describe(entity, mode)
    if lines is None:
        return None
    return Tooltip(x=hovered.x, y=hovered.y, lines=lines)
