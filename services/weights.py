"""
Priority tags and weight normalization for mapping edges.

Both edge tiers (AC -> LO and LO -> RO) use the same priority table. A
target's weights are ``base(priority) / sum(base(priorities))`` over its
prioritized incoming edges; edges with an unset priority are left out of the
denominator entirely and receive no weight.
"""

from decimal import Decimal
from enum import Enum

from errors import ValidationError


class Priority(Enum):
    HIGH = 'h'
    MEDIUM = 'm'
    LOW = 'l'
    UNSET = None

    @classmethod
    def parse(cls, tag):
        """Convert a stored/submitted tag into a Priority.

        None and '' are UNSET; anything other than h/m/l (case-insensitive) is rejected.
        """
        if isinstance(tag, Priority):
            return tag
        if tag is None or (isinstance(tag, str) and tag.strip() == ''):
            return cls.UNSET
        if isinstance(tag, str):
            normalized = tag.strip().lower()
            for member in (cls.HIGH, cls.MEDIUM, cls.LOW):
                if member.value == normalized:
                    return member
        raise ValidationError(f"Invalid priority '{tag}'. Must be 'h', 'm', 'l' or null.")

    @property
    def tag(self):
        """Value persisted on the mapping row (None for UNSET)"""
        return self.value

    @property
    def base_value(self):
        return PRIORITY_VALUES[self]


PRIORITY_VALUES = {
    Priority.HIGH: Decimal('0.5'),
    Priority.MEDIUM: Decimal('0.3'),
    Priority.LOW: Decimal('0.2'),
    Priority.UNSET: None,
}


def _edge_fields(edge):
    """Accept mapping rows, (id, priority) pairs or dicts with id/priority keys"""
    if isinstance(edge, dict):
        return edge['id'], edge.get('priority')
    if isinstance(edge, (tuple, list)):
        return edge[0], edge[1]
    return edge.source_id, edge.priority


def normalize(edges):
    """Compute normalized weights for one target's incoming edges.

    Returns an ordered dict-like mapping ``{source_id: weight}`` containing only
    prioritized edges. When no edge carries a priority the result is empty and
    the target is unscoreable; no division is attempted.
    """
    prioritized = []
    for edge in edges:
        source_id, tag = _edge_fields(edge)
        priority = Priority.parse(tag)
        if priority is Priority.UNSET:
            continue
        prioritized.append((source_id, priority.base_value))

    denominator = sum((value for _, value in prioritized), Decimal('0'))
    if denominator == 0:
        return {}

    return {source_id: float(value / denominator) for source_id, value in prioritized}


def weighted_sum(weights, scores):
    """Weighted sum over the sources that have a score.

    Missing sources contribute nothing and the remaining weights are not
    re-normalized. Returns None when no weighted source has a score.
    """
    total = 0.0
    contributed = False
    for source_id, weight in weights.items():
        value = scores.get(source_id)
        if value is None:
            continue
        total += weight * float(value)
        contributed = True
    if not contributed:
        return None
    # Guard against float drift pushing a perfect score past the ceiling
    return min(max(total, 0.0), 1.0)
