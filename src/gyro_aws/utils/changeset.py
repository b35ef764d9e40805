"""Field change detection between two state snapshots."""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple


def changed_fields(
    prior: Optional[Mapping[str, Any]],
    desired: Mapping[str, Any],
    fields: Optional[Iterable[str]] = None
) -> Set[str]:
    """Compute the names of fields whose values differ.

    Values are compared with ``!=`` so collections are compared by content.
    A field missing from one side is treated as ``None``.

    Args:
        prior: Previously applied state (None when nothing was applied)
        desired: New desired state
        fields: Restrict the comparison to these field names

    Returns:
        Set of changed field names; empty when nothing changed
    """
    prior = prior or {}

    if fields is None:
        names = set(prior) | set(desired)
    else:
        names = set(fields)

    return {name for name in names if prior.get(name) != desired.get(name)}


def diff_tags(
    old: Optional[Mapping[str, str]],
    new: Optional[Mapping[str, str]]
) -> Tuple[Dict[str, str], List[str]]:
    """Split a tag change into the tags to set and the keys to remove.

    Args:
        old: Tags currently applied
        new: Tags that should be applied

    Returns:
        Tuple of (tags whose value is new or changed, keys only in ``old``)
    """
    old = old or {}
    new = new or {}

    to_set = {key: value for key, value in new.items() if old.get(key) != value}
    to_remove = sorted(key for key in old if key not in new)

    return to_set, to_remove
