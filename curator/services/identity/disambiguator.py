from collections.abc import Mapping
from typing import Any


class InstanceDisambiguator:
    """
    Makes same-named entities from different catalog sources distinguishable.

    Items are grouped by case-insensitive name. Only groups that span more
    than one source are touched, and within them only items from a
    non-default source get the source label appended.
    """

    def __init__(self, labels: Mapping[str, str] | None = None, default_instance_id: str | None = None):
        self.labels = dict(labels or {})
        self.default_instance_id = default_instance_id

    def label(self, instance_id: str) -> str:
        return self.labels.get(instance_id) or instance_id

    def disambiguate(
        self, items: list[dict[str, Any]], name_key: str = "name", instance_key: str = "instance_id"
    ) -> list[dict[str, Any]]:
        """
        Return copies of ``items`` with a ``display_name`` set on each.

        Args:
            items: Entity dicts carrying a name and a source instance id.
            name_key: Key holding the entity's name.
            instance_key: Key holding the source instance id.

        Returns:
            The items in the same order.
        """
        groups: dict[str, set[str]] = {}
        for item in items:
            name = (item.get(name_key) or "").casefold()
            if name:
                groups.setdefault(name, set()).add(item.get(instance_key) or "")

        result = []
        for item in items:
            name = item.get(name_key) or ""
            instance_id = item.get(instance_key) or ""
            display = name
            if (
                name
                and len(groups.get(name.casefold(), ())) > 1
                and instance_id != self.default_instance_id
            ):
                display = f"{name} ({self.label(instance_id)})"
            result.append({**item, "display_name": display})
        return result
