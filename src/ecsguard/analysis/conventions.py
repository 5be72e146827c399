"""Names the engine recognises when it reads job code.

Every receiver, operation and marker type the rules look for is listed here
so a project built on a different naming scheme can re-map them from
``ecsguard.toml`` instead of patching the rules.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Mapping

from ecsguard.analysis.model import CapabilityTag
from ecsguard.exceptions import ConfigError


@dataclass(frozen=True)
class Conventions:
    # Marker types, by qualified name.
    unit_marker: str = "ecs.JobEntity"
    data_record: str = "ecs.ComponentData"
    buffer_element: str = "ecs.BufferElementData"
    must_release: str = "ecs.ComponentMustBeRemoved"
    must_destroy_owner: str = "ecs.EntityMustBeRemoved"
    owning_entity_type: str = "ecs.Entity"
    buffer_wrapper: str = "ecs.DynamicBuffer"
    borrow_read: str = "ecs.In"
    borrow_write: str = "ecs.Ref"
    read_only_marker: str = "ecs.ReadOnly"
    lookup_service: str = "ecs.SystemAPI"
    negative_filters: tuple[str, ...] = ("ecs.with_none",)

    # Entry point of a processing unit.
    entry_method: str = "execute"

    # Command buffer call shapes.
    command_buffer_receivers: tuple[str, ...] = ("self.ecb",)
    release_operation: str = "remove_component"
    reacquire_operation: str = "add_component"
    destroy_operation: str = "destroy_entity"
    write_back_operation: str = "set_component"

    # Store accessors.
    try_get_operation: str = "try_get_component"
    lookup_operations: tuple[str, ...] = ("get_component_lookup", "get_buffer_lookup")

    # Identifiers the write-back fix passes to the inserted call.
    write_back_index_name: str = "index"
    write_back_entity_name: str = "entity"

    def marker_tags(self) -> dict[str, CapabilityTag]:
        return {
            self.data_record: CapabilityTag.DATA_RECORD,
            self.buffer_element: CapabilityTag.BUFFER_ELEMENT,
            self.must_release: CapabilityTag.MUST_RELEASE,
            self.must_destroy_owner: CapabilityTag.MUST_DESTROY_OWNER,
        }

    @property
    def write_back_receiver(self) -> str:
        return self.command_buffer_receivers[0]

    def is_command_buffer(self, receiver: str | None) -> bool:
        return receiver is not None and receiver in self.command_buffer_receivers


_TUPLE_FIELDS = {
    item.name for item in fields(Conventions) if item.type == "tuple[str, ...]"
}
_KNOWN_FIELDS = {item.name for item in fields(Conventions)}


def conventions_from_table(table: Mapping[str, object] | None) -> Conventions:
    """Build conventions from a ``[conventions]`` table, defaults elsewhere."""
    base = Conventions()
    if not table:
        return base
    unknown = sorted(key for key in table if key not in _KNOWN_FIELDS)
    if unknown:
        raise ConfigError(f"unknown convention key(s): {', '.join(unknown)}")
    changes: dict[str, object] = {}
    for key, value in table.items():
        if key in _TUPLE_FIELDS:
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(item, str) and item for item in value
            ):
                raise ConfigError(f"convention '{key}' must be a list of names")
            if not value:
                raise ConfigError(f"convention '{key}' must not be empty")
            changes[key] = tuple(value)
        else:
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"convention '{key}' must be a non-empty string")
            changes[key] = value.strip()
    return replace(base, **changes)
