from __future__ import annotations

import ast
from dataclasses import dataclass, field

from ecsguard.analysis.conventions import Conventions
from ecsguard.analysis.model import CapabilityTag, ResolvedType
from ecsguard.analysis.symbols import SymbolIndex
from ecsguard.analysis.timeout_context import deadline_loop_iter
from ecsguard.analysis.visitors import dotted_name


@dataclass(frozen=True)
class _Ancestry:
    resolved: frozenset[str]
    # Dotted text of bases that resolve to nothing at all.
    unresolved: frozenset[str] = field(default_factory=frozenset)


class CapabilityResolver:
    """Tags types by their transitive base classes.

    All class tags are computed up front so ``tags_for_type`` is a pure
    lookup and the resolver can be shared across worker threads.
    """

    def __init__(self, index: SymbolIndex, conventions: Conventions) -> None:
        self.index = index
        self.conventions = conventions
        self._markers = conventions.marker_tags()
        self._marker_by_name = {
            qual.rsplit(".", 1)[-1]: tag for qual, tag in self._markers.items()
        }
        self._ancestry: dict[str, _Ancestry] = {}
        self._tags: dict[str, frozenset[CapabilityTag]] = {}
        for qualname in deadline_loop_iter(sorted(index.classes)):
            self._compute(qualname, set())

    def _compute(self, qualname: str, active: set[str]) -> _Ancestry:
        cached = self._ancestry.get(qualname)
        if cached is not None:
            return cached
        info = self.index.classes.get(qualname)
        if info is None or qualname in active:
            return _Ancestry(frozenset())
        active.add(qualname)
        resolved: set[str] = set()
        unresolved: set[str] = set()
        tags: set[CapabilityTag] = set()
        for base in info.bases:
            base_qual = self.index.resolve_expr(info.module, base)
            if base_qual is None:
                text = dotted_name(base.value if isinstance(base, ast.Subscript) else base)
                if text is None:
                    continue
                unresolved.add(text)
                fallback = self._marker_by_name.get(text.rsplit(".", 1)[-1])
                if fallback is not None:
                    tags.add(fallback)
                continue
            resolved.add(base_qual)
            marker = self._markers.get(base_qual)
            if marker is not None:
                tags.add(marker)
            if base_qual in self.index.classes:
                inherited = self._compute(base_qual, active)
                resolved |= inherited.resolved
                unresolved |= inherited.unresolved
                tags |= self._tags.get(base_qual, frozenset())
        active.discard(qualname)
        ancestry = _Ancestry(frozenset(resolved), frozenset(unresolved))
        self._ancestry[qualname] = ancestry
        self._tags[qualname] = frozenset(tags)
        return ancestry

    def class_tags(self, qualname: str) -> frozenset[CapabilityTag]:
        return self._tags.get(qualname, frozenset())

    def derives_from(self, qualname: str, target: str) -> bool:
        ancestry = self._ancestry.get(qualname)
        if ancestry is None:
            return False
        if target in ancestry.resolved:
            return True
        simple = target.rsplit(".", 1)[-1]
        return any(text.rsplit(".", 1)[-1] == simple for text in ancestry.unresolved)

    def unwrap(self, resolved: ResolvedType | None) -> ResolvedType | None:
        """Strip passing-mode and buffer wrappers down to the record type."""
        wrappers = {
            self.conventions.borrow_read,
            self.conventions.borrow_write,
            self.conventions.buffer_wrapper,
        }
        current = resolved
        while current is not None and current.qualname in wrappers:
            if not current.type_args:
                return None
            current = current.type_args[0]
        return current

    def tags_for_type(self, resolved: ResolvedType | None) -> frozenset[CapabilityTag]:
        target = self.unwrap(resolved)
        if target is None:
            return frozenset()
        return self.class_tags(target.qualname)

    def has_tags(
        self,
        resolved: ResolvedType | None,
        *,
        any_of: frozenset[CapabilityTag],
        required: CapabilityTag,
    ) -> bool:
        tags = self.tags_for_type(resolved)
        return required in tags and bool(tags & any_of)
