#!/usr/bin/env python3
"""Errors raised by the unused-element pruning pass."""

from __future__ import annotations

from typing import List, Optional


class PruneError(ValueError):
    pass


class MalformedReferenceError(PruneError):
    """A reference is not an integer, or points past the end of its target array."""

    def __init__(self, kind: str, index: object, site: str, length: Optional[int] = None) -> None:
        self.kind = kind
        self.index = index
        self.site = site
        self.length = length
        if length is None:
            message = f"{site} holds invalid {kind} reference {index!r}"
        else:
            message = f"{site} references {kind} {index!r} but only {length} exist"
        super().__init__(message)


class CyclicGraphError(PruneError):
    """The node hierarchy loops back on itself."""

    def __init__(self, cycle: List[int]) -> None:
        self.cycle = list(cycle)
        path = " -> ".join(str(node_id) for node_id in self.cycle)
        super().__init__(f"node children form a cycle: {path}")
