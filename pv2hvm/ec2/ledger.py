# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/ledger.py

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from .models import ResourceKind, ResourceRef, ResourceRole


class ResourceLedger:
    """
    Append-only, ordered record of every resource the run caused to exist.

    Only provider-confirmed ids are recorded. Nothing is ever removed:
    compensation is idempotent, so a reclaimed entry may safely stay.
    """

    def __init__(self) -> None:
        self._refs: List[ResourceRef] = []

    def record(self, ref: ResourceRef) -> ResourceRef:
        if not ref.id:
            raise ValueError(f"refusing to record {ref.role.value} without a provider id")
        if ref not in self._refs:
            self._refs.append(ref)
        return ref

    def add(self, kind: ResourceKind, resource_id: str, role: ResourceRole) -> ResourceRef:
        return self.record(ResourceRef(kind=kind, id=resource_id, role=role))

    def all(self) -> Tuple[ResourceRef, ...]:
        return tuple(self._refs)

    def by_role(self, role: ResourceRole) -> List[ResourceRef]:
        return [r for r in self._refs if r.role == role]

    def first(self, role: ResourceRole) -> Optional[ResourceRef]:
        for r in self._refs:
            if r.role == role:
                return r
        return None

    def __len__(self) -> int:
        return len(self._refs)

    def __iter__(self) -> Iterator[ResourceRef]:
        return iter(tuple(self._refs))

    def __bool__(self) -> bool:
        return bool(self._refs)

    def to_jsonable(self) -> List[Dict[str, Any]]:
        return [{"kind": r.kind.value, "id": r.id, "role": r.role.value} for r in self._refs]
