"""
碎片树节点
==========
Break（一次断键：单键或同环双键）+ FragmentTreeNode（离子 / 中性丢失 /
free epairs / 深度 / 子节点 / theta 缓存）。

展开循环:
    generate_breaks()                → 枚举当前离子的所有断键
    with node.broken(brk):           → apply_break / undo_break 成对执行
        generate_children_of_break() → 电荷分别留在两侧的子节点

apply_break 不修改离子 Mol：断键集合与碎片标签保存在节点自己的列表中，
undo_break 清空即可完全恢复。
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple

from rdkit import Chem

from Fragmenta.chem_tools._rdkit_utils import mol_to_smiles
from Fragmenta.chem_tools.electron_alloc import (
    epair_capacity,
    epair_distributions,
    find_charge_location,
)
from Fragmenta.chem_tools.ion_skeleton import (
    extract_fragment,
    prepare_ion,
    ring_bond_sets,
)
from Fragmenta.chem_tools.mass_utils import get_monoisotopic_mass

logger = logging.getLogger(__name__)

F0 = 0
F1 = 1


# ─────────────────────────────────────────────────────────────────────────
# Break
# ─────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Break:
    """一次断键。非环断键只用 bond_idx；环断键同时切断同一环上的两根键。"""
    bond_idx: int
    second_bond_idx: int = -1
    ring_idx: int = -1

    def __post_init__(self):
        if (self.second_bond_idx >= 0) != (self.ring_idx >= 0):
            raise ValueError(
                f"Ring break needs both second_bond_idx and ring_idx, got "
                f"second_bond_idx={self.second_bond_idx}, ring_idx={self.ring_idx}"
            )
        if self.second_bond_idx == self.bond_idx:
            raise ValueError(f"Ring break repeats bond {self.bond_idx}")

    @property
    def is_ring_break(self) -> bool:
        return self.second_bond_idx >= 0

    @property
    def bonds(self) -> Tuple[int, ...]:
        if self.is_ring_break:
            return (self.bond_idx, self.second_bond_idx)
        return (self.bond_idx,)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bond_idx": self.bond_idx,
            "second_bond_idx": self.second_bond_idx,
            "ring_idx": self.ring_idx,
        }


# ─────────────────────────────────────────────────────────────────────────
# 节点
# ─────────────────────────────────────────────────────────────────────────

def _label_fragments(
    mol: Chem.Mol, broken: FrozenSet[int], start_bond: int,
) -> List[Optional[int]]:
    """Flood-fill F0 from the begin atom and F1 from the end atom of *start_bond*.

    Bonds in *broken* are not crossed. Atoms reached by neither side stay
    None; when the cut does not disconnect, F0 swallows the end atom and F1
    stays empty.
    """
    labels: List[Optional[int]] = [None] * mol.GetNumAtoms()
    bond = mol.GetBondWithIdx(start_bond)

    for label, seed in ((F0, bond.GetBeginAtomIdx()), (F1, bond.GetEndAtomIdx())):
        if labels[seed] is not None:
            continue
        labels[seed] = label
        queue = deque([seed])
        while queue:
            atom = mol.GetAtomWithIdx(queue.popleft())
            for nb_bond in atom.GetBonds():
                if nb_bond.GetIdx() in broken:
                    continue
                nb = nb_bond.GetOtherAtomIdx(atom.GetIdx())
                if labels[nb] is None:
                    labels[nb] = label
                    queue.append(nb)
    return labels


def _splits_in_two(labels: List[Optional[int]]) -> bool:
    return F1 in labels and None not in labels


class FragmentTreeNode:
    """碎片树节点。

    属性:
        ion: 带电碎片骨架（节点独占）
        nl: 产生该离子的中性丢失（根节点为 None）
        ion_free_epairs: 离子可分配的 free electron pairs
        depth: 树深度（根=0）
        charge_idx: ion 中承载电荷的原子（无合适原子时为 None）
        children: 子节点，按生成顺序
    """

    def __init__(
        self,
        ion: Chem.Mol,
        ion_free_epairs: int,
        depth: int = 0,
        nl: Optional[Chem.Mol] = None,
        charge_idx: Optional[int] = None,
    ):
        self.ion: Chem.Mol = ion
        self.nl: Optional[Chem.Mol] = nl
        self.ion_free_epairs: int = ion_free_epairs
        self.depth: int = depth
        self.charge_idx: Optional[int] = charge_idx
        self.children: List[FragmentTreeNode] = []

        self._tmp_thetas: Dict[int, float] = {}
        self._rings: List[List[int]] = ring_bond_sets(ion)

        # 仅在 apply_break 与 undo_break 之间有效
        self._broken: FrozenSet[int] = frozenset()
        self._frag_idx: Optional[List[Optional[int]]] = None

    @classmethod
    def from_smiles(cls, smiles: str) -> FragmentTreeNode:
        """Root node: the whole molecule as [M+H]+."""
        ion, free_epairs = prepare_ion(smiles)
        charge_idx = find_charge_location(ion, free_epairs)
        if charge_idx is None:
            logger.info("No charge site found on root ion %s", smiles)
        return cls(ion, free_epairs, depth=0, charge_idx=charge_idx)

    # ── 断键枚举 ──

    def generate_breaks(self, output: Optional[List[Break]] = None) -> List[Break]:
        """Append every break of the ion to *output* (created when None).

        Non-ring bonds come first in bond order, then, ring by ring, each
        pair of bonds of a ring whose removal splits the ion in two.
        """
        if output is None:
            output = []

        ring_bonds: Set[int] = {b for ring in self._rings for b in ring}
        for bond in self.ion.GetBonds():
            if bond.GetIdx() not in ring_bonds:
                output.append(Break(bond.GetIdx()))

        seen: Set[Tuple[int, int]] = set()
        for ring_idx, ring in enumerate(self._rings):
            for i in range(len(ring)):
                for j in range(i + 1, len(ring)):
                    pair = (min(ring[i], ring[j]), max(ring[i], ring[j]))
                    if pair in seen:
                        continue
                    seen.add(pair)
                    labels = _label_fragments(self.ion, frozenset(pair), pair[0])
                    if _splits_in_two(labels):
                        output.append(Break(pair[0], pair[1], ring_idx))
        return output

    # ── 断键执行 / 撤销 ──

    def apply_break(self, brk: Break) -> None:
        """Record *brk* and label every atom with its side (F0 / F1)."""
        self._broken = frozenset(brk.bonds)
        self._frag_idx = _label_fragments(self.ion, self._broken, brk.bond_idx)

    def undo_break(self, brk: Break) -> None:
        """Drop everything apply_break recorded."""
        self._broken = frozenset()
        self._frag_idx = None

    @contextmanager
    def broken(self, brk: Break) -> Iterator[List[Optional[int]]]:
        """Apply *brk* for the duration of the block; always undone on exit."""
        self.apply_break(brk)
        try:
            yield self._frag_idx
        finally:
            self.undo_break(brk)

    @property
    def fragment_labels(self) -> Optional[List[Optional[int]]]:
        """F0/F1 label per ion atom while a break is applied, else None."""
        return self._frag_idx

    # ── 子节点生成 ──

    def generate_children_of_break(self, brk: Break) -> None:
        """For the applied *brk*, append every child with charge on either side."""
        if self._frag_idx is None:
            raise RuntimeError("generate_children_of_break() requires an applied break")

        f0_atoms = [i for i, lab in enumerate(self._frag_idx) if lab == F0]
        f1_atoms = [i for i, lab in enumerate(self._frag_idx) if lab == F1]
        frag0 = extract_fragment(self.ion, f0_atoms)
        frag1 = extract_fragment(self.ion, f1_atoms)

        cap_f0 = epair_capacity(frag0)
        cap_f1 = epair_capacity(frag1)
        for e_f0 in epair_distributions(self.ion_free_epairs, cap_f0, cap_f1):
            self._add_both_children(frag0, frag1, e_f0, brk)

    def _add_both_children(
        self, frag0: Chem.Mol, frag1: Chem.Mol, e_f0: int, brk: Break,
    ) -> None:
        e_f1 = self.ion_free_epairs - e_f0
        sides = ((frag0, frag1, e_f0, F0), (frag1, frag0, e_f1, F1))
        for ion_frag, nl_frag, e_ion, side in sides:
            charge_idx = find_charge_location(ion_frag, e_ion)
            if charge_idx is None:
                logger.debug(
                    "No charge site on F%d for break %s with %d epairs",
                    side, brk.bonds, e_ion,
                )
                continue
            self.children.append(FragmentTreeNode(
                Chem.Mol(ion_frag),
                e_ion,
                depth=self.depth + 1,
                nl=Chem.Mol(nl_frag),
                charge_idx=charge_idx,
            ))

    def generate_children(self) -> List[FragmentTreeNode]:
        """Run every break of the ion through the apply/undo guard."""
        for brk in self.generate_breaks():
            with self.broken(brk):
                self.generate_children_of_break(brk)
        return self.children

    # ── theta 缓存 ──

    def set_tmp_theta(self, val: float, energy: int) -> None:
        if energy < 0:
            raise ValueError(f"Energy level must be >= 0, got {energy}")
        self._tmp_thetas[energy] = val

    def get_tmp_theta(self, energy: int) -> Optional[float]:
        """Theta stored for *energy*, or None if never set."""
        return self._tmp_thetas.get(energy)

    def has_tmp_thetas(self) -> bool:
        return bool(self._tmp_thetas)

    def get_all_tmp_thetas(self) -> List[float]:
        """Dense list indexed by energy level; unset levels read 0.0."""
        if not self._tmp_thetas:
            return []
        dense = [0.0] * (max(self._tmp_thetas) + 1)
        for energy, val in self._tmp_thetas.items():
            dense[energy] = val
        return dense

    # ── 查询 / 序列化 ──

    @property
    def ion_smiles(self) -> str:
        """Ion SMILES with the proton site written as a +1 charge."""
        if self.charge_idx is None:
            return mol_to_smiles(self.ion)
        rw = Chem.RWMol(self.ion)
        atom = rw.GetAtomWithIdx(self.charge_idx)
        atom.SetFormalCharge(atom.GetFormalCharge() + 1)
        return mol_to_smiles(rw.GetMol())

    @property
    def nl_smiles(self) -> str:
        return mol_to_smiles(self.nl) if self.nl is not None else ""

    @property
    def ion_mass(self) -> float:
        return get_monoisotopic_mass(self.ion, add_h_plus=True)

    @property
    def nl_mass(self) -> float:
        return get_monoisotopic_mass(self.nl) if self.nl is not None else 0.0

    @property
    def is_root(self) -> bool:
        return self.nl is None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "ion": self.ion_smiles,
            "ion_mass": round(self.ion_mass, 6),
            "ion_free_epairs": self.ion_free_epairs,
            "depth": self.depth,
            "charge_idx": self.charge_idx,
        }
        if self.nl is not None:
            d["nl"] = self.nl_smiles
            d["nl_mass"] = round(self.nl_mass, 6)
        if self._tmp_thetas:
            d["tmp_thetas"] = self.get_all_tmp_thetas()
        if self.children:
            d["children"] = [c.to_dict() for c in self.children]
        return d

    def __repr__(self) -> str:
        return (
            f"FragmentTreeNode(ion={self.ion_smiles!r}, nl={self.nl_smiles!r}, "
            f"epairs={self.ion_free_epairs}, depth={self.depth})"
        )
