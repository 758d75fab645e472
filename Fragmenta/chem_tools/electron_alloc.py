"""M3: 电子对分配 — 碎片可容纳电子对上限（MILP）、分配方案枚举、电荷位置。

模型:
  - 骨架上每个原子的 free valence 可用于 π 键（每对占两端各 1 单位）
    或孤对（占同一原子 2 单位）
  - 一个碎片能容纳的电子对上限由 MILP 求解
  - 电荷（额外质子）优先放在有孤对的杂原子上，否则放在分配后仍保留
    至少 1 单位 free valence 的原子上
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from rdkit import Chem
from scipy.optimize import Bounds, LinearConstraint, milp

from .ion_skeleton import free_valence

logger = logging.getLogger(__name__)

# Lone-pair heteroatoms able to take the proton, most basic first
_CHARGE_PRIORITY = {"N": 0, "P": 1, "O": 2, "S": 3}
_DEFAULT_PRIORITY = 10

_MAX_EXTRA_BOND_ORDER = 2


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------

def epair_capacity(mol: Chem.Mol, reserve_idx: Optional[int] = None) -> int:
    """Maximum number of electron pairs *mol* can host.

    Variables are the extra bond order of each bond (0..2) and the lone
    pairs of each atom; every atom is bounded by its free valence. With
    ``reserve_idx`` one valence unit of that atom is held back (for the
    charge); -1 is returned when that atom has none to give.
    """
    n_atoms = mol.GetNumAtoms()
    n_bonds = mol.GetNumBonds()

    limits = [free_valence(atom) for atom in mol.GetAtoms()]
    if reserve_idx is not None:
        if limits[reserve_idx] < 1:
            return -1
        limits[reserve_idx] -= 1

    if sum(limits) < 2:
        return 0

    n_vars = n_bonds + n_atoms
    A = np.zeros((n_atoms, n_vars))
    for bond in mol.GetBonds():
        b = bond.GetIdx()
        A[bond.GetBeginAtomIdx(), b] = 1
        A[bond.GetEndAtomIdx(), b] = 1
    for i in range(n_atoms):
        A[i, n_bonds + i] = 2

    upper = np.array(
        [_MAX_EXTRA_BOND_ORDER] * n_bonds + [lim // 2 for lim in limits],
        dtype=float,
    )
    res = milp(
        c=-np.ones(n_vars),
        constraints=LinearConstraint(A, -np.inf, np.array(limits, dtype=float)),
        integrality=np.ones(n_vars),
        bounds=Bounds(np.zeros(n_vars), upper),
    )
    if not res.success:
        raise RuntimeError(f"Electron pair MILP failed: {res.message}")
    return int(round(-res.fun))


def epair_distributions(total: int, cap_f0: int, cap_f1: int) -> List[int]:
    """Every valid number of pairs for F0; F1 receives ``total - e_f0``."""
    lo = max(0, total - cap_f1)
    hi = min(cap_f0, total)
    return list(range(lo, hi + 1))


# ---------------------------------------------------------------------------
# Charge location
# ---------------------------------------------------------------------------

def _charge_priority(atom: Chem.Atom) -> int:
    return _CHARGE_PRIORITY.get(atom.GetSymbol(), _DEFAULT_PRIORITY)


def find_charge_location(mol: Chem.Mol, epairs: int) -> Optional[int]:
    """Atom of *mol* that takes the extra proton once *epairs* are placed.

    Lone-pair heteroatoms (N, P, O, S without formal charge) are tried
    first, then any atom that keeps a free valence unit under some
    allocation of *epairs*. Ties go to the lower atom index. Returns None
    when no atom qualifies.
    """
    if epairs < 0 or epairs > epair_capacity(mol):
        return None

    candidates = sorted(mol.GetAtoms(), key=lambda a: (_charge_priority(a), a.GetIdx()))
    for atom in candidates:
        idx = atom.GetIdx()
        if atom.GetSymbol() in _CHARGE_PRIORITY and atom.GetFormalCharge() == 0:
            return idx
        if free_valence(atom) >= 1 and epair_capacity(mol, reserve_idx=idx) >= epairs:
            return idx
    return None
