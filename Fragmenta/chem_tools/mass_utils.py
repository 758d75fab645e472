"""M1: 质量工具 — 单同位素质量、质量容差、分子式。"""

from __future__ import annotations

from collections import Counter

from rdkit import Chem

_PT = Chem.GetPeriodicTable()


def get_mass_tol(abs_tol: float, ppm_tol: float, mass: float) -> float:
    """Effective tolerance: the ppm window, floored at *abs_tol*."""
    mass_tol = (mass / 1000000.0) * ppm_tol
    if mass_tol < abs_tol:
        mass_tol = abs_tol
    return mass_tol


def get_monoisotopic_mass(mol: Chem.Mol, add_h_plus: bool = False) -> float:
    """Sum of most-common-isotope masses, hydrogens included.

    Hydrogens are read through ``GetTotalNumHs`` so both sanitized
    molecules and frozen ion skeletons are handled. ``add_h_plus`` adds the
    mass of the ionising proton, taken as one H.
    """
    h_mass = _PT.GetMostCommonIsotopeMass("H")
    mass = 0.0
    for atom in mol.GetAtoms():
        mass += _PT.GetMostCommonIsotopeMass(atom.GetSymbol())
        mass += atom.GetTotalNumHs() * h_mass
    if add_h_plus:
        mass += h_mass
    return mass


def mol_formula(mol: Chem.Mol) -> str:
    """Hill-order formula (C, H, then alphabetical) of *mol*."""
    cnt: Counter = Counter()
    for atom in mol.GetAtoms():
        cnt[atom.GetSymbol()] += 1
        cnt["H"] += atom.GetTotalNumHs()

    order = []
    if "C" in cnt:
        order.append("C")
        if cnt["H"]:
            order.append("H")
    order.extend(sorted(s for s in cnt if s not in order and cnt[s]))

    return "".join(
        s if cnt[s] == 1 else f"{s}{cnt[s]}" for s in order if cnt[s]
    )
