"""M2: 离子骨架 — 将 SMILES 转为冻结氢数的 σ 骨架，并提供环/碎片工具。

骨架约定:
  - 每个原子的氢数被冻结（SetNumExplicitHs + SetNoImplicit）
  - 原子属性 ``TargetValence`` 记录原子在输入分子中的总价
  - 所有键设为 SINGLE，芳香标记清除；不饱和度只由 free epairs 计数承载
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple, Union

from rdkit import Chem

from ._rdkit_utils import parse_mol, validate_smiles

logger = logging.getLogger(__name__)

TARGET_VALENCE_PROP = "TargetValence"


# ---------------------------------------------------------------------------
# Ion preparation
# ---------------------------------------------------------------------------

def prepare_ion(mol_or_smiles: Union[str, Chem.Mol]) -> Tuple[Chem.Mol, int]:
    """Build the sigma skeleton of a molecule and count its free electron pairs.

    Returns ``(skeleton, free_epairs)`` where ``free_epairs`` is the number
    of pi electron pairs of the Kekulé structure.

    Raises
    ------
    ValueError
        If the SMILES fails ``validate_smiles`` (the message carries its
        reason), the molecule is empty or it has more than one connected
        component.
    """
    if isinstance(mol_or_smiles, str):
        ok, reason = validate_smiles(mol_or_smiles)
        if not ok:
            raise ValueError(f"Invalid SMILES {mol_or_smiles!r}: {reason}")
        mol = parse_mol(mol_or_smiles)
    else:
        mol = mol_or_smiles

    mol = Chem.RemoveHs(mol)
    if mol.GetNumAtoms() == 0:
        raise ValueError("Cannot build an ion from an empty molecule")
    if len(Chem.GetMolFrags(mol)) > 1:
        raise ValueError(
            f"Ion must be a single connected structure: {Chem.MolToSmiles(mol)}"
        )

    kek = Chem.Mol(mol)
    Chem.RemoveStereochemistry(kek)
    Chem.Kekulize(kek, clearAromaticFlags=True)

    free_epairs = 0
    for bond in kek.GetBonds():
        free_epairs += max(0, int(bond.GetBondTypeAsDouble()) - 1)

    # Read hydrogens and valences before any edit invalidates the cache
    frozen = [(a.GetTotalNumHs(), a.GetTotalValence()) for a in kek.GetAtoms()]

    rw = Chem.RWMol(kek)
    for atom, (n_hs, valence) in zip(rw.GetAtoms(), frozen):
        atom.SetNumExplicitHs(n_hs)
        atom.SetNoImplicit(True)
        atom.SetIsAromatic(False)
        atom.SetIntProp(TARGET_VALENCE_PROP, valence)
    for bond in rw.GetBonds():
        bond.SetBondType(Chem.BondType.SINGLE)
        bond.SetIsAromatic(False)

    skeleton = rw.GetMol()
    logger.debug(
        "Prepared ion skeleton: %d atoms, %d bonds, %d free epairs",
        skeleton.GetNumAtoms(), skeleton.GetNumBonds(), free_epairs,
    )
    return skeleton, free_epairs


def free_valence(atom: Chem.Atom) -> int:
    """Valence units left on *atom* once its skeleton bonds and Hs are counted."""
    fv = atom.GetIntProp(TARGET_VALENCE_PROP) - atom.GetDegree() - atom.GetTotalNumHs()
    return max(0, fv)


# ---------------------------------------------------------------------------
# Rings
# ---------------------------------------------------------------------------

def ring_bond_sets(mol: Chem.Mol) -> List[List[int]]:
    """Bond indices of each symmetrized SSSR ring, in traversal order."""
    rings: List[List[int]] = []
    for ring_atoms in Chem.GetSymmSSSR(mol):
        atoms = list(ring_atoms)
        n = len(atoms)
        bonds: List[int] = []
        for k in range(n):
            bond = mol.GetBondBetweenAtoms(atoms[k], atoms[(k + 1) % n])
            bonds.append(bond.GetIdx())
        rings.append(bonds)
    return rings


# ---------------------------------------------------------------------------
# Fragments
# ---------------------------------------------------------------------------

def extract_fragment(mol: Chem.Mol, atom_idxs: Iterable[int]) -> Chem.Mol:
    """Independent copy of *mol* restricted to *atom_idxs*.

    Atoms keep their relative order and properties; bonds to removed atoms
    disappear with them.
    """
    keep = set(atom_idxs)
    rw = Chem.RWMol(mol)
    for idx in range(mol.GetNumAtoms() - 1, -1, -1):
        if idx not in keep:
            rw.RemoveAtom(idx)
    return rw.GetMol()
