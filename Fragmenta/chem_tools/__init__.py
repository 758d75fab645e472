# Fragmenta/chem_tools — 化学工具层公开 API

# M0: RDKit 工具
from ._rdkit_utils import mol_to_smiles, parse_mol, validate_smiles

# M1: 质量工具
from .mass_utils import get_mass_tol, get_monoisotopic_mass, mol_formula

# M2: 离子骨架
from .ion_skeleton import (
    TARGET_VALENCE_PROP,
    extract_fragment,
    free_valence,
    prepare_ion,
    ring_bond_sets,
)

# M3: 电子对分配
from .electron_alloc import epair_capacity, epair_distributions, find_charge_location

__all__ = [
    # M0
    "mol_to_smiles",
    "parse_mol",
    "validate_smiles",
    # M1
    "get_mass_tol",
    "get_monoisotopic_mass",
    "mol_formula",
    # M2
    "TARGET_VALENCE_PROP",
    "extract_fragment",
    "free_valence",
    "prepare_ion",
    "ring_bond_sets",
    # M3
    "epair_capacity",
    "epair_distributions",
    "find_charge_location",
]
