"""M0: RDKit 公共工具 — SMILES 解析与校验、碎片骨架 SMILES 输出。"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional, Tuple

from rdkit import Chem

# 输入限制
_MAX_SMILES_LENGTH = 500
_MAX_BRACKET_DEPTH = 20
_SMILES_CHARSET = re.compile(r'^[A-Za-z0-9@+\-\[\]\(\)\.\#\=\:\%\/\\]+$')


@lru_cache(maxsize=1024)
def parse_mol(smiles: str) -> Optional[Chem.Mol]:
    """Sanitized Mol for *smiles*, or None if RDKit rejects it.

    Cached: the same string returns the same object, so copy before editing.
    """
    if not smiles:
        return None
    try:
        mol = Chem.MolFromSmiles(smiles)
        if mol is None:
            return None
        Chem.SanitizeMol(mol)
        return mol
    except Exception:
        return None


def validate_smiles(smiles: str) -> Tuple[bool, str]:
    """Check a precursor SMILES before it becomes a root ion.

    Returns ``(ok, reason)``; ``reason`` is empty when *smiles* is usable.
    """
    if not smiles or not smiles.strip():
        return False, "SMILES string is empty"
    if len(smiles) > _MAX_SMILES_LENGTH:
        return False, f"SMILES too long ({len(smiles)} > {_MAX_SMILES_LENGTH})"
    if not _SMILES_CHARSET.match(smiles):
        return False, "SMILES contains invalid characters"

    depth = deepest = 0
    for ch in smiles:
        if ch in "([":
            depth += 1
            deepest = max(deepest, depth)
        elif ch in ")]":
            depth -= 1
    if deepest > _MAX_BRACKET_DEPTH:
        return False, f"SMILES nesting too deep ({deepest} > {_MAX_BRACKET_DEPTH})"

    if parse_mol(smiles) is None:
        return False, "RDKit cannot parse this SMILES"
    return True, ""


# ---------------------------------------------------------------------------
# Fragment skeleton output
# ---------------------------------------------------------------------------

def mol_to_smiles(mol: Chem.Mol) -> str:
    """Canonical SMILES of an (unsanitized) ion skeleton.

    Skeletons carry frozen hydrogen counts and single bonds only, so they
    are written as-is: no sanitisation, no kekulisation. The valence cache
    is refreshed on a copy so hydrogen counts are bracketed correctly.
    """
    out = Chem.Mol(mol)
    out.UpdatePropertyCache(strict=False)
    return Chem.MolToSmiles(out, isomericSmiles=False, canonical=True, kekuleSmiles=True)
