"""电子对分配 / 电荷位置测试。"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT))

import pytest
from rdkit import RDLogger
RDLogger.DisableLog("rdApp.*")

from Fragmenta.chem_tools.electron_alloc import (
    epair_capacity,
    epair_distributions,
    find_charge_location,
)
from Fragmenta.chem_tools.ion_skeleton import extract_fragment, prepare_ion


# ── 容量 ──

@pytest.mark.parametrize("smiles", ["C#CC", "c1ccccc1", "CC(=O)O", "N#CC=O", "CCC"])
def test_capacity_of_whole_ion_equals_epairs(smiles):
    ion, epairs = prepare_ion(smiles)
    assert epair_capacity(ion) == epairs


def test_capacity_of_fragments():
    ion, _ = prepare_ion("C#CC")
    assert epair_capacity(extract_fragment(ion, [0, 1])) == 2
    assert epair_capacity(extract_fragment(ion, [2])) == 0
    # 孤立的 CH 有 3 个 free valence → 1 个孤对
    assert epair_capacity(extract_fragment(ion, [0])) == 1
    # CH3 端的 C 没有 free valence，C=C 无法成键
    assert epair_capacity(extract_fragment(ion, [1, 2])) == 1


def test_capacity_with_reserved_atom():
    ion, _ = prepare_ion("C#CC")
    assert epair_capacity(ion, reserve_idx=2) == -1
    assert epair_capacity(ion, reserve_idx=0) == 1

    methyl = extract_fragment(prepare_ion("CCC")[0], [0])
    assert epair_capacity(methyl, reserve_idx=0) == 0


def test_distributions():
    assert epair_distributions(2, 2, 0) == [2]
    assert epair_distributions(2, 1, 1) == [1]
    assert epair_distributions(2, 5, 5) == [0, 1, 2]
    assert epair_distributions(3, 1, 1) == []
    assert epair_distributions(0, 0, 0) == [0]


def test_distributions_conserve_pairs():
    for total, cap0, cap1 in ((4, 3, 2), (1, 0, 4), (5, 5, 5)):
        for e_f0 in epair_distributions(total, cap0, cap1):
            e_f1 = total - e_f0
            assert 0 <= e_f0 <= cap0
            assert 0 <= e_f1 <= cap1


# ── 电荷位置 ──

def test_charge_prefers_heteroatom():
    ion, epairs = prepare_ion("CCO")
    assert find_charge_location(ion, epairs) == 2


def test_charge_prefers_nitrogen_over_oxygen():
    ion, epairs = prepare_ion("OCCN")
    assert find_charge_location(ion, epairs) == 3


def test_charge_on_open_valence_carbon():
    ion, _ = prepare_ion("CCC")
    methyl = extract_fragment(ion, [0])
    assert find_charge_location(methyl, 0) == 0


def test_charge_rejected_without_host():
    ion, epairs = prepare_ion("CCC")
    assert find_charge_location(ion, epairs) is None

    # 所有 free valence 都被电子对占满
    ion, epairs = prepare_ion("C#CC")
    assert find_charge_location(ion, epairs) is None


def test_charge_rejected_when_epairs_exceed_capacity():
    ion, _ = prepare_ion("CCC")
    methyl = extract_fragment(ion, [0])
    assert find_charge_location(methyl, 1) is None


def test_charged_heteroatom_is_skipped():
    ion, epairs = prepare_ion("C[N+](=O)[O-]")
    assert find_charge_location(ion, epairs) == 2


def test_charge_ties_broken_by_index():
    ion, epairs = prepare_ion("OCCO")
    assert find_charge_location(ion, epairs) == 0
