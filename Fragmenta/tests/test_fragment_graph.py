"""碎片图 / 生成器测试。"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(ROOT))

import pytest
from rdkit import RDLogger
RDLogger.DisableLog("rdApp.*")

from Fragmenta.main import (
    FragmentationConfig,
    FragmentGraph,
    FragmentGraphGenerator,
    Transition,
)


def test_config_defaults_and_validation():
    cfg = FragmentationConfig()
    assert cfg.max_depth == 2
    assert cfg.max_fragments is None
    with pytest.raises(ValueError):
        FragmentationConfig(max_depth=-1)
    with pytest.raises(ValueError):
        FragmentationConfig(max_fragments=0)
    with pytest.raises(ValueError):
        FragmentationConfig(ppm_mass_tol=-5)


def test_config_round_trip():
    cfg = FragmentationConfig(max_depth=3, max_fragments=50)
    assert FragmentationConfig.from_dict(cfg.to_dict()) == cfg


def test_generator_rejects_mixed_options():
    with pytest.raises(ValueError):
        FragmentGraphGenerator(FragmentationConfig(), max_depth=1)


def test_depth_zero_is_root_only():
    gen = FragmentGraphGenerator(max_depth=0)
    graph = gen.build("CCO")
    assert graph.num_fragments == 1
    assert graph.transitions == []
    assert gen.root.children == []


def test_ethanol_depth_one():
    gen = FragmentGraphGenerator(max_depth=1)
    graph = gen.build("CCO")

    root = graph.get_fragment(0)
    assert root.depth == 0
    assert root.formula == "C2H6O"
    assert root.mass == pytest.approx(gen.root.ion_mass)

    # C-C 与 C-O 各两种电荷方向
    assert len(gen.root.children) == 4
    assert graph.num_fragments == 5
    assert len(graph.transitions_from(0)) == 4
    assert all(f.depth == 1 for f in graph.fragments[1:])


def test_fragments_are_unique():
    gen = FragmentGraphGenerator(max_depth=2)
    graph = gen.build("CCCO")
    keys = [f.key for f in graph.fragments]
    assert len(keys) == len(set(keys))
    assert [f.frag_id for f in graph.fragments] == list(range(graph.num_fragments))
    for trans in graph.transitions:
        assert graph.get_fragment(trans.from_id) is not None
        assert graph.get_fragment(trans.to_id) is not None
        assert trans.nl_smiles


def test_repeated_fragment_maps_to_same_id():
    gen = FragmentGraphGenerator(max_depth=2)
    graph = gen.build("CCO")
    # CH3+ 既来自根节点，也来自 CH3CH2+ 的再断裂
    methyl = [f for f in graph.fragments if f.formula == "CH3"]
    assert len(methyl) == 1
    incoming = [t for t in graph.transitions if t.to_id == methyl[0].frag_id]
    assert len(incoming) >= 2


def test_fragment_budget():
    gen = FragmentGraphGenerator(max_depth=2, max_fragments=2)
    graph = gen.build("CCCO")
    assert graph.num_fragments == 2
    assert gen.truncated


def test_no_truncation_flag_without_budget():
    gen = FragmentGraphGenerator(max_depth=1)
    gen.build("CCO")
    assert not gen.truncated


def test_mass_window():
    gen = FragmentGraphGenerator(max_depth=1)
    graph = gen.build("CCO")
    root_mass = graph.fragments[0].mass
    hits = graph.fragments_in_window(root_mass)
    assert [f.frag_id for f in hits] == [0]
    assert graph.fragments_in_window(root_mass + 0.5) == []
    assert graph.fragments_in_window(root_mass + 0.5, abs_tol=1.0)


def test_add_transition_ignores_duplicates():
    graph = FragmentGraph()
    assert isinstance(graph.add_transition(0, 1, "O", 18.0), Transition)
    assert graph.add_transition(0, 1, "O", 18.0) is None
    assert graph.add_transition(0, 1, "C", 16.0) is not None
    assert len(graph.transitions) == 2


def test_json_round_trip():
    gen = FragmentGraphGenerator(max_depth=2, max_fragments=20)
    graph = gen.build("CC(=O)O")
    graph2 = FragmentGraph.from_json(graph.to_json())

    assert graph2.config == graph.config
    assert graph2.fragments == graph.fragments
    assert graph2.transitions == graph.transitions
    for frag in graph.fragments:
        assert graph2.get_fragment_by_smiles(frag.smiles, frag.free_epairs) == frag
    # 去重索引也要恢复
    last = graph.transitions[0]
    assert graph2.add_transition(last.from_id, last.to_id, last.nl_smiles) is None


def test_print_graph():
    gen = FragmentGraphGenerator(max_depth=1)
    text = gen.build("CCO").print_graph()
    assert text.startswith("[0]")
    assert "→ [1]" in text


def test_invalid_smiles():
    with pytest.raises(ValueError):
        FragmentGraphGenerator().build("C1CC")


def test_same_skeleton_different_epairs_kept_apart():
    # 乙酸乙烯酯：同一骨架 SMILES 可对应不同的 free epairs
    gen = FragmentGraphGenerator(max_depth=1)
    graph = gen.build("CC(=O)OC=C")

    states = {(c.ion_smiles, c.ion_free_epairs) for c in gen.root.children}
    assert graph.num_fragments == 1 + len(states)
    for smiles, epairs in states:
        entry = graph.get_fragment_by_smiles(smiles, epairs)
        assert entry is not None
        assert entry.free_epairs == epairs

    by_smiles = {}
    for frag in graph.fragments:
        by_smiles.setdefault(frag.smiles, set()).add(frag.free_epairs)
    assert any(len(epairs) > 1 for epairs in by_smiles.values())


def test_every_epair_state_is_expanded():
    gen = FragmentGraphGenerator(max_depth=2)
    graph = gen.build("CC(=O)OC=C")
    for child in gen.root.children:
        frag = graph.get_fragment_by_smiles(child.ion_smiles, child.ion_free_epairs)
        if child.children:
            assert graph.transitions_from(frag.frag_id)
