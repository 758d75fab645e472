"""
碎片图
======
从碎片树汇总得到的去重碎片集合 + 碎片间转移（中性丢失）。

  - FragmentEntry: 离子碎片（按 离子 SMILES + free epairs 去重，id 自增，根=0）
  - Transition: from_id → to_id，附中性丢失 SMILES / 质量
  - FragmentGraphGenerator: 按 FragmentationConfig 展开碎片树并填充碎片图

碎片图完整 JSON 序列化，供后续谱图匹配使用。
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from Fragmenta.chem_tools.mass_utils import get_mass_tol, mol_formula

from .fragment_tree import FragmentTreeNode

logger = logging.getLogger(__name__)

# (离子 SMILES, ion_free_epairs)
FragmentKey = Tuple[str, int]


def fragment_key(node: FragmentTreeNode) -> FragmentKey:
    """Identity of an ion state: skeleton SMILES plus its free electron pairs."""
    return node.ion_smiles, node.ion_free_epairs


# ─────────────────────────────────────────────────────────────────────────
# 配置
# ─────────────────────────────────────────────────────────────────────────

@dataclass
class FragmentationConfig:
    """碎片生成参数。"""
    max_depth: int = 2
    abs_mass_tol: float = 0.01          # Da
    ppm_mass_tol: float = 10.0
    max_fragments: Optional[int] = None  # None = 不限

    def __post_init__(self):
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.abs_mass_tol < 0 or self.ppm_mass_tol < 0:
            raise ValueError("Mass tolerances must be non-negative")
        if self.max_fragments is not None and self.max_fragments < 1:
            raise ValueError(f"max_fragments must be >= 1, got {self.max_fragments}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> FragmentationConfig:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ─────────────────────────────────────────────────────────────────────────
# 节点 / 边
# ─────────────────────────────────────────────────────────────────────────

@dataclass
class FragmentEntry:
    """去重后的离子碎片。"""
    frag_id: int
    smiles: str
    mass: float = 0.0
    formula: str = ""
    depth: int = 0
    free_epairs: int = 0

    @property
    def key(self) -> FragmentKey:
        return self.smiles, self.free_epairs

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> FragmentEntry:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class Transition:
    """一次碎裂：from_id 离子失去中性碎片 nl_smiles 得到 to_id 离子。"""
    from_id: int
    to_id: int
    nl_smiles: str = ""
    nl_mass: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> Transition:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ─────────────────────────────────────────────────────────────────────────
# 碎片图
# ─────────────────────────────────────────────────────────────────────────

class FragmentGraph:
    """碎片图。按 (离子 SMILES, free epairs) 去重：骨架 SMILES 不含不饱和度。

    核心不变量:
      - fragments 按加入顺序排列，frag_id == 下标（根碎片 id=0）
      - 同一 (from_id, to_id, nl_smiles) 的转移只记录一次
    """

    def __init__(self, config: Optional[FragmentationConfig] = None):
        self.config: FragmentationConfig = config or FragmentationConfig()
        self.fragments: List[FragmentEntry] = []
        self.transitions: List[Transition] = []

        self._key_index: Dict[FragmentKey, int] = {}
        self._transition_keys: Set[Tuple[int, int, str]] = set()

    # ── 修改 ──

    def add_fragment(self, node: FragmentTreeNode) -> Tuple[int, bool]:
        """Add the ion of *node*; returns ``(frag_id, is_new)``."""
        key = fragment_key(node)
        if key in self._key_index:
            return self._key_index[key], False

        entry = FragmentEntry(
            frag_id=len(self.fragments),
            smiles=key[0],
            mass=node.ion_mass,
            formula=mol_formula(node.ion),
            depth=node.depth,
            free_epairs=node.ion_free_epairs,
        )
        self.fragments.append(entry)
        self._key_index[key] = entry.frag_id
        return entry.frag_id, True

    def add_transition(
        self, from_id: int, to_id: int, nl_smiles: str = "", nl_mass: float = 0.0,
    ) -> Optional[Transition]:
        key = (from_id, to_id, nl_smiles)
        if key in self._transition_keys:
            return None
        self._transition_keys.add(key)
        trans = Transition(from_id=from_id, to_id=to_id, nl_smiles=nl_smiles, nl_mass=nl_mass)
        self.transitions.append(trans)
        return trans

    # ── 查询 ──

    def get_fragment_by_smiles(
        self, smiles: str, free_epairs: int = 0,
    ) -> Optional[FragmentEntry]:
        """Entry for the ion state (*smiles*, *free_epairs*), or None."""
        fid = self._key_index.get((smiles, free_epairs))
        return self.fragments[fid] if fid is not None else None

    def get_fragment(self, frag_id: int) -> Optional[FragmentEntry]:
        if 0 <= frag_id < len(self.fragments):
            return self.fragments[frag_id]
        return None

    def fragments_in_window(
        self,
        mass: float,
        abs_tol: Optional[float] = None,
        ppm_tol: Optional[float] = None,
    ) -> List[FragmentEntry]:
        """Fragments whose mass lies within the tolerance window around *mass*.

        Tolerances default to the graph's config.
        """
        if abs_tol is None:
            abs_tol = self.config.abs_mass_tol
        if ppm_tol is None:
            ppm_tol = self.config.ppm_mass_tol
        tol = get_mass_tol(abs_tol, ppm_tol, mass)
        return [f for f in self.fragments if abs(f.mass - mass) <= tol]

    def transitions_from(self, frag_id: int) -> List[Transition]:
        return [t for t in self.transitions if t.from_id == frag_id]

    @property
    def num_fragments(self) -> int:
        return len(self.fragments)

    # ── 序列化 ──

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "fragments": [f.to_dict() for f in self.fragments],
            "transitions": [t.to_dict() for t in self.transitions],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FragmentGraph:
        graph = cls(FragmentationConfig.from_dict(data.get("config", {})))
        for fd in data.get("fragments", []):
            entry = FragmentEntry.from_dict(fd)
            graph.fragments.append(entry)
            graph._key_index[entry.key] = entry.frag_id
        for td in data.get("transitions", []):
            trans = Transition.from_dict(td)
            graph.transitions.append(trans)
            graph._transition_keys.add((trans.from_id, trans.to_id, trans.nl_smiles))
        return graph

    @classmethod
    def from_json(cls, json_str: str) -> FragmentGraph:
        return cls.from_dict(json.loads(json_str))

    # ── 文本渲染 ──

    def print_graph(self) -> str:
        """打印碎片图的文本表示。"""
        lines: List[str] = []
        for frag in self.fragments:
            lines.append(
                f"[{frag.frag_id}] {frag.smiles[:50]}  m/z={frag.mass:.4f}  "
                f"{frag.formula}  depth={frag.depth}"
            )
            outgoing = self.transitions_from(frag.frag_id)
            for i, trans in enumerate(outgoing):
                connector = "└── " if i == len(outgoing) - 1 else "├── "
                lines.append(
                    f"    {connector}-{trans.nl_smiles or '?'} "
                    f"({trans.nl_mass:.4f}) → [{trans.to_id}]"
                )
        return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────
# 生成器
# ─────────────────────────────────────────────────────────────────────────

class FragmentGraphGenerator:
    """深度优先展开碎片树，并把每个子节点写入碎片图。

    已经以不小于当前剩余深度展开过的碎片不会重复展开；达到
    max_fragments 后不再加入新碎片。
    """

    def __init__(self, config: Optional[FragmentationConfig] = None, **kwargs):
        if config is None:
            config = FragmentationConfig(**kwargs)
        elif kwargs:
            raise ValueError("Pass either a FragmentationConfig or keyword options, not both")
        self.config: FragmentationConfig = config
        self.root: Optional[FragmentTreeNode] = None

        self._graph: Optional[FragmentGraph] = None
        self._expanded: Dict[int, int] = {}  # frag_id → 展开时的剩余深度
        self._truncated: bool = False

    def build(self, smiles: str) -> FragmentGraph:
        """Fragment *smiles* and return the resulting graph."""
        self.root = FragmentTreeNode.from_smiles(smiles)
        self._graph = FragmentGraph(self.config)
        self._expanded = {}
        self._truncated = False

        root_id, _ = self._graph.add_fragment(self.root)
        self._expand(self.root, root_id)

        if self._truncated:
            logger.warning(
                "Fragment budget reached (%d fragments) for %s",
                self.config.max_fragments, smiles,
            )
        logger.info(
            "Built fragment graph for %s: %d fragments, %d transitions",
            smiles, self._graph.num_fragments, len(self._graph.transitions),
        )
        return self._graph

    @property
    def truncated(self) -> bool:
        return self._truncated

    def _budget_left(self) -> bool:
        limit = self.config.max_fragments
        return limit is None or self._graph.num_fragments < limit

    def _expand(self, node: FragmentTreeNode, frag_id: int) -> None:
        remaining = self.config.max_depth - node.depth
        if remaining <= 0:
            return
        if self._expanded.get(frag_id, -1) >= remaining:
            return
        self._expanded[frag_id] = remaining

        node.generate_children()
        for child in node.children:
            known = self._graph.get_fragment_by_smiles(
                child.ion_smiles, child.ion_free_epairs,
            )
            if known is None and not self._budget_left():
                self._truncated = True
                continue
            child_id, _ = self._graph.add_fragment(child)
            self._graph.add_transition(frag_id, child_id, child.nl_smiles, child.nl_mass)
            self._expand(child, child_id)
