# Fragmenta/main — 碎片树引擎
# 断键枚举 + 碎片树节点 + 碎片图生成

from .fragment_tree import (
    Break,
    FragmentTreeNode,
)

from .fragment_graph import (
    FragmentationConfig,
    FragmentEntry,
    FragmentGraph,
    FragmentGraphGenerator,
    Transition,
)
