"""
Policy trees.

A policy is a closed set of node types (``Leaf``, ``And``, ``Or``,
``Threshold``) folded by one recursive function. Trees are validated once at
construction and are immutable afterwards, so one policy can serve any
number of concurrent verifications.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from . import config
from .checks.base import Check
from .evidence import EvidenceKind
from .exceptions import ConfigurationError
from .results import CheckStatus


@dataclass(frozen=True)
class Leaf:
    check: Check
    label: Optional[str] = None

    @property
    def id(self) -> str:
        return self.label or self.check.check_id


@dataclass(frozen=True, init=False)
class And:
    children: Tuple["Node", ...]

    def __init__(self, *children: "Node"):
        object.__setattr__(self, "children", tuple(children))


@dataclass(frozen=True, init=False)
class Or:
    children: Tuple["Node", ...]

    def __init__(self, *children: "Node"):
        object.__setattr__(self, "children", tuple(children))


@dataclass(frozen=True, init=False)
class Threshold:
    """At least ``k`` children must pass; advisories count ``advisory_weight`` each."""

    k: int
    children: Tuple["Node", ...]
    advisory_weight: float

    def __init__(self, k: int, *children: "Node", advisory_weight: Optional[float] = None):
        object.__setattr__(self, "k", k)
        object.__setattr__(self, "children", tuple(children))
        object.__setattr__(
            self, "advisory_weight",
            config.ADVISORY_WEIGHT if advisory_weight is None else float(advisory_weight),
        )


Node = Union[Leaf, And, Or, Threshold]


def iter_leaves(node: Node) -> Iterator[Leaf]:
    """Leaves in depth-first, left-to-right order."""
    if isinstance(node, Leaf):
        yield node
        return
    for child in node.children:
        yield from iter_leaves(child)


def combine_and(statuses: Sequence[CheckStatus]) -> CheckStatus:
    if CheckStatus.FAIL in statuses:
        return CheckStatus.FAIL
    if CheckStatus.ADVISORY in statuses:
        return CheckStatus.ADVISORY
    return CheckStatus.PASS


def combine_or(statuses: Sequence[CheckStatus]) -> CheckStatus:
    if CheckStatus.PASS in statuses:
        return CheckStatus.PASS
    if CheckStatus.ADVISORY in statuses:
        return CheckStatus.ADVISORY
    return CheckStatus.FAIL


def combine_threshold(statuses: Sequence[CheckStatus], k: int, advisory_weight: float) -> CheckStatus:
    passes = statuses.count(CheckStatus.PASS)
    if passes >= k:
        return CheckStatus.PASS
    if passes + advisory_weight * statuses.count(CheckStatus.ADVISORY) >= k:
        return CheckStatus.ADVISORY
    return CheckStatus.FAIL


def fold(node: Node, leaf_statuses: Iterator[CheckStatus]) -> CheckStatus:
    """
    Aggregate status of ``node``, consuming leaf statuses in evaluation order.

    Every child is folded before combining, so no leaf is ever skipped.
    """
    if isinstance(node, Leaf):
        return next(leaf_statuses)
    statuses = [fold(child, leaf_statuses) for child in node.children]
    if isinstance(node, And):
        return combine_and(statuses)
    if isinstance(node, Or):
        return combine_or(statuses)
    return combine_threshold(statuses, node.k, node.advisory_weight)


def _validate(node: Node, path: str) -> None:
    if isinstance(node, Leaf):
        if not isinstance(node.check, Check):
            raise ConfigurationError(f"{path}: leaf does not hold a Check ({node.check!r})")
        return
    if not isinstance(node, (And, Or, Threshold)):
        raise ConfigurationError(f"{path}: not a policy node ({node!r})")
    if not node.children:
        raise ConfigurationError(f"{path}: {type(node).__name__} has no children")
    if isinstance(node, Threshold):
        if not 1 <= node.k <= len(node.children):
            raise ConfigurationError(
                f"{path}: threshold {node.k} outside 1..{len(node.children)}"
            )
        if not 0.0 <= node.advisory_weight <= 1.0:
            raise ConfigurationError(
                f"{path}: advisory weight {node.advisory_weight} outside [0, 1]"
            )
    for index, child in enumerate(node.children):
        _validate(child, f"{path}.{type(node).__name__}[{index}]")


class Policy:
    """
    A named, validated policy tree.

    ``kinds`` restricts which evidence kinds the policy is for; by default
    it is every kind all of its checks support. Construction fails when a
    leaf cannot handle one of those kinds.
    """

    def __init__(self, name: str, root: Node, kinds: Optional[Iterable[EvidenceKind]] = None):
        if not name:
            raise ConfigurationError("Policy needs a name")
        _validate(root, "root")
        leaves = tuple(iter_leaves(root))

        seen = set()
        for leaf in leaves:
            if leaf.id in seen:
                raise ConfigurationError(
                    f"Duplicate leaf label {leaf.id!r}; give repeated checks distinct labels"
                )
            seen.add(leaf.id)

        supported = frozenset(EvidenceKind)
        for leaf in leaves:
            supported &= leaf.check.supported_kinds
        if kinds is None:
            kinds = supported
        kinds = frozenset(kinds)
        if not kinds:
            raise ConfigurationError(f"Policy {name!r}: checks share no evidence kind")
        unsupported = kinds - supported
        if unsupported:
            offenders: List[str] = [
                leaf.id for leaf in leaves if not kinds <= leaf.check.supported_kinds
            ]
            raise ConfigurationError(
                f"Policy {name!r}: {', '.join(offenders)} cannot check "
                f"{', '.join(sorted(k.value for k in unsupported))} evidence"
            )

        self._name = name
        self._root = root
        self._leaves = leaves
        self._kinds: FrozenSet[EvidenceKind] = kinds

    @property
    def name(self) -> str:
        return self._name

    @property
    def root(self) -> Node:
        return self._root

    @property
    def leaves(self) -> Tuple[Leaf, ...]:
        return self._leaves

    @property
    def kinds(self) -> FrozenSet[EvidenceKind]:
        return self._kinds

    def aggregate(self, leaf_statuses: Sequence[CheckStatus]) -> CheckStatus:
        if len(leaf_statuses) != len(self._leaves):
            raise ValueError(
                f"Expected {len(self._leaves)} leaf statuses, got {len(leaf_statuses)}"
            )
        return fold(self._root, iter(leaf_statuses))

    def __repr__(self) -> str:
        return f"Policy({self._name!r}, leaves={[leaf.id for leaf in self._leaves]})"
