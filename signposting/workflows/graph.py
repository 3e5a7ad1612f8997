"""
Immutable workflow graph snapshots

An instance executes against a copy of its template graph taken at start,
so later edits to the template (including node deletion) can never leave a
running instance pointing at a node that no longer exists.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from signposting.core.enums import ActionKey, NodeType
from signposting.core.exceptions import ConfigurationException


@dataclass(frozen=True)
class OptionSnapshot:
    """Answer option as captured at instance start"""
    id: str
    label: str
    value_key: str
    description: Optional[str] = None
    next_node_id: Optional[str] = None
    action_key: Optional[ActionKey] = None


@dataclass(frozen=True)
class LinkSnapshot:
    """Link to another workflow, shown alongside a node"""
    template_id: str
    label: str


@dataclass(frozen=True)
class NodeSnapshot:
    """Workflow node as captured at instance start"""
    id: str
    node_type: NodeType
    title: str
    body: Optional[str] = None
    sort_order: int = 0
    is_start: bool = False
    action_key: Optional[ActionKey] = None
    default_next_node_id: Optional[str] = None
    answer_options: Tuple[OptionSnapshot, ...] = ()
    links: Tuple[LinkSnapshot, ...] = ()

    def option(self, option_id: str) -> Optional[OptionSnapshot]:
        for option in self.answer_options:
            if option.id == option_id:
                return option
        return None


@dataclass(frozen=True)
class GraphSnapshot:
    """Nodes of one template, ordered by sort_order"""
    template_id: str
    template_name: str
    nodes: Tuple[NodeSnapshot, ...] = ()
    _index: Dict[str, NodeSnapshot] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {node.id: node for node in self.nodes})

    def node(self, node_id: Optional[str]) -> Optional[NodeSnapshot]:
        if node_id is None:
            return None
        return self._index.get(str(node_id))

    def start_nodes(self) -> List[NodeSnapshot]:
        return [node for node in self.nodes if node.is_start]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the instance's JSON snapshot column"""
        return {
            "template_id": self.template_id,
            "template_name": self.template_name,
            "nodes": [
                {
                    "id": node.id,
                    "node_type": node.node_type.value,
                    "title": node.title,
                    "body": node.body,
                    "sort_order": node.sort_order,
                    "is_start": node.is_start,
                    "action_key": node.action_key.value if node.action_key else None,
                    "default_next_node_id": node.default_next_node_id,
                    "answer_options": [
                        {
                            "id": option.id,
                            "label": option.label,
                            "value_key": option.value_key,
                            "description": option.description,
                            "next_node_id": option.next_node_id,
                            "action_key": option.action_key.value if option.action_key else None,
                        }
                        for option in node.answer_options
                    ],
                    "links": [
                        {"template_id": link.template_id, "label": link.label}
                        for link in node.links
                    ],
                }
                for node in self.nodes
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphSnapshot":
        nodes = tuple(
            NodeSnapshot(
                id=node["id"],
                node_type=NodeType(node["node_type"]),
                title=node["title"],
                body=node.get("body"),
                sort_order=node.get("sort_order", 0),
                is_start=node.get("is_start", False),
                action_key=ActionKey(node["action_key"]) if node.get("action_key") else None,
                default_next_node_id=node.get("default_next_node_id"),
                answer_options=tuple(
                    OptionSnapshot(
                        id=option["id"],
                        label=option["label"],
                        value_key=option["value_key"],
                        description=option.get("description"),
                        next_node_id=option.get("next_node_id"),
                        action_key=ActionKey(option["action_key"]) if option.get("action_key") else None,
                    )
                    for option in node.get("answer_options", [])
                ),
                links=tuple(
                    LinkSnapshot(template_id=link["template_id"], label=link["label"])
                    for link in node.get("links", [])
                ),
            )
            for node in data.get("nodes", [])
        )
        return cls(
            template_id=data["template_id"],
            template_name=data.get("template_name", ""),
            nodes=nodes,
        )


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def snapshot_template(template: Any, nodes: Iterable[Any]) -> GraphSnapshot:
    """
    Build a snapshot from persisted template rows

    Args:
        template: WorkflowTemplate row
        nodes: WorkflowNode rows with answer_options and links loaded

    Returns:
        GraphSnapshot ordered by (sort_order, id)
    """
    ordered = sorted(nodes, key=lambda n: (n.sort_order, str(n.id)))
    return GraphSnapshot(
        template_id=str(template.id),
        template_name=template.name,
        nodes=tuple(
            NodeSnapshot(
                id=str(node.id),
                node_type=NodeType(node.node_type),
                title=node.title,
                body=node.body,
                sort_order=node.sort_order,
                is_start=bool(node.is_start),
                action_key=ActionKey(node.action_key) if node.action_key else None,
                default_next_node_id=_str_or_none(node.default_next_node_id),
                answer_options=tuple(
                    OptionSnapshot(
                        id=str(option.id),
                        label=option.label,
                        value_key=option.value_key,
                        description=option.description,
                        next_node_id=_str_or_none(option.next_node_id),
                        action_key=ActionKey(option.action_key) if option.action_key else None,
                    )
                    for option in sorted(node.answer_options, key=lambda o: (o.sort_order, str(o.id)))
                ),
                links=tuple(
                    LinkSnapshot(template_id=str(link.template_id), label=link.label)
                    for link in sorted(node.links, key=lambda l: (l.sort_order, str(l.id)))
                ),
            )
            for node in ordered
        ),
    )


def find_start_node(graph: GraphSnapshot) -> NodeSnapshot:
    """
    Return the single start node of a graph

    Raises:
        ConfigurationException: If the graph has zero or several start nodes
    """
    starts = graph.start_nodes()
    if not starts:
        raise ConfigurationException(
            "Workflow has no start node",
            detail=f"Template '{graph.template_name}' has no node marked as start",
        )
    if len(starts) > 1:
        titles = ", ".join(f"'{node.title}'" for node in starts)
        raise ConfigurationException(
            "Workflow has more than one start node",
            detail=f"Template '{graph.template_name}' has {len(starts)} start nodes: {titles}",
        )
    return starts[0]


@dataclass(frozen=True)
class GraphIssue:
    """A single authoring problem found by validate_graph"""
    code: str
    message: str
    node_id: Optional[str] = None
    option_id: Optional[str] = None


def validate_graph(graph: GraphSnapshot) -> List[GraphIssue]:
    """
    Report authoring problems that would break execution

    Checks start node count, dead-end answer options, references to nodes
    outside the graph, question nodes without options, INSTRUCTION
    continuations on the wrong node type, and nodes unreachable from start.
    """
    issues: List[GraphIssue] = []

    starts = graph.start_nodes()
    if not starts:
        issues.append(GraphIssue("no_start_node", "No node is marked as the start node"))
    elif len(starts) > 1:
        for node in starts:
            issues.append(GraphIssue("multiple_start_nodes", f"'{node.title}' is one of several start nodes", node_id=node.id))

    for node in graph.nodes:
        if node.node_type == NodeType.QUESTION and not node.answer_options:
            issues.append(GraphIssue("question_without_options", f"Question '{node.title}' has no answer options", node_id=node.id))

        if node.node_type != NodeType.QUESTION and node.answer_options:
            issues.append(GraphIssue("options_on_non_question", f"'{node.title}' is not a question but has answer options", node_id=node.id))

        if node.default_next_node_id is not None:
            if node.node_type != NodeType.INSTRUCTION:
                issues.append(GraphIssue("continuation_on_non_instruction", f"'{node.title}' has a default next node but is not an instruction", node_id=node.id))
            if graph.node(node.default_next_node_id) is None:
                issues.append(GraphIssue("dangling_reference", f"'{node.title}' continues to a node outside this workflow", node_id=node.id))

        for option in node.answer_options:
            if option.next_node_id is not None and graph.node(option.next_node_id) is None:
                issues.append(GraphIssue("dangling_reference", f"Answer '{option.label}' points to a node outside this workflow", node_id=node.id, option_id=option.id))
            if option.next_node_id is None and option.action_key is None:
                issues.append(GraphIssue("dead_end_option", f"Answer '{option.label}' has neither a next step nor an action", node_id=node.id, option_id=option.id))

    if len(starts) == 1:
        reachable = _reachable_from(graph, starts[0].id)
        for node in graph.nodes:
            if node.id not in reachable:
                issues.append(GraphIssue("unreachable_node", f"'{node.title}' cannot be reached from the start node", node_id=node.id))

    return issues


def _reachable_from(graph: GraphSnapshot, start_id: str) -> set:
    seen = set()
    pending = [start_id]
    while pending:
        node = graph.node(pending.pop())
        if node is None or node.id in seen:
            continue
        seen.add(node.id)
        if node.default_next_node_id:
            pending.append(node.default_next_node_id)
        pending.extend(option.next_node_id for option in node.answer_options if option.next_node_id)
    return seen
