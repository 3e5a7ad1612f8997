"""
Workflow state machine

Pure transition functions over a GraphSnapshot. They never touch the
database: the instance service checks the instance status, calls one of
these, and persists the returned Transition in a single commit.

Arriving on a node completes the walk when the node is an END node, or a
non-question node carrying an action key and no continuation.
"""
from dataclasses import dataclass
from typing import Optional

from signposting.core.enums import ActionKey, NodeType
from signposting.core.exceptions import ConfigurationException, InvalidTransitionException
from signposting.workflows.graph import GraphSnapshot, NodeSnapshot, OptionSnapshot, find_start_node


@dataclass(frozen=True)
class Transition:
    """Result of a state machine step"""
    node_id: Optional[str]
    completed: bool = False
    outcome_action_key: Optional[ActionKey] = None


@dataclass(frozen=True)
class AnswerStep:
    """A question answered plus the transition it caused"""
    node: NodeSnapshot
    option: OptionSnapshot
    transition: Transition


def _is_terminal(node: NodeSnapshot) -> bool:
    if node.node_type == NodeType.END:
        return True
    return (
        node.node_type != NodeType.QUESTION
        and node.action_key is not None
        and node.default_next_node_id is None
    )


def _require_node(graph: GraphSnapshot, node_id: Optional[str]) -> NodeSnapshot:
    node = graph.node(node_id)
    if node is None:
        raise ConfigurationException(
            "Workflow step not found",
            detail=f"Node {node_id} is not part of workflow '{graph.template_name}'",
        )
    return node


def enter(graph: GraphSnapshot, node_id: str) -> Transition:
    """Move the cursor onto a node, completing the walk if it is terminal"""
    node = _require_node(graph, node_id)
    if _is_terminal(node):
        return Transition(node_id=node.id, completed=True, outcome_action_key=node.action_key)
    return Transition(node_id=node.id)


def begin(graph: GraphSnapshot) -> Transition:
    """
    Place the cursor on the start node

    Raises:
        ConfigurationException: If the graph has zero or several start nodes
    """
    return enter(graph, find_start_node(graph).id)


def answer(graph: GraphSnapshot, current_node_id: Optional[str], option_id: str) -> AnswerStep:
    """
    Answer the question under the cursor

    next_node_id wins over action_key when an option has both. An option
    without a next node completes the walk with its action key.

    Raises:
        InvalidTransitionException: If the cursor is not a question or the
            option does not belong to it
        ConfigurationException: If the option is a dead end or points outside
            the graph
    """
    node = graph.node(current_node_id)
    if node is None or node.node_type != NodeType.QUESTION:
        raise InvalidTransitionException(
            "Current step is not a question",
            detail="Answers can only be recorded on question steps",
        )

    option = node.option(str(option_id))
    if option is None:
        raise InvalidTransitionException(
            "Answer option not found",
            detail=f"Option {option_id} is not an answer to '{node.title}'",
        )

    if option.next_node_id is not None:
        transition = enter(graph, option.next_node_id)
        if transition.completed and transition.outcome_action_key is None:
            transition = Transition(
                node_id=transition.node_id,
                completed=True,
                outcome_action_key=option.action_key,
            )
        return AnswerStep(node=node, option=option, transition=transition)

    if option.action_key is not None:
        return AnswerStep(
            node=node,
            option=option,
            transition=Transition(node_id=None, completed=True, outcome_action_key=option.action_key),
        )

    raise ConfigurationException(
        "Answer option is a dead end",
        detail=f"Answer '{option.label}' on '{node.title}' has neither a next step nor an action",
    )


def acknowledge(graph: GraphSnapshot, current_node_id: Optional[str]) -> Transition:
    """
    Acknowledge the instruction under the cursor

    Follows default_next_node_id; an instruction without one is the last
    step and completes the walk with its own action key.

    Raises:
        InvalidTransitionException: If the cursor is not an instruction
    """
    node = graph.node(current_node_id)
    if node is None or node.node_type != NodeType.INSTRUCTION:
        raise InvalidTransitionException(
            "Current step is not an instruction",
            detail="Only instruction steps can be acknowledged",
        )

    if node.default_next_node_id is None:
        return Transition(node_id=node.id, completed=True, outcome_action_key=node.action_key)

    return enter(graph, node.default_next_node_id)
