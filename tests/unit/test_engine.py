"""
Unit tests for the workflow state machine

Pure functions over graph snapshots; no database involved.
"""
import random
import pytest

from signposting.core.enums import ActionKey, NodeType
from signposting.core.exceptions import ConfigurationException, InvalidTransitionException
from signposting.workflows import engine
from signposting.workflows.graph import GraphSnapshot, NodeSnapshot, OptionSnapshot


def clinic_letters() -> GraphSnapshot:
    return GraphSnapshot(
        template_id="t-clinic",
        template_name="Clinic Letters",
        nodes=(
            NodeSnapshot(
                id="n1",
                node_type=NodeType.QUESTION,
                title="Is this urgent?",
                is_start=True,
                answer_options=(
                    OptionSnapshot(id="o-yes", label="Yes", value_key="yes", next_node_id="n2"),
                    OptionSnapshot(id="o-no", label="No", value_key="no", next_node_id="n3"),
                ),
            ),
            NodeSnapshot(id="n2", node_type=NodeType.END, title="Forward", action_key=ActionKey.FORWARD_TO_GP),
            NodeSnapshot(id="n3", node_type=NodeType.END, title="File", action_key=ActionKey.FILE_WITHOUT_FORWARDING),
        ),
    )


def prescription_requests() -> GraphSnapshot:
    """Instruction chain into a question with a mix of continuations and direct outcomes"""
    return GraphSnapshot(
        template_id="t-rx",
        template_name="Prescription Requests",
        nodes=(
            NodeSnapshot(id="i1", node_type=NodeType.INSTRUCTION, title="Check the patient record", is_start=True, default_next_node_id="i2"),
            NodeSnapshot(id="i2", node_type=NodeType.INSTRUCTION, title="Check the medication list", default_next_node_id="q1"),
            NodeSnapshot(
                id="q1",
                node_type=NodeType.QUESTION,
                title="Is it a repeat item?",
                answer_options=(
                    OptionSnapshot(id="o-repeat", label="Repeat", value_key="repeat", action_key=ActionKey.FORWARD_TO_PRESCRIBING_TEAM),
                    OptionSnapshot(id="o-acute", label="Acute", value_key="acute", next_node_id="q2"),
                ),
            ),
            NodeSnapshot(
                id="q2",
                node_type=NodeType.QUESTION,
                title="Is a pharmacist available?",
                answer_options=(
                    OptionSnapshot(id="o-pharm", label="Yes", value_key="yes", next_node_id="i3"),
                    OptionSnapshot(id="o-gp", label="No", value_key="no", next_node_id="e1", action_key=ActionKey.OTHER),
                ),
            ),
            NodeSnapshot(id="i3", node_type=NodeType.INSTRUCTION, title="Send to pharmacy", action_key=ActionKey.FORWARD_TO_PHARMACY_TEAM),
            NodeSnapshot(id="e1", node_type=NodeType.END, title="Forward to GP", action_key=ActionKey.FORWARD_TO_GP),
        ),
    )


class TestBegin:
    """Tests for placing the cursor on the start node"""

    def test_begin_places_cursor_on_start_node(self):
        transition = engine.begin(clinic_letters())

        assert transition.node_id == "n1"
        assert transition.completed is False
        assert transition.outcome_action_key is None

    def test_begin_without_start_node(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Broken",
            nodes=(NodeSnapshot(id="a", node_type=NodeType.END, title="End"),),
        )

        with pytest.raises(ConfigurationException) as exc_info:
            engine.begin(graph)

        assert "no start node" in exc_info.value.message

    def test_begin_with_two_start_nodes(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Broken",
            nodes=(
                NodeSnapshot(id="a", node_type=NodeType.INSTRUCTION, title="A", is_start=True),
                NodeSnapshot(id="b", node_type=NodeType.INSTRUCTION, title="B", is_start=True),
            ),
        )

        with pytest.raises(ConfigurationException) as exc_info:
            engine.begin(graph)

        assert "'A'" in exc_info.value.detail
        assert "'B'" in exc_info.value.detail

    def test_begin_on_end_node_completes(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Shortcut",
            nodes=(NodeSnapshot(id="e", node_type=NodeType.END, title="Code and file", is_start=True, action_key=ActionKey.CODE_AND_FILE),),
        )

        transition = engine.begin(graph)

        assert transition.completed is True
        assert transition.node_id == "e"
        assert transition.outcome_action_key == ActionKey.CODE_AND_FILE


class TestAnswer:
    """Tests for answering question nodes"""

    def test_clinic_letters_yes_forwards_to_gp(self):
        step = engine.answer(clinic_letters(), "n1", "o-yes")

        assert step.node.id == "n1"
        assert step.option.value_key == "yes"
        assert step.transition.node_id == "n2"
        assert step.transition.completed is True
        assert step.transition.outcome_action_key == ActionKey.FORWARD_TO_GP

    def test_clinic_letters_no_files_without_forwarding(self):
        step = engine.answer(clinic_letters(), "n1", "o-no")

        assert step.transition.node_id == "n3"
        assert step.transition.outcome_action_key == ActionKey.FILE_WITHOUT_FORWARDING

    def test_option_of_another_node_is_rejected(self):
        graph = prescription_requests()

        with pytest.raises(InvalidTransitionException):
            engine.answer(graph, "q1", "o-pharm")

    def test_answer_on_instruction_is_rejected(self):
        with pytest.raises(InvalidTransitionException):
            engine.answer(prescription_requests(), "i1", "o-repeat")

    def test_answer_without_cursor_is_rejected(self):
        with pytest.raises(InvalidTransitionException):
            engine.answer(clinic_letters(), None, "o-yes")

    def test_option_action_key_without_next_node_completes(self):
        step = engine.answer(prescription_requests(), "q1", "o-repeat")

        assert step.transition.completed is True
        assert step.transition.node_id is None
        assert step.transition.outcome_action_key == ActionKey.FORWARD_TO_PRESCRIBING_TEAM

    def test_next_node_takes_precedence_over_option_action(self):
        step = engine.answer(prescription_requests(), "q2", "o-gp")

        assert step.transition.node_id == "e1"
        assert step.transition.outcome_action_key == ActionKey.FORWARD_TO_GP

    def test_moving_to_a_question_keeps_instance_running(self):
        step = engine.answer(prescription_requests(), "q1", "o-acute")

        assert step.transition.node_id == "q2"
        assert step.transition.completed is False

    def test_arriving_on_instruction_with_action_completes(self):
        step = engine.answer(prescription_requests(), "q2", "o-pharm")

        assert step.transition.node_id == "i3"
        assert step.transition.completed is True
        assert step.transition.outcome_action_key == ActionKey.FORWARD_TO_PHARMACY_TEAM

    def test_end_node_without_action_uses_option_action(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Plain end",
            nodes=(
                NodeSnapshot(
                    id="q",
                    node_type=NodeType.QUESTION,
                    title="Letter type?",
                    is_start=True,
                    answer_options=(
                        OptionSnapshot(id="o", label="Standard", value_key="standard", next_node_id="e", action_key=ActionKey.SEND_STANDARD_LETTER),
                    ),
                ),
                NodeSnapshot(id="e", node_type=NodeType.END, title="Done"),
            ),
        )

        step = engine.answer(graph, "q", "o")

        assert step.transition.completed is True
        assert step.transition.outcome_action_key == ActionKey.SEND_STANDARD_LETTER

    def test_dead_end_option_is_a_configuration_error(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Dead end",
            nodes=(
                NodeSnapshot(
                    id="q",
                    node_type=NodeType.QUESTION,
                    title="Anything?",
                    is_start=True,
                    answer_options=(OptionSnapshot(id="o", label="Hmm", value_key="hmm"),),
                ),
            ),
        )

        with pytest.raises(ConfigurationException):
            engine.answer(graph, "q", "o")

    def test_option_pointing_outside_graph_is_a_configuration_error(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Dangling",
            nodes=(
                NodeSnapshot(
                    id="q",
                    node_type=NodeType.QUESTION,
                    title="Anything?",
                    is_start=True,
                    answer_options=(OptionSnapshot(id="o", label="Go", value_key="go", next_node_id="gone"),),
                ),
            ),
        )

        with pytest.raises(ConfigurationException):
            engine.answer(graph, "q", "o")


class TestAcknowledge:
    """Tests for acknowledging instruction nodes"""

    def test_acknowledge_follows_default_next(self):
        transition = engine.acknowledge(prescription_requests(), "i1")

        assert transition.node_id == "i2"
        assert transition.completed is False

    def test_acknowledge_into_question(self):
        transition = engine.acknowledge(prescription_requests(), "i2")

        assert transition.node_id == "q1"
        assert transition.completed is False

    def test_acknowledge_last_instruction_completes(self):
        graph = GraphSnapshot(
            template_id="t",
            template_name="Single step",
            nodes=(NodeSnapshot(id="i", node_type=NodeType.INSTRUCTION, title="Scan the letter", is_start=True),),
        )

        transition = engine.acknowledge(graph, "i")

        assert transition.completed is True
        assert transition.node_id == "i"
        assert transition.outcome_action_key is None

    def test_acknowledge_on_question_is_rejected(self):
        with pytest.raises(InvalidTransitionException):
            engine.acknowledge(clinic_letters(), "n1")


class TestTerminalReachability:
    """Walking any valid path of a well-formed graph ends in completion"""

    @pytest.mark.parametrize("seed", range(20))
    def test_random_walk_completes(self, seed):
        rng = random.Random(seed)
        graph = prescription_requests()

        transition = engine.begin(graph)
        steps = 0
        while not transition.completed:
            node = graph.node(transition.node_id)
            if node.node_type == NodeType.QUESTION:
                option = rng.choice(node.answer_options)
                transition = engine.answer(graph, node.id, option.id).transition
            else:
                transition = engine.acknowledge(graph, node.id)
            steps += 1
            assert steps < 50

        assert transition.completed is True
