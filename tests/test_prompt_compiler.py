"""
Tests for prompt compilation.
"""

from app.core.prompt_compiler import (
    EMPTY_KNOWLEDGE_NOTE,
    compile_initial_prompt,
    compile_refinement_prompt,
    format_knowledge,
)
from app.models.schemas import KnowledgeItem


def _item(name, content):
    return KnowledgeItem(name=name, content=content)


class TestInitialPrompt:
    """Test the analysis prompt."""

    def test_items_numbered_in_given_order(self):
        knowledge = [_item("Item 2", "second"), _item("Item 10", "tenth")]

        assert format_knowledge(knowledge) == "Item 1: second\nItem 2: tenth"

    def test_knowledge_embedded_in_template(self):
        prompt = compile_initial_prompt([_item("Myeloma", "Look for punched-out lesions")])

        assert "EXPERT KNOWLEDGE BASE:\nItem 1: Look for punched-out lesions" in prompt
        assert "radiology report" in prompt

    def test_sorted_store_order_is_used(self, knowledge_store):
        knowledge_store.add("Item 10", "tenth note")
        knowledge_store.add("Item 2", "second note")

        prompt = compile_initial_prompt(knowledge_store.list())

        assert "Item 1: second note\nItem 2: tenth note" in prompt

    def test_empty_knowledge(self):
        assert EMPTY_KNOWLEDGE_NOTE in compile_initial_prompt([])

    def test_deterministic(self):
        knowledge = [_item("a", "one")]
        assert compile_initial_prompt(knowledge) == compile_initial_prompt(knowledge)


class TestRefinementPrompt:
    """Test the refinement prompt."""

    def test_feedback_embedded_verbatim(self):
        feedback = "  The lesion is in the left femur, not the right.  "

        prompt = compile_refinement_prompt(feedback)

        assert feedback in prompt
        assert "authoritative correction" in prompt

    def test_deterministic(self):
        assert compile_refinement_prompt("x") == compile_refinement_prompt("x")
