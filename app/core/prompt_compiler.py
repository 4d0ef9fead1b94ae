"""
Prompt templates for radiograph analysis and report refinement.

Both compilers are pure: same input, same prompt text.
"""

from typing import Iterable

from app.models.schemas import KnowledgeItem

EMPTY_KNOWLEDGE_NOTE = "No expert knowledge has been recorded yet."


def format_knowledge(knowledge: Iterable[KnowledgeItem]) -> str:
    """Render knowledge items as numbered ``Item i: <content>`` lines."""
    return "\n".join(
        f"Item {index}: {item.content}"
        for index, item in enumerate(knowledge, start=1)
    )


def compile_initial_prompt(knowledge: Iterable[KnowledgeItem]) -> str:
    """
    Build the prompt for the first, multi-image analysis turn.

    Args:
        knowledge: Items in the knowledge store's sort order

    Returns:
        Prompt text asking for a structured radiology report
    """
    knowledge_text = format_knowledge(knowledge) or EMPTY_KNOWLEDGE_NOTE

    return f"""You are an expert radiologist assistant. You will be shown one or more X-ray images from a single study.

Before analysing the images, carefully review the following EXPERT KNOWLEDGE BASE. It contains key radiological information and corrections from previous reports made by a reviewing doctor. Apply it wherever it is relevant to these images.

EXPERT KNOWLEDGE BASE:
{knowledge_text}

Now analyse all of the provided images together and write a structured radiology report with the following sections:

**Examination:** The body region and projections shown.
**Findings:** A systematic description of bones, joints, soft tissues and any other visible structures. Describe abnormalities precisely (location, size, character).
**Impression:** A concise summary of the most important findings and the likely differential diagnoses.
**Recommendations:** Any further imaging or clinical correlation that would be appropriate.

Use clear, professional medical language. Do not invent clinical history that was not provided."""


def compile_refinement_prompt(feedback: str) -> str:
    """
    Build the prompt for a follow-up turn that revises the last report.

    Args:
        feedback: Reviewing doctor's feedback, embedded verbatim

    Returns:
        Prompt text instructing the model to rewrite its previous report
    """
    return f"""A reviewing doctor has provided the following feedback on your previous report:

DOCTOR'S FEEDBACK:
{feedback}

Treat this feedback as an authoritative correction. Revise your previous report so that it fully incorporates the feedback, keeping the same structure (Examination, Findings, Impression, Recommendations). Return only the complete revised report."""
