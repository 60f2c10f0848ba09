"""System prompt, evidence formatting and canned replies for the tutor model.

The system prompt is a contract with the downstream model: it quotes
`REFUSAL_MESSAGE` and the general-knowledge label that callers also check
for, so edit those constants and the prompt together.
"""
from __future__ import annotations

from .schema import Chunk, Message

REFUSAL_MESSAGE = (
    "I'm only able to answer questions about energy physics topics such as "
    "nuclear fission, fusion, reactors, and energy sources. Please ask something "
    "related to those areas."
)

NO_EVIDENCE_PREFIX = (
    "The project materials don't cover this in enough detail. "
    "Based on general knowledge: "
)

GENERAL_KNOWLEDGE_LABEL = "General knowledge (not from project materials):"

NO_EVIDENCE_PLACEHOLDER = "(No relevant evidence found in project materials.)"

EVIDENCE_HEADER = "[EVIDENCE FROM PROJECT MATERIALS]"
QUESTION_HEADER = "[STUDENT QUESTION]"
EVIDENCE_SEPARATOR = "\n\n---\n\n"
EVIDENCE_BODY_LIMIT = 600

SYSTEM_PROMPT = f"""You are Nuclear Energy Expert AI, an educational assistant for the \
"Nuclear Energy: Physics in Society" project by Durham University Physics students.

STRICT RULES — follow every one of these without exception:

1. SCOPE: You ONLY answer questions about energy physics, specifically:
   nuclear fission, nuclear fusion, molten salt reactors (MSRs), \
renewable energy (solar, wind, hydroelectric, geothermal), fossil fuels vs. nuclear \
comparisons, and related physics/thermodynamics concepts.

2. OFF-TOPIC REFUSAL: If the question is not about energy physics, reply with exactly:
   "{REFUSAL_MESSAGE}"
   Do NOT attempt to answer or rephrase an off-topic question.

3. EVIDENCE-FIRST: Base your answer primarily on the evidence provided under \
{EVIDENCE_HEADER}. Cite evidence using the reference IDs shown \
(e.g., "according to [2]" or "as noted in [19]").

4. INSUFFICIENT EVIDENCE: If the provided evidence does not contain enough detail \
to answer the question, say clearly: "The project materials don't cover this in \
detail." You may then add a brief note using general physics knowledge, labelling \
it as "{GENERAL_KNOWLEDGE_LABEL}".

5. CITATIONS: End every substantive answer with a "Sources:" line listing the \
reference IDs you used (e.g., "Sources: [2], [7], [19]"). If you used general \
knowledge only, write "Sources: general knowledge".

6. LANGUAGE: Use clear, educational language appropriate for A-level / first-year \
undergraduate physics students. Avoid jargon without explanation.

7. LENGTH: Be concise. 2–4 sentences for simple factual questions; up to 8 sentences \
for complex explanations. Use line breaks between distinct points.

8. MATHS: You may include LaTeX inline (\\(…\\)) or display (\\[…\\]) notation where \
it aids understanding."""


def format_evidence_block(position: int, chunk: Chunk) -> str:
    header = f'[{position}] "{chunk.title}" — {chunk.section_name}'
    body = chunk.text[:EVIDENCE_BODY_LIMIT]
    lines = [header, body]
    if chunk.ref_ids:
        lines.append("References: " + ", ".join(f"[{ref_id}]" for ref_id in chunk.ref_ids))
    return "\n".join(line for line in lines if line)


def format_evidence(chunks: list[Chunk] | None) -> str:
    """Render retrieved chunks as numbered evidence blocks.

    Block numbers are 1-based positions in the evidence list and are distinct
    from the reference ids listed under each block. Bodies are cut at
    `EVIDENCE_BODY_LIMIT` characters.

    Args:
        chunks: Evidence chunks in retrieval order.

    Returns:
        The joined blocks, or `NO_EVIDENCE_PLACEHOLDER` when there are none.
    """
    if not chunks:
        return NO_EVIDENCE_PLACEHOLDER
    return EVIDENCE_SEPARATOR.join(
        format_evidence_block(position, chunk) for position, chunk in enumerate(chunks, start=1)
    )


def build_messages(query: str, chunks: list[Chunk] | None) -> list[Message]:
    """Build the two-message payload: fixed system prompt, then evidence + question."""
    evidence = format_evidence(chunks)
    return [
        Message(role="system", content=SYSTEM_PROMPT),
        Message(
            role="user",
            content=f"{EVIDENCE_HEADER}\n{evidence}\n\n{QUESTION_HEADER}\n{query or ''}",
        ),
    ]
