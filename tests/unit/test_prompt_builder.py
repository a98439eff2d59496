from datetime import UTC, datetime

from coursepilot.features.assistant.prompt_builder import PromptAssembler
from coursepilot.models.domain.chat_domain import (
    ConversationTurn,
    CourseScope,
    RetrievedDocument,
    SearchIntent,
)


def turn(role: str, content: str) -> ConversationTurn:
    return ConversationTurn(conversation_id="c1", role=role, content=content, created_at=datetime.now(UTC))


def test_build_orders_instructions_history_context_question():
    assembler = PromptAssembler(history_turns=4)
    history = [turn("user", f"q{i}") if i % 2 == 0 else turn("assistant", f"a{i}") for i in range(6)]
    documents = [
        RetrievedDocument("PS5", "Due Friday", "assignment", "422", "1"),
        RetrievedDocument("Exam room", "Moved to 1101", "announcement", "422", "2"),
        RetrievedDocument("PS4", "Graded", "assignment", "422", "3"),
    ]
    intent = SearchIntent(category="assignments", scope_filter="CMSC422", intent="find_assignments")

    messages = assembler.build(
        "What is due?", intent, history, documents, CourseScope(id="422", code="CMSC422", name="Machine Learning")
    )

    assert messages[0]["role"] == "system"
    assert "Looking for assignments in CMSC422" in messages[0]["content"]
    assert "Current Course: Machine Learning (CMSC422)" in messages[0]["content"]
    assert "User Intent: find assignments" in messages[0]["content"]

    assert [m["content"] for m in messages[1:5]] == ["q2", "a3", "q4", "a5"]

    context = messages[5]
    assert context["role"] == "system"
    assert context["content"].startswith("Relevant course content:")
    # Grouped by category, in order of first appearance
    assert context["content"].index("[ASSIGNMENT] PS4") < context["content"].index("[ANNOUNCEMENT] Exam room")

    assert messages[-1] == {"role": "user", "content": "What is due?"}
    assert len(messages) == 7


def test_build_drops_empty_messages_and_context():
    assembler = PromptAssembler(history_turns=4)
    history = [turn("user", "   "), turn("assistant", "earlier answer")]

    messages = assembler.build("Hi", SearchIntent(), history, [], None)

    assert [m["role"] for m in messages] == ["system", "assistant", "user"]
    assert "Current Course" not in messages[0]["content"]


def test_build_minimal():
    messages = PromptAssembler().build_minimal("Help me plan my week")

    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[1]["content"] == "Help me plan my week"
