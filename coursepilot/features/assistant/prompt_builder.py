"""
Chat prompt assembly for the course assistant.
"""

from collections.abc import Sequence

from coursepilot.config import settings
from coursepilot.features.assistant.query_analyzer import summarize
from coursepilot.models.domain.chat_domain import (
    ConversationTurn,
    CourseScope,
    RetrievedDocument,
    SearchIntent,
)

ASSISTANT_INSTRUCTIONS = """You are CoursePilot, an intelligent AI assistant for Canvas LMS. You help students with their coursework, assignments, and learning materials.

Query Analysis: {summary}

Context Guidelines:
- Be helpful, encouraging, and educational
- Reference specific Canvas content when relevant
- Provide actionable advice and study tips
- Keep responses focused and concise
- If you don't have enough context, ask clarifying questions
- Maintain conversation continuity using chat history"""

MINIMAL_INSTRUCTIONS = (
    "You are CoursePilot, a helpful AI assistant for students. "
    "Provide a helpful response even though context is limited."
)


class PromptAssembler:
    def __init__(self, history_turns: int = settings.CHAT_HISTORY_TURNS):
        self.history_turns = history_turns

    def build(
        self,
        question: str,
        intent: SearchIntent,
        history: Sequence[ConversationTurn],
        documents: Sequence[RetrievedDocument],
        scope: CourseScope | None = None,
    ) -> list[dict[str, str]]:
        """
        Messages for the answer model, in order: instructions, recent
        history, retrieved context, the question.
        """
        system_prompt = ASSISTANT_INSTRUCTIONS.format(summary=summarize(intent))
        if scope is not None:
            system_prompt += f"\n\nCurrent Course: {scope.name or scope.id} ({scope.code or 'no code'})"
        system_prompt += f"\n\nUser Intent: {intent.intent.replace('_', ' ')}"

        messages = [{"role": "system", "content": system_prompt}]

        recent = list(history)[-self.history_turns :] if self.history_turns > 0 else []
        for turn in recent:
            if turn.role in ("user", "assistant"):
                messages.append({"role": turn.role, "content": turn.content})

        context = self._context_block(documents)
        if context:
            messages.append({"role": "system", "content": context})

        messages.append({"role": "user", "content": question})
        return [message for message in messages if message["content"] and message["content"].strip()]

    def build_minimal(self, question: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": MINIMAL_INSTRUCTIONS},
            {"role": "user", "content": question},
        ]

    @staticmethod
    def _context_block(documents: Sequence[RetrievedDocument]) -> str:
        # Grouped by category, groups in order of first appearance
        groups: dict[str, list[str]] = {}
        for doc in documents:
            if not (doc.title or doc.body):
                continue
            label = (doc.category or "content").upper()
            groups.setdefault(label, []).append(f"[{label}] {doc.title}: {doc.body}")

        if not groups:
            return ""
        sections = ["\n\n".join(entries) for entries in groups.values()]
        return "Relevant course content:\n\n" + "\n\n".join(sections)


prompt_assembler = PromptAssembler()
