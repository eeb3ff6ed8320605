"""Memory injector — picks relevant memories and renders them into a system prompt."""

import logging
import re
from typing import Dict, List, Optional, Tuple

from agencyos.schemas.schemas import Memory, MemoryInjection, MemorySearchRequest, RecallDetection
from agencyos.services.memory_service import MemoryService

logger = logging.getLogger("agencyos.memory")

RECALL_PATTERNS: List[Tuple[re.Pattern, float]] = [
    (re.compile(r"do you remember", re.I), 0.95),
    (re.compile(r"we (discussed|talked about|decided)", re.I), 0.9),
    (re.compile(r"you (told|said|mentioned)", re.I), 0.85),
    (re.compile(r"remind me (of|about)", re.I), 0.9),
    (re.compile(r"last (time|session|conversation)", re.I), 0.8),
    (re.compile(r"what did (i|we|you) (say|discuss|decide)", re.I), 0.9),
    (re.compile(r"previously", re.I), 0.7),
    (re.compile(r"before,? you", re.I), 0.75),
    (re.compile(r"our earlier (conversation|discussion)", re.I), 0.85),
    (re.compile(r"you mentioned", re.I), 0.85),
]

TIME_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"yesterday", re.I), "yesterday"),
    (re.compile(r"last week", re.I), "last week"),
    (re.compile(r"last month", re.I), "last month"),
    (re.compile(r"earlier today", re.I), "earlier today"),
    (re.compile(r"a few days ago", re.I), "a few days ago"),
    (re.compile(r"recently", re.I), "recently"),
]

# Phrases stripped from a recall query to leave its topic.
_TOPIC_NOISE = [
    re.compile(r"do you remember", re.I),
    re.compile(r"we (discussed|talked about|decided)", re.I),
    re.compile(r"you (told|said|mentioned)", re.I),
    re.compile(r"remind me (of|about)", re.I),
    re.compile(r"last (time|session|conversation)", re.I),
    re.compile(r"what did (i|we|you) (say|discuss|decide)", re.I),
    re.compile(r"\?"),
]
_LEADING_FILLER = re.compile(r"^(the|a|an|about|regarding)\s+", re.I)
_TRAILING_FILLER = re.compile(r"\s+(earlier|before|previously)$", re.I)

IMPORTANCE_WEIGHTS = {"high": 0.3, "medium": 0.1, "low": 0.0}

TYPE_LABELS = {
    "conversation": "Previous conversation",
    "decision": "Decision made",
    "preference": "User preference",
    "project": "Ongoing project",
    "insight": "Learned insight",
    "task": "Task/Action item",
}

CHARS_PER_TOKEN = 4
PER_MEMORY_OVERHEAD = 30

RECALL_INSTRUCTION = (
    "The user is asking about a previous conversation. "
    "Reference the memory context above to answer their question."
)


def jaccard_similarity(a: str, b: str) -> float:
    """Word-level Jaccard similarity."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def extract_topic(query: str) -> Optional[str]:
    topic = query
    for pattern in _TOPIC_NOISE:
        topic = pattern.sub("", topic)
    topic = _LEADING_FILLER.sub("", topic.strip())
    topic = _TRAILING_FILLER.sub("", topic).strip()
    return topic if len(topic) > 2 else None


def build_search_query(query: str, topic: Optional[str]) -> str:
    if topic:
        return topic
    cleaned = re.sub(r"do you remember", "", query, flags=re.I)
    return re.sub(r"remind me", "", cleaned, flags=re.I).strip()


class MemoryInjector:
    """Selects memories for a prompt: relevance, de-duplication, ranking, token budget."""

    def __init__(
        self,
        memory_service: Optional[MemoryService],
        max_memories: int = 5,
        min_relevance_score: float = 0.5,
        max_token_budget: int = 500,
        deduplication_threshold: float = 0.85,
    ):
        self.memory_service = memory_service
        self.max_memories = max_memories
        self.min_relevance_score = min_relevance_score
        self.max_token_budget = max_token_budget
        self.deduplication_threshold = deduplication_threshold

    def configure(
        self,
        max_memories: Optional[int] = None,
        min_relevance_score: Optional[float] = None,
        max_token_budget: Optional[int] = None,
        deduplication_threshold: Optional[float] = None,
    ) -> None:
        if max_memories is not None:
            self.max_memories = max_memories
        if min_relevance_score is not None:
            self.min_relevance_score = min_relevance_score
        if max_token_budget is not None:
            self.max_token_budget = max_token_budget
        if deduplication_threshold is not None:
            self.deduplication_threshold = deduplication_threshold

    # ---- Recall detection ----

    def detect_recall(self, query: str) -> RecallDetection:
        confidence = 0.0
        is_recall = False
        for pattern, weight in RECALL_PATTERNS:
            if pattern.search(query):
                is_recall = True
                confidence = max(confidence, weight)

        time_reference = next(
            (value for pattern, value in TIME_PATTERNS if pattern.search(query)), None
        )
        topic = extract_topic(query)

        return RecallDetection(
            is_recall_query=is_recall,
            confidence=confidence,
            extracted_topic=topic,
            time_reference=time_reference,
            suggested_search_query=build_search_query(query, topic),
        )

    # ---- Injection ----

    def inject_memories(
        self, query: str, agency_id: str, user_id: str, client_id: Optional[str] = None
    ) -> MemoryInjection:
        if self.memory_service is None:
            return MemoryInjection(relevance_explanation="Memory service not available")

        try:
            result = self.memory_service.search_memories(MemorySearchRequest(
                query=query, agency_id=agency_id, user_id=user_id,
                limit=self.max_memories * 2, min_score=self.min_relevance_score,
            ), strict=True)
        except Exception as e:
            logger.warning(f"Memory injection unavailable: {e}")
            return MemoryInjection(relevance_explanation="Memory service not available")

        memories = list(result.memories)
        if client_id:
            try:
                client_result = self.memory_service.search_memories(MemorySearchRequest(
                    query=query, agency_id=agency_id, user_id=user_id, client_id=client_id,
                    limit=self.max_memories, min_score=self.min_relevance_score,
                ))
                # Client memories rank ahead of user-level ones.
                memories = list(client_result.memories) + memories
            except Exception as e:
                logger.warning(f"Client memory search failed for {client_id}: {e}")

        if not memories:
            return MemoryInjection(relevance_explanation="No relevant memories found")

        memories = self.apply_token_budget(self.rank(self.deduplicate(memories)))
        return MemoryInjection(
            context_block=self.build_context_block(memories),
            memories=memories,
            relevance_explanation=self.explain(memories),
        )

    def deduplicate(self, memories: List[Memory]) -> List[Memory]:
        kept: List[Memory] = []
        for memory in memories:
            if not any(
                jaccard_similarity(existing.content, memory.content) >= self.deduplication_threshold
                for existing in kept
            ):
                kept.append(memory)
        return kept

    @staticmethod
    def rank(memories: List[Memory]) -> List[Memory]:
        """Sort by relevance score plus an importance bonus, highest first."""
        def weight(m: Memory) -> float:
            return (m.score or 0) + IMPORTANCE_WEIGHTS.get(m.metadata.importance or "medium", 0)

        return sorted(memories, key=weight, reverse=True)

    def apply_token_budget(self, memories: List[Memory]) -> List[Memory]:
        max_chars = self.max_token_budget * CHARS_PER_TOKEN
        total = 0
        budgeted: List[Memory] = []
        for memory in memories:
            size = len(memory.content) + len(memory.metadata.topic or "") + PER_MEMORY_OVERHEAD
            # The first memory is always kept, even when it alone exceeds the budget.
            if budgeted and total + size > max_chars:
                break
            total += size
            budgeted.append(memory)
            if len(budgeted) >= self.max_memories:
                break
        return budgeted

    @staticmethod
    def build_context_block(memories: List[Memory]) -> str:
        if not memories:
            return ""
        lines = [
            "<user_memory_context>",
            "The following is relevant context from previous conversations:",
            "",
        ]
        for i, memory in enumerate(memories, start=1):
            label = TYPE_LABELS.get(memory.metadata.type, "Memory")
            lines.append(f"[{i}] {label}: {memory.content}")
            if memory.metadata.topic:
                lines.append(f"    Topic: {memory.metadata.topic}")
        lines.append("")
        lines.append("Use this context to provide more personalized and relevant responses.")
        lines.append("</user_memory_context>")
        return "\n".join(lines)

    @staticmethod
    def explain(memories: List[Memory]) -> str:
        types = list(dict.fromkeys(m.metadata.type for m in memories))
        average = sum(m.score or 0 for m in memories) / len(memories)
        return (
            f"Found {len(memories)} relevant memories ({', '.join(types)}). "
            f"Average relevance: {average * 100:.0f}%"
        )

    # ---- Prompt assembly ----

    def process_with_memory(
        self,
        query: str,
        agency_id: str,
        user_id: str,
        base_system_prompt: str,
        client_id: Optional[str] = None,
    ) -> Tuple[str, List[Memory]]:
        """Return the system prompt with memory context appended, plus the memories used."""
        recall = self.detect_recall(query)
        injection = self.inject_memories(
            recall.suggested_search_query if recall.is_recall_query else query,
            agency_id,
            user_id,
            client_id,
        )

        prompt = base_system_prompt
        if injection.context_block:
            prompt = f"{base_system_prompt}\n\n{injection.context_block}"
        if recall.is_recall_query and injection.memories:
            prompt += f"\n\n{RECALL_INSTRUCTION}"
        return prompt, injection.memories

    @staticmethod
    def should_store_memory(user_message: str, assistant_response: str) -> Dict[str, object]:
        """Decide whether an exchange is worth remembering, and as what."""
        user = user_message.lower()
        response = assistant_response.lower()

        if "decide" in user or "let's go with" in user or "you decided" in response:
            return {"should": True, "type": "decision", "importance": "high"}
        if "i prefer" in user or "i like" in user or "i want" in user:
            return {"should": True, "type": "preference", "importance": "high"}
        if "remind me" in user or "todo" in user or "action item" in user:
            return {"should": True, "type": "task", "importance": "medium"}
        if len(user_message) > 100 and len(assistant_response) > 200:
            return {"should": True, "type": "conversation", "importance": "low"}
        return {"should": False, "type": "", "importance": ""}
