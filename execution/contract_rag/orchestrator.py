"""
Query Orchestrator for Contract RAG

Per-query pipeline:

    detect language
    -> retrieve (document scope > folder scope > global)
    -> [no results: localized empty-result message, nothing persisted]
    -> format context with citation ids
    -> classify query type, contract type and risk
    -> score confidence
    -> select prompt variant (confidence, complexity, token budget)
    -> assemble messages with bounded conversation history
    -> complete
    -> persist turn
    -> answer + metadata

Any exception inside the pipeline degrades to a keyword search and an
apologetic answer citing the match count; the caller never sees the raw
exception.
"""

import asyncio
import logging
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional

from .classifiers import (
    ClassifierConfig,
    ContractTypeClassifier,
    QueryTypeClassifier,
    RiskScorer,
    assess_complexity,
)
from .completion import CompletionService
from .confidence import ConfidenceScore, ConfidenceScorer
from .conversations import ConversationStore, ConversationTurn, generate_conversation_id
from .errors import PersistentServiceError
from .language_config import detect_language
from .language_patterns import LABELS, FOLLOW_UP_QUESTIONS
from .metrics import get_metrics_collector
from .prompts import PersonaRegistry, PromptSelector, format_context
from .retriever import Retriever, SearchMode

logger = logging.getLogger(__name__)


@dataclass
class QueryOptions:
    """Every option query() recognizes, with its default."""
    search_mode: str = SearchMode.HYBRID.value
    max_results: int = 5
    use_conversation_context: bool = True
    max_history_messages: int = 8   # last 4 exchanges
    document_id: Optional[str] = None
    folder_id: Optional[str] = None
    persona_id: Optional[str] = None
    max_follow_ups: int = 3


@dataclass
class QueryResponse:
    answer: str
    conversation_id: str
    language: str
    scope: str
    sources: list[dict] = field(default_factory=list)
    citations: list[dict] = field(default_factory=list)
    query_type: str = "general"
    contract_type: str = "general"
    risk_level: str = "LOW"
    confidence: Optional[ConfidenceScore] = None
    prompt_variant: Optional[str] = None
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    follow_up_questions: list[str] = field(default_factory=list)
    fallback: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "conversation_id": self.conversation_id,
            "language": self.language,
            "scope": self.scope,
            "sources": self.sources,
            "citations": self.citations,
            "query_type": self.query_type,
            "contract_type": self.contract_type,
            "risk_level": self.risk_level,
            "confidence": self.confidence.to_dict() if self.confidence else None,
            "prompt_variant": self.prompt_variant,
            "estimated_tokens": self.estimated_tokens,
            "estimated_cost": round(self.estimated_cost, 6),
            "follow_up_questions": self.follow_up_questions,
            "fallback": self.fallback,
            "error": self.error,
        }


def _scope_name(options: QueryOptions) -> str:
    if options.document_id:
        return "document"
    if options.folder_id:
        return "folder"
    return "global"


def _sources(hits: list) -> list[dict]:
    return [
        {
            "document_id": hit.document_id,
            "document_name": hit.document_name,
            "similarity": round(hit.similarity, 4),
            "matches": hit.match_count,
            "chunks": len(hit.chunks),
        }
        for hit in hits
    ]


class QueryOrchestrator:
    """
    Composes retrieval, classification, confidence scoring, prompt
    selection and completion. Collaborators are injected; classifiers and
    scorers default to fresh instances.
    """

    def __init__(
        self,
        retriever: Retriever,
        completion_service: CompletionService,
        conversation_store: ConversationStore,
        personas: Optional[PersonaRegistry] = None,
        classifier_config: Optional[ClassifierConfig] = None,
        confidence_scorer: Optional[ConfidenceScorer] = None,
        prompt_selector: Optional[PromptSelector] = None,
        metrics=None,
    ):
        self.retriever = retriever
        self.completion = completion_service
        self.conversations = conversation_store
        self.personas = personas or PersonaRegistry()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.query_classifier = QueryTypeClassifier()
        self.contract_classifier = ContractTypeClassifier(self.classifier_config)
        self.risk_scorer = RiskScorer(self.classifier_config)
        self.confidence_scorer = confidence_scorer or ConfidenceScorer()
        self.prompt_selector = prompt_selector or PromptSelector()
        self.metrics = metrics or get_metrics_collector()

    async def query(
        self,
        query_text: str,
        conversation_id: Optional[str] = None,
        options: Optional[QueryOptions] = None,
    ) -> QueryResponse:
        """
        Answer a question from the indexed documents.

        Returns:
            QueryResponse; on pipeline failure a fallback response with
            ``fallback=True`` and the error message
        """
        options = options or QueryOptions()
        conversation_id = conversation_id or generate_conversation_id()
        language = detect_language(query_text)

        with self.metrics.track_query(query_text) as tracker:
            try:
                response = await self._run(query_text, conversation_id, options, language)
            except Exception as e:
                logger.error(f"Query pipeline failed, using keyword fallback: {e}")
                response = await self._fallback(query_text, conversation_id, options, language, e)

            tracker.set_results(
                count=len(response.sources),
                query_type=response.query_type,
                prompt_variant=response.prompt_variant,
                estimated_tokens=response.estimated_tokens,
                estimated_cost=response.estimated_cost,
                fallback_used=response.fallback,
            )

        return response

    async def _run(
        self,
        query_text: str,
        conversation_id: str,
        options: QueryOptions,
        language: str,
    ) -> QueryResponse:
        scope = _scope_name(options)
        hits = await self.retriever.search(
            query_text,
            mode=options.search_mode,
            limit=options.max_results,
            document_id=options.document_id,
            folder_id=options.folder_id,
        )
        logger.info(f"Query ({language}, {scope} scope): {len(hits)} documents retrieved")

        if not hits:
            return QueryResponse(
                answer=LABELS.get(language, LABELS["en"])["no_results"],
                conversation_id=conversation_id,
                language=language,
                scope=scope,
                confidence=self.confidence_scorer.no_results(),
            )

        context, citations = format_context(hits, language)
        evidence = "\n".join(chunk.text for hit in hits for chunk in hit.chunks)

        query_type = self.query_classifier.classify(query_text, language)
        contract_type = self.contract_classifier.classify(evidence)
        risk = self.risk_scorer.assess(evidence)
        confidence = self.confidence_scorer.score(hits, query_text, query_type)
        complexity = assess_complexity(query_text, language, self.classifier_config)
        logger.info(
            f"Classified query: type={query_type}, contract={contract_type}, "
            f"risk={risk.level}, confidence={confidence.level}, complexity={complexity}"
        )

        persona = self.personas.get(options.persona_id)
        plan = self.prompt_selector.select(
            query=query_text,
            context=context,
            query_type=query_type,
            confidence_level=confidence.level,
            complexity=complexity,
            contract_type=contract_type,
            risk_level=risk.level,
            system_prompt=persona.system_prompt,
        )
        logger.info(
            f"Prompt variant {plan.variant} ({plan.reason}): ~{plan.estimated_tokens} tokens, "
            f"~${plan.estimated_cost:.4f}"
        )

        messages = [{"role": "system", "content": persona.system_prompt}]
        if options.use_conversation_context:
            try:
                history = await asyncio.to_thread(
                    self.conversations.get_history, conversation_id, options.max_history_messages,
                )
            except (OSError, ValueError) as e:
                logger.warning(f"Could not load history for {conversation_id}, answering without it: {e}")
                history = []
            messages.extend(history)
        messages.append({"role": "user", "content": plan.prompt})

        result = await self.completion.complete(messages)

        turn = ConversationTurn(
            timestamp=datetime.now(timezone.utc).isoformat(),
            query=query_text,
            answer=result.text,
            source_count=len(hits),
            query_type=query_type,
            confidence=confidence.to_dict(),
        )
        try:
            await asyncio.to_thread(self.conversations.append_turn, conversation_id, turn, persona.id)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not save conversation turn for {conversation_id}: {e}")

        return QueryResponse(
            answer=result.text,
            conversation_id=conversation_id,
            language=language,
            scope=scope,
            sources=_sources(hits),
            citations=[c.to_dict() for c in citations],
            query_type=query_type,
            contract_type=contract_type,
            risk_level=risk.level,
            confidence=confidence,
            prompt_variant=plan.variant,
            estimated_tokens=plan.estimated_tokens,
            estimated_cost=plan.estimated_cost,
            follow_up_questions=self._follow_up_questions(
                contract_type, query_type, risk.level, options.max_follow_ups,
            ),
        )

    async def _fallback(
        self,
        query_text: str,
        conversation_id: str,
        options: QueryOptions,
        language: str,
        error: Exception,
    ) -> QueryResponse:
        try:
            hits = await self.retriever.search(
                query_text,
                mode=SearchMode.KEYWORD.value,
                limit=options.max_results,
                document_id=options.document_id,
                folder_id=options.folder_id,
            )
        except Exception as fallback_error:
            logger.error(f"Keyword fallback also failed: {fallback_error}")
            hits = []

        labels = LABELS.get(language, LABELS["en"])
        credentials = isinstance(error, PersistentServiceError) or "api key" in str(error).lower()
        hint = labels["fallback_hint_credentials"] if credentials else labels["fallback_hint_default"]

        return QueryResponse(
            answer=labels["fallback"].format(count=len(hits), hint=hint),
            conversation_id=conversation_id,
            language=language,
            scope=_scope_name(options),
            sources=_sources(hits),
            fallback=True,
            error=str(error),
        )

    @staticmethod
    def _follow_up_questions(
        contract_type: str,
        query_type: str,
        risk_level: str,
        limit: int,
    ) -> list[str]:
        candidates = []
        candidates.extend(FOLLOW_UP_QUESTIONS["contract_type"].get(contract_type, []))
        candidates.extend(FOLLOW_UP_QUESTIONS["risk"].get(risk_level, []))
        candidates.extend(FOLLOW_UP_QUESTIONS["query_type"].get(query_type, []))
        return list(dict.fromkeys(candidates))[:limit]

    # -------------------------------------------------------------------------
    # Conversation management
    # -------------------------------------------------------------------------

    async def list_conversations(self) -> list[dict]:
        return await asyncio.to_thread(self.conversations.list_conversations)

    async def get_conversation(self, conversation_id: str):
        return await asyncio.to_thread(self.conversations.get_conversation, conversation_id)

    async def delete_conversation(self, conversation_id: str) -> bool:
        return await asyncio.to_thread(self.conversations.delete_conversation, conversation_id)

    async def clear_conversations(self) -> None:
        await asyncio.to_thread(self.conversations.clear_conversations)
