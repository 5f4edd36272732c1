"""Layered resolver that decides which client a communication concerns.

Tiers are tried in strict precedence and the first hit wins:

1. Direct address match: a client's email equals the sender or recipient
   (case-insensitive), confidence 0.95
2. Domain match: the sender's or recipient's domain equals a client's
   explicit domain (0.85) or the domain of the client's email (0.80)
3. Semantic match: the model is shown the communication and every
   candidate client; accepted only if it names a real candidate with
   confidence above 0.6, then clamped into [0.6, 0.85]

"No client" is a normal result, never an exception. Any failure in the
semantic tier (network, unparsable output, unknown id) degrades to no
match with an info log.

Usage:
    from clientlens.analysis.attribution import ClientAttributionResolver

    resolver = ClientAttributionResolver(llm_client, config)
    result = await resolver.resolve(communication, clients)
    if result.client_id:
        ...
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from clientlens.analysis.prompts import build_attribution_prompt
from clientlens.analysis.sanitizer import ContentSanitizer
from clientlens.core.logging import get_logger
from clientlens.llm.client import TASK_ATTRIBUTION

if TYPE_CHECKING:
    from clientlens.config_schema import AppConfig
    from clientlens.db.store import ClientProfile, Communication
    from clientlens.llm.client import LLMClient

logger = get_logger(__name__)

DIRECT_MATCH_CONFIDENCE = 0.95
DOMAIN_MATCH_CONFIDENCE = 0.85
CLIENT_EMAIL_DOMAIN_CONFIDENCE = 0.80
SEMANTIC_MIN_CONFIDENCE = 0.6
SEMANTIC_MAX_CONFIDENCE = 0.85

AttributionMethod = Literal["direct", "domain", "client_email_domain", "semantic", "none"]


@dataclass(frozen=True, slots=True)
class AttributionResult:
    """Outcome of attributing one communication.

    Attributes:
        client_id: Matched client, or None
        confidence: 0.0-1.0
        reasoning: Short explanation of the match
        method: Which tier produced the result
    """

    client_id: str | None
    confidence: float
    reasoning: str
    method: AttributionMethod

    @property
    def matched(self) -> bool:
        return self.client_id is not None


NO_MATCH = AttributionResult(client_id=None, confidence=0.0, reasoning="no match", method="none")


def extract_domain(address: str | None) -> str:
    """Lowercase domain of an email address, or '' if there is none."""
    if not address or "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().lower()


def _participants(communication: Communication) -> list[str]:
    return [
        address.strip().lower()
        for address in (communication.sender_email, communication.recipient_email)
        if address and address.strip()
    ]


def find_direct_match(
    communication: Communication,
    clients: list[ClientProfile],
) -> AttributionResult | None:
    """Tier 1: a client's canonical address is one of the participants."""
    participants = set(_participants(communication))
    if not participants:
        return None

    for client in clients:
        if client.email and client.email.strip().lower() in participants:
            return AttributionResult(
                client_id=client.id,
                confidence=DIRECT_MATCH_CONFIDENCE,
                reasoning=f"Direct email match: {client.email.strip().lower()}",
                method="direct",
            )
    return None


def find_domain_match(
    communication: Communication,
    clients: list[ClientProfile],
) -> AttributionResult | None:
    """Tier 2: a participant's domain matches a client's domain.

    Clients are scanned in list order. Within one client the explicit
    domain is tested before the domain of its email.
    """
    domains = {d for d in (extract_domain(a) for a in _participants(communication)) if d}
    if not domains:
        return None

    for client in clients:
        client_domain = (client.domain or "").strip().lower()
        if client_domain and client_domain in domains:
            return AttributionResult(
                client_id=client.id,
                confidence=DOMAIN_MATCH_CONFIDENCE,
                reasoning=f"Domain match: {client_domain}",
                method="domain",
            )

        email_domain = extract_domain(client.email)
        if email_domain and email_domain in domains:
            return AttributionResult(
                client_id=client.id,
                confidence=CLIENT_EMAIL_DOMAIN_CONFIDENCE,
                reasoning=f"Client email domain match: {email_domain}",
                method="client_email_domain",
            )
    return None


def parse_attribution_response(text: str, candidate_ids: set[str]) -> AttributionResult | None:
    """Parse the model's attribution answer.

    The JSON object is taken from the first '{' to the last '}'. The answer
    is accepted only when confidence exceeds 0.6 and client_id is one of
    the candidates.

    Args:
        text: Raw model output
        candidate_ids: Ids of the clients that were offered

    Returns:
        AttributionResult with method 'semantic', or None if rejected
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        logger.info("attribution_semantic_rejected", reason="no JSON object", preview=text[:200])
        return None

    try:
        parsed: Any = json.loads(text[start : end + 1])
    except json.JSONDecodeError as e:
        logger.info("attribution_semantic_rejected", reason=f"invalid JSON: {e}")
        return None

    if not isinstance(parsed, dict):
        logger.info("attribution_semantic_rejected", reason="not an object")
        return None

    client_id = parsed.get("client_id")
    if client_id is None or str(client_id) not in candidate_ids:
        logger.info("attribution_semantic_rejected", reason="unknown client id", client_id=client_id)
        return None

    confidence = parsed.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        logger.info("attribution_semantic_rejected", reason="non-numeric confidence")
        return None
    if not math.isfinite(confidence):
        logger.info("attribution_semantic_rejected", reason="non-finite confidence")
        return None

    if confidence <= SEMANTIC_MIN_CONFIDENCE:
        logger.info("attribution_semantic_rejected", reason="low confidence", confidence=confidence)
        return None

    reasoning = parsed.get("reasoning")
    return AttributionResult(
        client_id=str(client_id),
        confidence=min(max(float(confidence), SEMANTIC_MIN_CONFIDENCE), SEMANTIC_MAX_CONFIDENCE),
        reasoning=str(reasoning) if reasoning else "Semantic match",
        method="semantic",
    )


class ClientAttributionResolver:
    """Assigns communications to clients using the three-tier precedence.

    Attributes:
        _llm: LLM client for the semantic tier
        _semantic_enabled: Whether tier 3 runs at all
        _body_max_length: Characters of body shown to the model
        _sanitizer: LLM-profile sanitizer for prompt content
    """

    def __init__(self, llm_client: LLMClient | None, config: AppConfig):
        self._llm = llm_client
        self._semantic_enabled = config.attribution.semantic_enabled and llm_client is not None
        self._body_max_length = config.attribution.body_max_length
        self._model = config.models.attribution
        self._max_tokens = config.llm.attribution_max_tokens
        self._sanitizer = ContentSanitizer.from_config(config.sanitizer)

    async def resolve(
        self,
        communication: Communication,
        clients: list[ClientProfile],
    ) -> AttributionResult:
        """Attribute one communication to at most one client.

        Args:
            communication: The communication to attribute
            clients: All clients of the communication's owner

        Returns:
            AttributionResult (NO_MATCH if no tier matched)
        """
        if not clients:
            return NO_MATCH

        result = find_direct_match(communication, clients) or find_domain_match(
            communication, clients
        )
        if result is not None:
            return result

        if not self._semantic_enabled:
            return NO_MATCH

        semantic = await self._semantic_match(communication, clients)
        return semantic or NO_MATCH

    async def _semantic_match(
        self,
        communication: Communication,
        clients: list[ClientProfile],
    ) -> AttributionResult | None:
        prompt = build_attribution_prompt(
            communication,
            clients,
            self._sanitizer,
            body_max_length=self._body_max_length,
        )
        try:
            text = await self._llm.complete(
                prompt,
                task_type=TASK_ATTRIBUTION,
                model=self._model,
                max_tokens=self._max_tokens,
                communication_id=communication.id,
            )
            return parse_attribution_response(text, {client.id for client in clients})
        except Exception as e:
            logger.info(
                "attribution_semantic_failed",
                communication_id=communication.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
