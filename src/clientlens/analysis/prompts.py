"""Prompt templates for insight extraction and semantic client attribution.

Two prompt shapes are used:
- Insight extraction: one prompt per conversation thread, communications
  grouped by resolved client, expecting a JSON array of insight objects
- Attribution: one prompt per unattributed communication listing every
  candidate client, expecting a single JSON object

All communication text is passed through the LLM sanitizer profile before
it is interpolated.

Usage:
    from clientlens.analysis.prompts import InsightPromptBuilder, ThreadMessage

    builder = InsightPromptBuilder(sanitizer)
    prompt = builder.build(messages)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from clientlens.analysis.validation import INSIGHT_CATEGORIES

if TYPE_CHECKING:
    from clientlens.analysis.sanitizer import ContentSanitizer
    from clientlens.db.store import ClientProfile, Communication

UNKNOWN_CLIENT = "Unknown Client"
UNIDENTIFIED_CLIENT_HEADER = "UNIDENTIFIED CLIENT"
MESSAGE_SEPARATOR = "---"
GROUP_SEPARATOR = "\n\n=== NEW CLIENT ===\n\n"


# ---------------------------------------------------------------------------
# Thread message (communication annotated with its resolved client)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ThreadMessage:
    """A communication plus the client metadata attribution resolved for it.

    Attributes:
        communication: The stored communication
        client_name: Resolved client's name (None if unattributed)
        client_company: Resolved client's company
        current_project: Resolved client's current project label
    """

    communication: Communication
    client_name: str | None = None
    client_company: str | None = None
    current_project: str | None = None

    @classmethod
    def from_client(
        cls,
        communication: Communication,
        client: ClientProfile | None,
    ) -> ThreadMessage:
        if client is None:
            return cls(communication=communication)
        return cls(
            communication=communication,
            client_name=client.name,
            client_company=client.company,
            current_project=client.current_project,
        )


# ---------------------------------------------------------------------------
# Insight extraction prompt
# ---------------------------------------------------------------------------

INSIGHT_PROMPT_TEMPLATE = """You are an AI assistant that analyzes client relationship communications for freelancers and consultants. Your goal is to extract meaningful, actionable insights about client relationships, project status, and business opportunities.

Analyze the following email communications and provide insights that help understand:
- Client satisfaction and relationship health
- Project progress, blockers, and risks
- Business opportunities (upsells, renewals, referrals)
- Important deadlines, decisions, and action items
- Misunderstandings or communication gaps that need clarification

EMAIL COMMUNICATIONS:
{context}

Classify every insight into exactly one of these categories:
1. Risk - Signs of client dissatisfaction, project delays, budget concerns, scope creep, or relationship issues
2. Upsell - Opportunities for additional services, expanded scope, or premium offerings
3. Alignment - Misunderstandings, unclear requirements, or communication gaps that need clarification
4. Note - Important information, deadlines, decisions, or key relationship updates

Do not invent other categories. Insights that fit none of the four should be reported as "Note".

For each insight you identify, provide a JSON object with:
- category: Must be exactly one of: {categories}
- summary: A clear, actionable summary of the insight (10-500 characters)
- evidence: A direct quote from the email that supports this insight (5-1000 characters)
- suggested_action: A specific, practical action the user should take (5-500 characters)
- confidence: A number between 0 and 1 indicating your confidence in this insight

Return your response as a JSON array of insights. Only return insights that are clearly supported by the email content. Aim for 1-5 insights per thread.

Example format:
[
  {{
    "category": "Risk",
    "summary": "Client expressing budget concerns about project scope",
    "evidence": "I'm worried the costs are getting too high for what we initially discussed",
    "suggested_action": "Schedule a call to discuss budget constraints and potential scope adjustments",
    "confidence": 0.85
  }}
]"""


def group_by_client(messages: list[ThreadMessage]) -> dict[str, list[ThreadMessage]]:
    """Group messages by resolved client name, preserving first-seen order.

    Unattributed messages share the "Unknown Client" bucket.
    """
    groups: dict[str, list[ThreadMessage]] = {}
    for message in messages:
        key = message.client_name or UNKNOWN_CLIENT
        groups.setdefault(key, []).append(message)
    return groups


class InsightPromptBuilder:
    """Renders grouped thread context into the insight extraction prompt."""

    def __init__(self, sanitizer: ContentSanitizer):
        self._sanitizer = sanitizer

    def build(self, messages: list[ThreadMessage]) -> str:
        """Build the extraction prompt for one (already capped) thread."""
        return INSIGHT_PROMPT_TEMPLATE.format(
            context=self.build_context(messages),
            categories=", ".join(f'"{c}"' for c in INSIGHT_CATEGORIES),
        )

    def build_context(self, messages: list[ThreadMessage]) -> str:
        groups = group_by_client(messages)
        return GROUP_SEPARATOR.join(
            self._render_group(group_messages) for group_messages in groups.values()
        )

    def _render_group(self, messages: list[ThreadMessage]) -> str:
        first = messages[0]
        if first.client_name:
            header = f"CLIENT: {self._clean(first.client_name)}"
            if first.client_company:
                header += f" ({self._clean(first.client_company)})"
            if first.current_project:
                header += f" - Project: {self._clean(first.current_project)}"
        else:
            header = UNIDENTIFIED_CLIENT_HEADER

        rendered = "\n\n".join(
            self._render_message(index, message.communication)
            for index, message in enumerate(messages, start=1)
        )
        return f"{header}\n{rendered}"

    def _render_message(self, index: int, communication: Communication) -> str:
        sent_at = communication.sent_at.isoformat() if communication.sent_at else "unknown"
        return (
            f"EMAIL {index}:\n"
            f"From: {self._clean(communication.sender_email)}\n"
            f"To: {self._clean(communication.recipient_email)}\n"
            f"Subject: {self._clean(communication.subject)}\n"
            f"Date: {sent_at}\n"
            f"Body: {self._clean(communication.body)}\n"
            f"{MESSAGE_SEPARATOR}"
        )

    def _clean(self, text: str | None) -> str:
        return self._sanitizer.for_llm(text)


# ---------------------------------------------------------------------------
# Attribution prompt
# ---------------------------------------------------------------------------

ATTRIBUTION_PROMPT_TEMPLATE = """You are an AI that helps identify which client an email relates to. Analyze the email content and determine which client it's most likely about.

EMAIL TO ANALYZE:
From: {sender}
To: {recipient}
Subject: {subject}
Body: {body}

AVAILABLE CLIENTS:
{clients}

Analyze the email and determine which client it relates to based on:
- Email addresses and domains
- Names mentioned in the content
- Company names referenced
- Project details discussed
- Context clues in the conversation

Respond with a JSON object:
{{
  "client_id": "client_id_here_or_null",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation of why this client was selected"
}}

Only return high-confidence matches (>0.6). If uncertain, return null for client_id."""


def build_attribution_prompt(
    communication: Communication,
    clients: list[ClientProfile],
    sanitizer: ContentSanitizer,
    body_max_length: int = 1000,
) -> str:
    """Build the semantic attribution prompt for one communication.

    Args:
        communication: Communication to attribute
        clients: Every candidate client of the owner
        sanitizer: Sanitizer for the communication and client text
        body_max_length: Characters of body to include

    Returns:
        Prompt text
    """
    client_lines = []
    for index, client in enumerate(clients, start=1):
        client_lines.append(
            f"{index}. {sanitizer.for_llm(client.name)} "
            f"({sanitizer.for_llm(client.company) or 'Unknown'})\n"
            f"   ID: {client.id}\n"
            f"   Email: {client.email or 'Not provided'}\n"
            f"   Domain: {client.domain or 'Not provided'}\n"
            f"   Current Project: {sanitizer.for_llm(client.current_project) or 'Not specified'}"
        )

    return ATTRIBUTION_PROMPT_TEMPLATE.format(
        sender=sanitizer.for_llm(communication.sender_email),
        recipient=sanitizer.for_llm(communication.recipient_email),
        subject=sanitizer.for_llm(communication.subject),
        body=sanitizer.for_llm(communication.body, max_length=body_max_length),
        clients="\n\n".join(client_lines),
    )
