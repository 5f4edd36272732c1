"""Heuristic detection of automated/system-generated messages.

Calendar invites, notification mailers, newsletters and out-of-office replies
carry no relationship signal, so they are excluded from both attribution and
insight extraction.

A message is automated if ANY of these hold:
- the sender address matches a known automated-sender pattern
- the subject matches a known automated-subject pattern
- the body contains an automated-disclosure phrase

Extra sender patterns from config use fnmatch (glob-style wildcards like
*@mailer.example.com), so user-supplied patterns carry no ReDoS risk.

Usage:
    from clientlens.analysis.automated import is_automated_message

    if is_automated_message(sender, subject, body):
        ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Literal

from clientlens.core.logging import get_logger

logger = get_logger(__name__)

AUTOMATED_SENDER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"no-?reply", re.IGNORECASE),
    re.compile(r"notifications?@", re.IGNORECASE),
    re.compile(r"alerts?@", re.IGNORECASE),
    re.compile(r"do-?not-?reply", re.IGNORECASE),
    re.compile(r"automated?@", re.IGNORECASE),
    re.compile(r"system@", re.IGNORECASE),
    re.compile(r"admin@", re.IGNORECASE),
    re.compile(r"support@.*\.(atlassian|jira|confluence|slack|github|gitlab)", re.IGNORECASE),
    re.compile(r"@(.*\.)?(calendar|cal)\.google\.com", re.IGNORECASE),
    re.compile(r"@calendly\.", re.IGNORECASE),
    re.compile(r"@(.*\.)?zoom\.us", re.IGNORECASE),
    re.compile(r"calendar-notification", re.IGNORECASE),
    re.compile(r"meeting-reminder", re.IGNORECASE),
)

AUTOMATED_SUBJECT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(re: )?(fwd: )?(calendar|meeting|event|appointment)", re.IGNORECASE),
    re.compile(r"reminder", re.IGNORECASE),
    re.compile(r"notification", re.IGNORECASE),
    re.compile(r"automated", re.IGNORECASE),
    re.compile(r"out of office", re.IGNORECASE),
    re.compile(r"delivery (status|report)", re.IGNORECASE),
    re.compile(r"unsubscribe", re.IGNORECASE),
    re.compile(r"newsletter", re.IGNORECASE),
)

# Matched case-insensitively as plain substrings
AUTOMATED_BODY_PHRASES: tuple[str, ...] = (
    "this is an automated message",
    "do not reply to this email",
    "please do not reply",
    "unsubscribe",
    "automatically generated",
)

Signal = Literal["sender", "subject", "body"]


@dataclass(frozen=True, slots=True)
class AutomatedMatch:
    """Why a message was flagged as automated.

    Attributes:
        signal: Which part of the message matched
        reason: Human-readable explanation
    """

    signal: Signal
    reason: str


class AutomatedMessageClassifier:
    """Predicate over (sender, subject, body) flagging automated messages.

    Attributes:
        extra_senders: Additional fnmatch sender patterns from config
    """

    def __init__(self, extra_senders: list[str] | None = None):
        self.extra_senders = [p.lower() for p in (extra_senders or [])]

    def match(
        self,
        sender_email: str | None,
        subject: str | None = None,
        body: str | None = None,
    ) -> AutomatedMatch | None:
        """Check a message against the automated-message heuristics.

        Args:
            sender_email: Sender's email address
            subject: Subject line
            body: Message body

        Returns:
            AutomatedMatch for the first signal that fired, None otherwise
        """
        sender = sender_email or ""
        for pattern in AUTOMATED_SENDER_PATTERNS:
            if pattern.search(sender):
                return AutomatedMatch("sender", f"Sender matched '{pattern.pattern}'")

        sender_lower = sender.lower()
        for glob in self.extra_senders:
            if fnmatch(sender_lower, glob):
                return AutomatedMatch("sender", f"Sender matched configured pattern '{glob}'")

        subject_text = subject or ""
        for pattern in AUTOMATED_SUBJECT_PATTERNS:
            if pattern.search(subject_text):
                return AutomatedMatch("subject", f"Subject matched '{pattern.pattern}'")

        if body:
            body_lower = body.lower()
            for phrase in AUTOMATED_BODY_PHRASES:
                if phrase in body_lower:
                    return AutomatedMatch("body", f"Body contains '{phrase}'")

        return None

    def is_automated(
        self,
        sender_email: str | None,
        subject: str | None = None,
        body: str | None = None,
    ) -> bool:
        match = self.match(sender_email, subject, body)
        if match:
            logger.debug(
                "automated_message_detected",
                signal=match.signal,
                sender_domain=(sender_email or "").split("@")[-1],
            )
        return match is not None


_default_classifier = AutomatedMessageClassifier()


def is_automated_message(
    sender_email: str | None,
    subject: str | None = None,
    body: str | None = None,
) -> bool:
    """Convenience predicate using only the built-in patterns."""
    return _default_classifier.is_automated(sender_email, subject, body)
