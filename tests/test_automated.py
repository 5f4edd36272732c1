"""Tests for automated-message detection."""

import pytest

from clientlens.analysis.automated import AutomatedMessageClassifier, is_automated_message


class TestSenderSignals:
    @pytest.mark.parametrize(
        "sender",
        [
            "noreply@service.com",
            "no-reply@github.com",
            "notifications@app.io",
            "alert@monitoring.io",
            "do-not-reply@bank.com",
            "automated@ci.example.com",
            "system@erp.example.com",
            "admin@example.com",
            "support@team.atlassian.net",
            "calendar-notification@google.com",
            "invites@calendar.google.com",
            "hello@calendly.com",
            "no-reply@zoom.us",
            "meeting-reminder@corp.com",
        ],
    )
    def test_automated_senders(self, sender: str) -> None:
        assert is_automated_message(sender, "Hello", "Real content")

    def test_human_sender_not_flagged(self) -> None:
        assert not is_automated_message(
            "alice@acme.com",
            "Budget for phase two",
            "Can we talk about the numbers tomorrow?",
        )


class TestSubjectSignals:
    @pytest.mark.parametrize(
        "subject",
        [
            "Meeting: Weekly sync",
            "Re: Calendar invite",
            "Reminder: invoice due",
            "Out of Office: back Monday",
            "Delivery Status Notification (Failure)",
            "Our monthly newsletter",
        ],
    )
    def test_automated_subjects(self, subject: str) -> None:
        assert is_automated_message("bob@client.com", subject, "Hi")

    def test_meeting_mid_subject_not_a_prefix_match(self) -> None:
        assert not is_automated_message("bob@client.com", "Notes from our meeting", "Thanks")


class TestBodySignals:
    @pytest.mark.parametrize(
        "body",
        [
            "This is an automated message from our system.",
            "Please DO NOT REPLY to this email.",
            "Click here to unsubscribe.",
            "This report was automatically generated.",
        ],
    )
    def test_automated_phrases(self, body: str) -> None:
        assert is_automated_message("bob@client.com", "Status", body)

    def test_missing_fields_are_not_automated(self) -> None:
        assert not is_automated_message(None, None, None)


class TestAutomatedMessageClassifier:
    def test_match_reports_signal(self) -> None:
        classifier = AutomatedMessageClassifier()

        match = classifier.match("noreply@x.com", "Reminder", "unsubscribe")
        assert match is not None
        assert match.signal == "sender"

        match = classifier.match("bob@client.com", "Reminder", "hi")
        assert match is not None
        assert match.signal == "subject"

        match = classifier.match("bob@client.com", "Hi", "please do not reply")
        assert match is not None
        assert match.signal == "body"

    def test_extra_sender_globs(self) -> None:
        classifier = AutomatedMessageClassifier(extra_senders=["*@Mailer.Example.com"])

        assert classifier.is_automated("digest@mailer.example.com", "Hi", "content")
        assert not classifier.is_automated("alice@example.com", "Hi", "content")

        match = classifier.match("digest@mailer.example.com")
        assert match is not None
        assert "configured pattern" in match.reason
