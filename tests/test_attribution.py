"""Tests for the three-tier client attribution resolver."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from clientlens.analysis.attribution import (
    NO_MATCH,
    ClientAttributionResolver,
    extract_domain,
    find_direct_match,
    find_domain_match,
    parse_attribution_response,
)
from clientlens.config_schema import AppConfig
from clientlens.core.errors import ErrorCategory, LLMServiceError
from factories import make_client, make_communication


@pytest.fixture
def resolver(sample_config: AppConfig, mock_llm: MagicMock) -> ClientAttributionResolver:
    return ClientAttributionResolver(mock_llm, sample_config)


def _semantic_answer(client_id: str | None, confidence: float, reasoning: str = "mentions") -> str:
    return json.dumps({"client_id": client_id, "confidence": confidence, "reasoning": reasoning})


class TestExtractDomain:
    def test_lowercases_domain(self) -> None:
        assert extract_domain("Alice@ACME.com") == "acme.com"

    @pytest.mark.parametrize("address", [None, "", "not-an-address"])
    def test_no_domain(self, address: str | None) -> None:
        assert extract_domain(address) == ""


class TestDirectMatch:
    def test_sender_matches_client_email(self) -> None:
        communication = make_communication(sender_email="alice@acme.com")
        result = find_direct_match(communication, [make_client()])

        assert result is not None
        assert result.client_id == "client-acme"
        assert result.confidence == 0.95
        assert result.method == "direct"

    def test_recipient_match_is_case_insensitive(self) -> None:
        communication = make_communication(
            sender_email="me@example.com",
            recipient_email="ALICE@Acme.com",
        )
        result = find_direct_match(communication, [make_client()])
        assert result is not None
        assert result.client_id == "client-acme"

    def test_no_participants(self) -> None:
        communication = make_communication(sender_email=None, recipient_email=None)
        assert find_direct_match(communication, [make_client()]) is None


class TestDomainMatch:
    def test_explicit_domain(self) -> None:
        client = make_client(email=None, domain="acme.com")
        communication = make_communication(sender_email="bob@acme.com")

        result = find_domain_match(communication, [client])
        assert result is not None
        assert result.confidence == 0.85
        assert result.method == "domain"

    def test_client_email_domain(self) -> None:
        communication = make_communication(sender_email="bob@acme.com")

        result = find_domain_match(communication, [make_client(domain=None)])
        assert result is not None
        assert result.confidence == 0.80
        assert result.method == "client_email_domain"

    def test_explicit_domain_tested_before_email_domain(self) -> None:
        client = make_client(email="alice@acme.com", domain="acme.com")
        communication = make_communication(sender_email="bob@acme.com")

        result = find_domain_match(communication, [client])
        assert result is not None
        assert result.method == "domain"

    def test_clients_scanned_in_list_order(self) -> None:
        first = make_client("client-a", email="a@acme.com", domain=None)
        second = make_client("client-b", email=None, domain="acme.com")
        communication = make_communication(sender_email="bob@acme.com")

        result = find_domain_match(communication, [first, second])
        assert result is not None
        assert result.client_id == "client-a"


class TestParseAttributionResponse:
    def test_accepts_confident_known_client(self) -> None:
        text = "Here you go:\n" + _semantic_answer("client-acme", 0.9) + "\nThanks"
        result = parse_attribution_response(text, {"client-acme"})

        assert result is not None
        assert result.method == "semantic"
        assert result.confidence == 0.85  # clamped

    def test_confidence_at_threshold_rejected(self) -> None:
        assert parse_attribution_response(_semantic_answer("client-acme", 0.6), {"client-acme"}) is None

    def test_low_end_kept(self) -> None:
        result = parse_attribution_response(_semantic_answer("client-acme", 0.65), {"client-acme"})
        assert result is not None
        assert result.confidence == 0.65

    def test_unknown_client_rejected(self) -> None:
        assert parse_attribution_response(_semantic_answer("client-x", 0.9), {"client-acme"}) is None

    def test_null_client_rejected(self) -> None:
        assert parse_attribution_response(_semantic_answer(None, 0.9), {"client-acme"}) is None

    @pytest.mark.parametrize("text", ["", "no json here", "{not json}", "[1, 2]"])
    def test_unparsable_rejected(self, text: str) -> None:
        assert parse_attribution_response(text, {"client-acme"}) is None

    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_confidence_rejected(self, token: str) -> None:
        text = f'{{"client_id": "client-acme", "confidence": {token}}}'
        assert parse_attribution_response(text, {"client-acme"}) is None


class TestClientAttributionResolver:
    @pytest.mark.asyncio
    async def test_direct_match_scenario(
        self, resolver: ClientAttributionResolver, mock_llm: MagicMock
    ) -> None:
        """alice@acme.com is a client's email; her message resolves directly."""
        clients = [make_client(email="alice@acme.com")]
        communication = make_communication(sender_email="alice@acme.com")

        result = await resolver.resolve(communication, clients)

        assert result.client_id == "client-acme"
        assert result.confidence == 0.95
        assert result.method == "direct"
        mock_llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_beats_domain_of_earlier_client(
        self, resolver: ClientAttributionResolver
    ) -> None:
        domain_client = make_client("client-domain", email=None, domain="acme.com")
        direct_client = make_client("client-direct", email="alice@acme.com")
        communication = make_communication(sender_email="alice@acme.com")

        result = await resolver.resolve(communication, [domain_client, direct_client])

        assert result.client_id == "client-direct"
        assert result.method == "direct"

    @pytest.mark.asyncio
    async def test_no_clients_is_no_match(
        self, resolver: ClientAttributionResolver, mock_llm: MagicMock
    ) -> None:
        result = await resolver.resolve(make_communication(), [])
        assert result == NO_MATCH
        mock_llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_semantic_match_used_when_rules_miss(
        self, resolver: ClientAttributionResolver, mock_llm: MagicMock
    ) -> None:
        mock_llm.complete = AsyncMock(return_value=_semantic_answer("client-acme", 0.75))
        communication = make_communication(
            sender_email="carol@gmail.com",
            body="Following up on the Acme website redesign.",
        )

        result = await resolver.resolve(communication, [make_client()])

        assert result.client_id == "client-acme"
        assert result.method == "semantic"
        assert 0.6 <= result.confidence <= 0.85

        prompt = mock_llm.complete.await_args.args[0]
        assert "client-acme" in prompt
        assert "Website Redesign" in prompt
        assert mock_llm.complete.await_args.kwargs["task_type"] == "attribution"

    @pytest.mark.asyncio
    async def test_semantic_service_failure_is_no_match(
        self, resolver: ClientAttributionResolver, mock_llm: MagicMock
    ) -> None:
        mock_llm.complete = AsyncMock(
            side_effect=LLMServiceError("overloaded", ErrorCategory.TRANSIENT, status_code=529)
        )
        communication = make_communication(sender_email="carol@gmail.com")

        result = await resolver.resolve(communication, [make_client()])

        assert result == NO_MATCH

    @pytest.mark.asyncio
    async def test_semantic_disabled(self, sample_config: AppConfig, mock_llm: MagicMock) -> None:
        config = sample_config.model_copy(
            update={"attribution": sample_config.attribution.model_copy(update={"semantic_enabled": False})}
        )
        resolver = ClientAttributionResolver(mock_llm, config)

        result = await resolver.resolve(make_communication(sender_email="carol@gmail.com"), [make_client()])

        assert result == NO_MATCH
        mock_llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confidence_ordering_across_tiers(
        self, resolver: ClientAttributionResolver, mock_llm: MagicMock
    ) -> None:
        mock_llm.complete = AsyncMock(return_value=_semantic_answer("client-acme", 0.99))
        client = make_client(email="alice@acme.com", domain="acme.org")

        direct = await resolver.resolve(make_communication(sender_email="alice@acme.com"), [client])
        domain = await resolver.resolve(make_communication(sender_email="x@acme.org"), [client])
        email_domain = await resolver.resolve(make_communication(sender_email="x@acme.com"), [client])
        semantic = await resolver.resolve(make_communication(sender_email="x@gmail.com"), [client])

        assert direct.confidence > domain.confidence > email_domain.confidence
        assert semantic.confidence <= domain.confidence
