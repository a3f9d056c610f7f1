"""
Tests for results notification.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from schemas.results import CandidateResult, ElectionResults, PositionResult
from services.notification_service import ResultsNotifier, VerificationCodeSender


@pytest.fixture
def results() -> ElectionResults:
    return ElectionResults(
        election_id=3,
        name="Student Union 2026",
        category="INSTITUTION",
        status="CLOSED",
        is_final=True,
        total_votes=2,
        turnout=2,
        positions=[
            PositionResult(
                position_id=1,
                name="President",
                max_choices=1,
                total_votes=2,
                candidates_count=1,
                candidates=[
                    CandidateResult(
                        candidate_id=11,
                        display_name="Candidate A",
                        vote_count=2,
                        vote_percentage=100.0,
                        rank=1,
                        is_winner=True,
                    )
                ],
                winners=[11],
            )
        ],
        computed_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


@pytest.mark.unit
class TestResultsNotifier:
    async def test_log_only_without_webhook(self, results) -> None:
        notifier = ResultsNotifier(webhook_url="")

        assert notifier.is_configured is False
        assert await notifier.results_published(results) is True

    async def test_webhook_receives_results(self, results) -> None:
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        notifier = ResultsNotifier(
            webhook_url="https://hooks.uni.edu/results",
            transport=httpx.MockTransport(handler),
        )

        assert await notifier.results_published(results) is True
        assert received[0]["event"] == "results_published"
        assert received[0]["results"]["election_id"] == 3
        assert received[0]["results"]["positions"][0]["winners"] == [11]

    async def test_rejected_webhook_is_swallowed(self, results) -> None:
        notifier = ResultsNotifier(
            webhook_url="https://hooks.uni.edu/results",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        assert await notifier.results_published(results) is False

    async def test_unreachable_webhook_is_swallowed(self, results) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = ResultsNotifier(
            webhook_url="https://hooks.uni.edu/results",
            transport=httpx.MockTransport(handler),
        )

        assert await notifier.results_published(results) is False


@pytest.mark.unit
class TestVerificationCodeSender:
    async def test_not_configured(self) -> None:
        sender = VerificationCodeSender(webhook_url="")

        assert sender.is_configured is False
        assert await sender.send_code("carol@uni.edu", "123456", 10) is False

    async def test_relay_receives_code(self) -> None:
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        sender = VerificationCodeSender(
            webhook_url="https://mail.uni.edu/relay",
            transport=httpx.MockTransport(handler),
        )

        assert await sender.send_code("carol@uni.edu", "123456", 10) is True
        assert received == [
            {"event": "verification_code", "to": "carol@uni.edu", "code": "123456", "expires_in_minutes": 10}
        ]

    async def test_rejected_by_relay(self) -> None:
        sender = VerificationCodeSender(
            webhook_url="https://mail.uni.edu/relay",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )

        assert await sender.send_code("carol@uni.edu", "123456", 10) is False
