"""
Collaborator adapters and formatting.

AWS clients are replaced by MagicMock; no network calls are made.
"""

import io
import json
from email import message_from_bytes, policy
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from config.settings import Settings
from models.customer import ConversationStage, Customer
from models.interaction import Direction, Interaction
from models.message import Intent, NormalizedMessage
from models.pipeline import OutboundEmail, PromptRole
from services.completion_service import ANTHROPIC_VERSION, FALLBACK_TEXT, CompletionService
from services.context_service import ContextAssembler
from services.error_reporter import ErrorReporter
from services.mail_service import MailService
from services.response_service import (
    STAGE_CALLS_TO_ACTION,
    ResponseFormatter,
    clean_generated_text,
    reply_subject,
)
from utils.cache_service import LRUCache


def _message(**kwargs):
    defaults = dict(
        thread_id="<root@example.org>",
        message_id="<m1@example.org>",
        sender="jane@example.org",
        sender_name="Jane Doe",
        subject="Pricing question",
        body="What is the price for your enterprise plan?",
        intent=Intent.PRICING_INQUIRY,
        confidence=0.7,
        references=["<root@example.org>"],
    )
    defaults.update(kwargs)
    return NormalizedMessage(**defaults)


def _bedrock_response(payload):
    return {"body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


class TestCompletionService:
    def _payload(self, settings):
        return ContextAssembler(settings).build(_message(), Customer(email="jane@example.org"))

    def test_returns_generated_text(self, settings):
        client = MagicMock()
        client.invoke_model.return_value = _bedrock_response(
            {"content": [{"type": "text", "text": " Our plans start at $49. "}], "stop_reason": "end_turn"}
        )
        service = CompletionService(settings, client=client)

        result = service.complete(self._payload(settings))

        assert result.text == "Our plans start at $49."
        assert result.used_fallback is False
        assert result.model_id == settings.model_id
        body = json.loads(client.invoke_model.call_args.kwargs["body"])
        assert body["anthropic_version"] == ANTHROPIC_VERSION
        assert body["max_tokens"] == settings.max_tokens
        assert "Acme" in body["system"]
        assert [m["role"] for m in body["messages"]] == ["user"]

    def test_service_error_uses_fallback(self, settings):
        client = MagicMock()
        client.invoke_model.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}}, "InvokeModel"
        )
        service = CompletionService(settings, client=client)

        result = service.complete(self._payload(settings))

        assert result.used_fallback is True
        assert result.text == FALLBACK_TEXT
        assert "Rate exceeded" in result.error

    def test_empty_completion_uses_fallback(self, settings):
        client = MagicMock()
        client.invoke_model.return_value = _bedrock_response({"content": [], "stop_reason": "max_tokens"})
        service = CompletionService(settings, client=client)

        result = service.complete(self._payload(settings))

        assert result.used_fallback is True
        assert "max_tokens" in result.error


class TestContextAssembler:
    def test_prompt_carries_customer_and_classification(self, settings):
        customer = Customer(
            email="jane@example.org",
            name="Jane Doe",
            company="Initech",
            stage=ConversationStage.PRODUCT_MATCHING,
            interaction_count=2,
            budget_notes="$5k per month",
        )
        history = [
            Interaction(
                customer_id=customer.customer_id,
                direction=Direction.INBOUND,
                subject="Intro",
                body="Tell me\nabout   your product",
            )
        ]

        payload = ContextAssembler(settings).build(_message(has_attachments=True), customer, history)

        assert [m.role for m in payload.messages] == [PromptRole.SYSTEM, PromptRole.USER]
        user = payload.messages[1].content
        assert "- company: Initech" in user
        assert "- stage: product_matching" in user
        assert "- budget notes: $5k per month" in user
        assert "- intent: pricing_inquiry (confidence 0.70)" in user
        assert "[inbound] Intro: Tell me about your product" in user
        assert user.index("Recent conversation") < user.index("Latest email:")
        assert "attached files" in user
        assert payload.temperature == settings.temperature

    def test_escalated_prompt_mentions_specialist(self, settings):
        payload = ContextAssembler(settings).build(_message(), Customer(email="a@b.co"), escalated=True)
        assert "specialist" in payload.system_prompt
        assert "Recent conversation" not in payload.conversation[0].content


class TestResponseFormatter:
    def test_reply_layout(self, settings):
        customer = Customer(email="jane@example.org", name="Jane Doe", stage=ConversationStage.PRODUCT_MATCHING)

        reply = ResponseFormatter(settings).format(_message(), customer, "Plans start at $49.")

        sections = reply.text_body.split("\n\n")
        assert sections[0] == "Hi Jane,"
        assert sections[1] == "Plans start at $49."
        assert sections[2] == STAGE_CALLS_TO_ACTION[ConversationStage.PRODUCT_MATCHING]
        assert reply.text_body.endswith("Best regards,\nAcme Support\nAcme")
        assert reply.recipient == "jane@example.org"
        assert reply.subject == "Re: Pricing question"
        assert reply.in_reply_to == "<m1@example.org>"
        assert reply.references == ["<root@example.org>", "<m1@example.org>"]
        assert reply.html_body.startswith("<html><body><p>Hi Jane,</p>")

    def test_every_stage_has_a_call_to_action(self):
        assert set(STAGE_CALLS_TO_ACTION) == set(ConversationStage)

    def test_greeting_without_name(self, settings):
        formatter = ResponseFormatter(settings)
        assert formatter.greeting(Customer(email="a@b.co"), _message(sender_name=None)) == "Hello,"
        assert formatter.greeting(Customer(email="a@b.co"), _message(sender_name="Sam Lee")) == "Hi Sam,"

    def test_custom_signature(self):
        formatter = ResponseFormatter(Settings(signature="Cheers,\\nThe Team"))
        reply = formatter.format(_message(), Customer(email="a@b.co"), "Sure.")
        assert reply.text_body.endswith("Cheers,\nThe Team")

    def test_html_is_escaped(self, settings):
        reply = ResponseFormatter(settings).format(_message(), Customer(email="a@b.co"), "Use <b>tags</b> & more")
        assert "&lt;b&gt;tags&lt;/b&gt; &amp; more" in reply.html_body

    def test_escalation_handoff(self, settings):
        formatter = ResponseFormatter(settings)
        customer = Customer(email="jane@example.org", name="Jane Doe")
        message = _message(body="URGENT: our system is down", intent=Intent.SUPPORT_REQUEST, urgent=True)
        draft = formatter.format(message, customer, "We are looking into it.")

        handoff = formatter.format_escalation(message, customer, draft, ["urgent", "support_request"])

        assert handoff.recipient == "humans@example.com"
        assert handoff.subject == "[Escalation] Pricing question"
        assert "Escalation reasons: urgent, support_request" in handoff.text_body
        assert "URGENT: our system is down" in handoff.text_body
        assert "We are looking into it." in handoff.text_body
        assert handoff.in_reply_to is None

    @pytest.mark.parametrize(
        "subject,expected",
        [("Pricing", "Re: Pricing"), ("RE: Pricing", "RE: Pricing"), ("", "Re: Your message")],
    )
    def test_reply_subject(self, subject, expected):
        assert reply_subject(subject) == expected

    def test_model_greeting_and_signoff_removed(self):
        text = "Hi Jane,\n\nPlans start at $49.\n\nBest regards,\nSupport Bot"
        assert clean_generated_text(text) == "Plans start at $49."

    def test_body_without_greeting_kept(self):
        text = "Plans start at $49.\nThanks to our partners we ship worldwide."
        assert clean_generated_text(text) == text


class TestMailService:
    def _reply(self, **kwargs):
        defaults = dict(
            recipient="jane@example.org",
            subject="Re: Pricing question",
            text_body="Hi Jane,\n\nPlans start at $49.",
            html_body="<p>Hi Jane,</p>",
            in_reply_to="<m1@example.org>",
            references=["<root@example.org>", "<m1@example.org>"],
        )
        defaults.update(kwargs)
        return OutboundEmail(**defaults)

    def test_send_raw_email_with_threading_headers(self, settings):
        client = MagicMock()
        client.send_raw_email.return_value = {"MessageId": "ses-1"}
        service = MailService(settings, client=client)

        result = service.send(self._reply())

        kwargs = client.send_raw_email.call_args.kwargs
        assert kwargs["Source"] == "support@example.com"
        assert kwargs["Destinations"] == ["jane@example.org"]
        sent = message_from_bytes(kwargs["RawMessage"]["Data"], policy=policy.default)
        assert sent["In-Reply-To"] == "<m1@example.org>"
        assert sent["References"] == "<root@example.org> <m1@example.org>"
        assert "Acme Support" in sent["From"]
        assert result.success is True
        assert result.message_id == sent["Message-ID"]

    def test_client_error_reported_not_raised(self, settings):
        client = MagicMock()
        client.send_raw_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendRawEmail",
        )

        result = MailService(settings, client=client).send(self._reply())

        assert result.success is False
        assert "not verified" in result.error

    def test_missing_sender_address(self):
        client = MagicMock()
        result = MailService(Settings(sender_address=None), client=client).send(self._reply())
        assert result.success is False
        client.send_raw_email.assert_not_called()


class TestErrorReporter:
    def test_publishes_when_topic_configured(self):
        client = MagicMock()
        reporter = ErrorReporter(Settings(error_topic_arn="arn:aws:sns:eu-west-2:1:errors"), client=client)

        reporter.report("send", "MessageRejected", {"message_id": "<m1@example.org>"})

        kwargs = client.publish.call_args.kwargs
        assert kwargs["TopicArn"] == "arn:aws:sns:eu-west-2:1:errors"
        details = json.loads(kwargs["Message"])
        assert details["stage"] == "send"
        assert details["message_id"] == "<m1@example.org>"

    def test_log_only_without_topic(self):
        client = MagicMock()
        ErrorReporter(Settings(), client=client).report("send", "boom")
        client.publish.assert_not_called()

    def test_publish_failure_swallowed(self):
        client = MagicMock()
        client.publish.side_effect = ClientError({"Error": {"Code": "AuthorizationError"}}, "Publish")
        reporter = ErrorReporter(Settings(error_topic_arn="arn:aws:sns:eu-west-2:1:errors"), client=client)

        reporter.report("record", RuntimeError("db down"))


class TestLRUCache:
    def test_evicts_least_recently_used(self):
        cache = LRUCache(max_size=2, ttl_seconds=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_expired_entries_dropped(self, monkeypatch):
        now = [100.0]
        monkeypatch.setattr("utils.cache_service.time.monotonic", lambda: now[0])
        cache = LRUCache(max_size=2, ttl_seconds=10)
        cache.set("a", 1)

        now[0] = 111.0

        assert cache.get("a") is None
        assert cache.stats()["size"] == 0


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("RECORD_BACKEND", "sql")
        monkeypatch.setenv("POLL_LIMIT", "25")
        monkeypatch.setenv("TEMPERATURE", "0.2")
        monkeypatch.setenv("AUTO_SEND", "false")
        monkeypatch.setenv("ESCALATION_ADDRESS", "humans@example.com")

        settings = Settings.from_environment()

        assert settings.record_backend == "sql"
        assert settings.poll_limit == 25
        assert settings.temperature == 0.2
        assert settings.auto_send is False
        assert settings.escalation_address == "humans@example.com"

    def test_prod_defaults(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "prod")
        monkeypatch.delenv("TEMPERATURE", raising=False)
        monkeypatch.delenv("MAX_ATTEMPTS", raising=False)

        settings = Settings.from_environment()

        assert settings.max_attempts == 5
        assert settings.temperature == 0.3
        assert settings.boto_config().retries == {"max_attempts": 5, "mode": "standard"}

    def test_bedrock_region_falls_back(self):
        assert Settings(aws_region="us-east-1").resolved_bedrock_region == "us-east-1"
        assert Settings(bedrock_region="us-west-2").resolved_bedrock_region == "us-west-2"
