"""
End-to-end pipeline tests.

The record store is a real SQLite database; the model, the mail transport
and the error reporter are mocks.
"""

from unittest.mock import patch

import pytest

from models.customer import ConversationStage
from models.interaction import Direction
from models.pipeline import CompletionResult, PipelineStatus, SendResult
from services.completion_service import FALLBACK_TEXT
from services.mailbox_service import DirectoryMailboxSource, InboundListener
from services.message_service import parse_raw_email
from services.orchestration_service import OrchestrationService

OUTAGE_BODY = "URGENT: our production system is down and nothing works."


@pytest.fixture
def orchestrator(settings, sql_store, completion, mail, reporter, clock):
    return OrchestrationService(
        settings=settings,
        store=sql_store,
        completion=completion,
        mail=mail,
        reporter=reporter,
        clock=clock,
    )


def _reported_stages(reporter):
    return [c.args[0] for c in reporter.report.call_args_list]


class TestRun:
    def test_new_customer_gets_reply(self, orchestrator, raw_email_factory, sql_store, mail):
        email = parse_raw_email(raw_email_factory())

        result = orchestrator.run(email, correlation_id="c-1")

        assert result.status == PipelineStatus.SENT
        assert result.is_new_customer is True
        assert result.escalated is False
        assert result.customer.interaction_count == 1
        assert result.customer.stage == ConversationStage.INITIAL_INQUIRY
        assert result.trace.correlation_id == "c-1"

        sent = mail.send.call_args.args[0]
        assert sent.recipient == "jane@example.org"
        assert sent.subject == "Re: Pricing question"
        assert sent.in_reply_to == "<msg-1@example.org>"
        assert sent.text_body.startswith("Hi Jane,\n\nOur enterprise plan is billed annually")
        assert sent.text_body.endswith("Best regards,\nAcme Support\nAcme")

        stored = sql_store.get_customer_by_email("jane@example.org")
        interactions = sql_store.list_interactions(stored.customer_id)
        assert stored.interaction_count == 1
        assert sorted(i.direction for i in interactions) == [Direction.INBOUND, Direction.OUTBOUND]
        outbound = next(i for i in interactions if i.direction == Direction.OUTBOUND)
        assert outbound.message_id == "<sent-1@example.com>"

    def test_returning_customer_sees_history(self, orchestrator, raw_email_factory, completion):
        orchestrator.run(parse_raw_email(raw_email_factory()), correlation_id="c-1")
        second = parse_raw_email(
            raw_email_factory(
                body="Can you tell me more about the reporting features?",
                subject="Re: Pricing question",
                message_id="<msg-2@example.org>",
                in_reply_to="<msg-1@example.org>",
                references="<msg-1@example.org>",
            )
        )

        result = orchestrator.run(second, correlation_id="c-2")

        assert result.is_new_customer is False
        assert result.customer.interaction_count == 2
        assert result.customer.stage == ConversationStage.INFORMATION_GATHERING
        assert result.message.thread_id == "<msg-1@example.org>"
        payload = completion.complete.call_args.args[0]
        assert "Recent conversation (newest first):" in payload.conversation[0].content
        assert "- previous messages: 1" in payload.conversation[0].content

    def test_urgent_outage_is_escalated(self, orchestrator, raw_email_factory, mail, sql_store):
        email = parse_raw_email(raw_email_factory(body=OUTAGE_BODY, subject="Outage"))

        result = orchestrator.run(email, correlation_id="c-1")

        assert result.status == PipelineStatus.ESCALATED
        assert result.escalation_reasons[:2] == ["urgent", "support_request"]
        handoff = mail.send.call_args.args[0]
        assert handoff.recipient == "humans@example.com"
        assert handoff.subject == "[Escalation] Outage"
        assert OUTAGE_BODY in handoff.text_body

        [inbound] = sql_store.list_interactions(result.customer.customer_id)
        assert inbound.direction == Direction.INBOUND
        assert inbound.escalated is True
        assert result.customer.interaction_count == 1

    def test_escalation_without_address_is_drafted(
        self, settings, sql_store, completion, mail, reporter, clock, raw_email_factory
    ):
        settings.escalation_address = None
        service = OrchestrationService(settings, sql_store, completion, mail, reporter, clock)

        result = service.run(parse_raw_email(raw_email_factory(body=OUTAGE_BODY)), "c-1")

        assert result.status == PipelineStatus.DRAFTED
        assert result.reply is not None
        mail.send.assert_not_called()
        assert result.customer.interaction_count == 1

    def test_auto_send_disabled_leaves_draft(
        self, settings, sql_store, completion, mail, reporter, clock, raw_email_factory
    ):
        settings.auto_send = False
        service = OrchestrationService(settings, sql_store, completion, mail, reporter, clock)

        result = service.run(parse_raw_email(raw_email_factory()), "c-1")

        assert result.status == PipelineStatus.DRAFTED
        mail.send.assert_not_called()

    def test_send_failure_still_records(self, orchestrator, raw_email_factory, mail, reporter, sql_store):
        mail.send.return_value = SendResult(success=False, error="MessageRejected")

        result = orchestrator.run(parse_raw_email(raw_email_factory()), "c-1")

        assert result.status == PipelineStatus.SEND_FAILED
        assert "send: MessageRejected" in result.errors
        assert "send" in _reported_stages(reporter)
        stored = sql_store.get_customer_by_email("jane@example.org")
        assert stored.interaction_count == 1
        assert [i.direction for i in sql_store.list_interactions(stored.customer_id)] == [Direction.INBOUND]

    def test_record_failure_after_send(self, orchestrator, raw_email_factory, mail, reporter, sql_store):
        with patch.object(sql_store, "update_customer", side_effect=RuntimeError("db down")):
            result = orchestrator.run(parse_raw_email(raw_email_factory()), "c-1")

        assert result.status == PipelineStatus.RECORD_FAILED
        mail.send.assert_called_once()
        assert "record" in _reported_stages(reporter)
        assert any(e.startswith("record:") for e in result.errors)

    def test_completion_fallback_reported(self, orchestrator, raw_email_factory, completion, reporter, mail):
        completion.complete.return_value = CompletionResult(
            text=FALLBACK_TEXT, model_id="test-model", used_fallback=True, error="throttled"
        )

        result = orchestrator.run(parse_raw_email(raw_email_factory()), "c-1")

        assert result.status == PipelineStatus.SENT
        assert result.used_fallback is True
        assert "completion" in _reported_stages(reporter)
        assert FALLBACK_TEXT in mail.send.call_args.args[0].text_body

    @pytest.mark.parametrize(
        "sender",
        ["MAILER-DAEMON@example.org", "no-reply@example.org", "Acme Support <support@example.com>"],
    )
    def test_automated_senders_skipped(self, orchestrator, raw_email_factory, mail, sql_store, sender):
        result = orchestrator.run(parse_raw_email(raw_email_factory(sender=sender)), "c-1")

        assert result.status == PipelineStatus.SKIPPED
        mail.send.assert_not_called()
        assert sql_store.get_customer_by_email(result.message.sender) is None

    def test_store_outage_before_send_propagates(self, orchestrator, raw_email_factory, mail, sql_store):
        with patch.object(sql_store, "get_customer_by_email", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                orchestrator.run(parse_raw_email(raw_email_factory()), "c-1")
        mail.send.assert_not_called()


class TestProcessMailbox:
    def test_processes_and_acknowledges(self, orchestrator, raw_email_factory, tmp_path):
        (tmp_path / "a.eml").write_bytes(raw_email_factory(message_id="<a@example.org>"))
        (tmp_path / "b.eml").write_bytes(
            raw_email_factory(sender="bob@example.org", message_id="<b@example.org>")
        )
        (tmp_path / "garbage.eml").write_bytes(b"hello")
        listener = InboundListener(DirectoryMailboxSource(tmp_path))

        summary = orchestrator.process_mailbox(listener, correlation_id="poll-1")

        assert summary.fetched == 2
        assert summary.processed == 2
        assert summary.failed == 0
        assert [r.status for r in summary.results] == [PipelineStatus.SENT, PipelineStatus.SENT]
        assert (tmp_path / "a.done").exists()
        assert (tmp_path / "b.done").exists()
        assert (tmp_path / "garbage.failed").exists()
        assert list(tmp_path.glob("*.eml")) == []

    def test_failed_message_left_for_retry(self, orchestrator, raw_email_factory, tmp_path, sql_store, reporter):
        (tmp_path / "a.eml").write_bytes(raw_email_factory())
        listener = InboundListener(DirectoryMailboxSource(tmp_path))

        with patch.object(sql_store, "get_customer_by_email", side_effect=RuntimeError("db down")):
            summary = orchestrator.process_mailbox(listener, correlation_id="poll-1")

        assert summary.failed == 1
        assert summary.processed == 0
        assert (tmp_path / "a.eml").exists()
        assert "pipeline" in _reported_stages(reporter)

        retry = orchestrator.process_mailbox(listener, correlation_id="poll-2")
        assert retry.processed == 1

    def test_redelivered_message_not_answered_twice(self, orchestrator, raw_email_factory, tmp_path, mail):
        listener = InboundListener(DirectoryMailboxSource(tmp_path))
        (tmp_path / "a.eml").write_bytes(raw_email_factory())
        orchestrator.process_mailbox(listener, correlation_id="poll-1")

        (tmp_path / "copy.eml").write_bytes(raw_email_factory())
        summary = orchestrator.process_mailbox(listener, correlation_id="poll-2")

        assert summary.fetched == 0
        assert mail.send.call_count == 1
        assert (tmp_path / "copy.done").exists()
