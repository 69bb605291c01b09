"""Unit tests for the conversation orchestrator."""
import asyncio
import base64
import json
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from app.services.agent.constants import APOLOGY_REPLY, FILLER_PHRASES, GREETING_REPLY, THANKS_REPLY
from app.services.agent.orchestrator import AgentMessage, ConversationOrchestrator
from app.services.session.models import Session, utcnow
from app.services.speech.stt import TranscriptionError, TranscriptionResult


@pytest.fixture
def session(registry):
    return registry.create(Session(user_id="u1"))


class TestDirectResponses:
    """Test the canned-reply path."""

    @pytest.mark.parametrize(
        "message, direct",
        [
            ("Hello there", True),
            ("thanks a lot", True),
            ("Could you REPEAT that?", True),
            ("GOOD MORNING", True),
            ("What's my balance?", False),
            ("what plans do you have for families", False),
        ],
    )
    def test_should_handle_directly(self, orchestrator, message, direct):
        """Test case-insensitive substring classification."""
        assert orchestrator.should_handle_directly(message) is direct

    def test_opening_greeting(self, orchestrator):
        assert orchestrator.direct_response("hello") == "Hi, you've reached NewTelco, how can I help you?"
        assert orchestrator.direct_response(" Hi ") == "Hi, you've reached NewTelco, how can I help you?"

    def test_other_replies(self, orchestrator):
        assert orchestrator.direct_response("Hello there") == GREETING_REPLY
        assert orchestrator.direct_response("thanks a lot") == THANKS_REPLY

    @pytest.mark.asyncio
    async def test_direct_reply_makes_no_completion_call(self, orchestrator, session, mock_openai):
        reply = await orchestrator.process_text(session.id, "Hello there")

        assert reply.content == GREETING_REPLY
        assert reply.metadata == {"usedSupervisor": False}
        assert mock_openai.responses.create.call_count == 0

    @pytest.mark.asyncio
    async def test_history_records_both_turns(self, orchestrator, session):
        await orchestrator.process_text(session.id, "hello")

        history = orchestrator.get_history(session.id)
        assert [(turn.role, turn.content) for turn in history] == [
            ("user", "hello"),
            ("assistant", "Hi, you've reached NewTelco, how can I help you?"),
        ]


class TestSupervisorEscalation:
    """Test the tool-augmented completion path."""

    @pytest.mark.asyncio
    async def test_balance_question_escalates(self, orchestrator, session, mock_openai, message_response):
        mock_openai.responses.create = AsyncMock(return_value=message_response("Your balance is $42.17."))

        reply = await orchestrator.process_text(session.id, "What's my balance?")

        assert mock_openai.responses.create.call_count == 1
        filler = reply.metadata["fillerPhrase"]
        assert filler in FILLER_PHRASES
        assert reply.content == f"{filler} Your balance is $42.17."
        assert reply.metadata["usedSupervisor"] is True

    @pytest.mark.asyncio
    async def test_request_shape(self, orchestrator, session, mock_openai):
        await orchestrator.process_text(session.id, "What's my balance?")

        kwargs = mock_openai.responses.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4.1"
        assert kwargs["parallel_tool_calls"] is False
        assert [tool["name"] for tool in kwargs["tools"]] == [
            "lookupPolicyDocument",
            "getUserAccountInfo",
            "findNearestStore",
        ]
        system, user = kwargs["input"]
        assert system["role"] == "system"
        assert "supervisor agent" in system["content"]
        assert user["content"].startswith("==== Conversation History ====")
        assert user["content"].endswith(
            "==== Relevant Context From Last User Message ====\nWhat's my balance?"
        )

    @pytest.mark.asyncio
    async def test_family_plan_calls_policy_tool_once(
        self, orchestrator, session, mock_openai, function_call_response, message_response
    ):
        """Test that a family-plan question looks up the policy exactly once."""
        mock_openai.responses.create = AsyncMock(
            side_effect=[
                function_call_response("lookupPolicyDocument", {"topic": "family plan"}),
                message_response("The family plan allows up to 5 lines [Family Plan Policy](ID-010)."),
            ]
        )
        executed = []
        original_execute = orchestrator.tools.execute

        def recording_execute(name, arguments):
            executed.append((name, json.loads(arguments)))
            return original_execute(name, arguments)

        orchestrator.tools.execute = recording_execute

        reply = await orchestrator.process_text(session.id, "what plans do you have for families")

        assert executed == [("lookupPolicyDocument", {"topic": "family plan"})]
        assert "family" in executed[0][1]["topic"]
        assert any(reply.content.startswith(f"{filler} ") for filler in FILLER_PHRASES)
        assert len(reply.content) > len(reply.metadata["fillerPhrase"]) + 1

        # Second request carries the call and its output
        second_input = mock_openai.responses.create.call_args_list[1].kwargs["input"]
        call_item, output_item = second_input[-2:]
        assert call_item["type"] == "function_call"
        assert call_item["call_id"] == "call_1"
        assert output_item["type"] == "function_call_output"
        docs = json.loads(output_item["output"])
        assert [doc["id"] for doc in docs] == ["ID-010"]

    @pytest.mark.asyncio
    async def test_tool_loop_is_bounded(self, registry, session, mock_openai, function_call_response):
        """Test that a model that always calls tools cannot loop forever."""
        mock_openai.responses.create = AsyncMock(
            return_value=function_call_response("getUserAccountInfo", {"phone_number": "(206) 135-1246"})
        )
        orchestrator = ConversationOrchestrator(registry, client=mock_openai, max_tool_iterations=3)

        reply = await orchestrator.process_text(session.id, "What's my balance?")

        assert reply.content == APOLOGY_REPLY
        assert reply.metadata == {"error": True}
        assert mock_openai.responses.create.call_count == 4

    @pytest.mark.asyncio
    async def test_completion_failure_returns_apology(self, orchestrator, session, mock_openai):
        mock_openai.responses.create = AsyncMock(side_effect=RuntimeError("API down"))

        reply = await orchestrator.process_text(session.id, "What's my balance?")

        assert reply.content == APOLOGY_REPLY
        # The apology is still recorded as the assistant turn
        assert orchestrator.get_history(session.id)[-1].content == APOLOGY_REPLY

    @pytest.mark.asyncio
    async def test_empty_answer_returns_apology(self, orchestrator, session, mock_openai, message_response):
        mock_openai.responses.create = AsyncMock(return_value=message_response("   "))

        reply = await orchestrator.process_text(session.id, "What's my balance?")

        assert reply.content == APOLOGY_REPLY

    @pytest.mark.asyncio
    async def test_history_only_includes_text_turns(self, orchestrator, session, mock_openai):
        await orchestrator.process_text(session.id, "hello")
        orchestrator.switch_agent(session.id, "chatAgent")
        await orchestrator.process_text(session.id, "What's my balance?")

        user_prompt = mock_openai.responses.create.call_args.kwargs["input"][1]["content"]
        history = json.loads(
            user_prompt.split("==== Conversation History ====\n", 1)[1].split("\n\n====", 1)[0]
        )
        assert [turn["role"] for turn in history] == ["user", "assistant", "user"]
        assert all(turn["type"] == "message" for turn in history)


class TestAudioMessages:
    """Test the audio pipeline."""

    @pytest.mark.asyncio
    async def test_small_audio_rejected_without_transcription(self, orchestrator, session, mock_openai):
        reply = await orchestrator.process_audio(session.id, b"\x00" * 500, "wav")

        assert reply.metadata["error"] is True
        assert "Audio is too short" in reply.metadata["qualityIssues"]
        assert mock_openai.audio.transcriptions.create.call_count == 0

    @pytest.mark.asyncio
    async def test_unsupported_format_rejected(self, orchestrator, session, mock_openai):
        reply = await orchestrator.process_audio(session.id, b"\x00" * 4096, "aiff")

        assert reply.metadata["error"] is True
        assert mock_openai.audio.transcriptions.create.call_count == 0

    @pytest.mark.asyncio
    async def test_transcript_feeds_text_pipeline(self, orchestrator, session, wav_bytes):
        orchestrator.transcription.transcribe_audio = AsyncMock(
            return_value=TranscriptionResult(text="thanks a lot", language="ko", duration=2.0)
        )

        reply = await orchestrator.process_message(
            session.id, AgentMessage(type="audio", data=wav_bytes, format="wav", sampleRate=16000)
        )

        assert reply.content == THANKS_REPLY
        transcription = reply.metadata["audioTranscription"]
        assert transcription["originalText"] == "thanks a lot"
        assert transcription["language"] == "ko"
        assert transcription["duration"] == 2.0
        assert transcription["audioFormat"] == "wav"
        assert transcription["sampleRate"] == 16000
        orchestrator.transcription.transcribe_audio.assert_awaited_once_with(wav_bytes, "wav", language="ko")

    @pytest.mark.asyncio
    async def test_base64_audio_accepted(self, orchestrator, session, wav_bytes):
        orchestrator.transcription.transcribe_audio = AsyncMock(
            return_value=TranscriptionResult(text="hello", language="ko", duration=2.0)
        )

        reply = await orchestrator.process_audio(session.id, base64.b64encode(wav_bytes).decode(), "wav")

        assert reply.content.startswith("Hi, you've reached")

    @pytest.mark.asyncio
    async def test_empty_transcript_diagnostic(self, orchestrator, session, wav_bytes):
        orchestrator.transcription.transcribe_audio = AsyncMock(
            return_value=TranscriptionResult(text="  ", language="ko", duration=2.0)
        )

        reply = await orchestrator.process_audio(session.id, wav_bytes, "wav")

        assert reply.metadata == {"transcriptionEmpty": True}

    @pytest.mark.asyncio
    async def test_transcription_failure_diagnostic(self, orchestrator, session, wav_bytes):
        orchestrator.transcription.transcribe_audio = AsyncMock(side_effect=TranscriptionError("timeout"))

        reply = await orchestrator.process_audio(session.id, wav_bytes, "wav")

        assert reply.metadata["error"] is True
        assert reply.metadata["errorMessage"] == "timeout"

    @pytest.mark.asyncio
    async def test_invalid_payload_type(self, orchestrator, session):
        reply = await orchestrator.process_audio(session.id, None, "wav")

        assert reply.metadata == {"error": True}


class TestSessionState:
    """Test handoff, mute and introspection."""

    def test_queries_before_first_message(self, orchestrator, session):
        """Test that a session without conversation state answers empty."""
        assert orchestrator.get_history(session.id) == []
        assert orchestrator.get_session_info(session.id) is None
        assert orchestrator.switch_agent(session.id, "supervisorAgent") is False
        assert orchestrator.set_muted(session.id, True) is False
        assert session.conversation is None

    @pytest.mark.asyncio
    async def test_session_info(self, orchestrator, session):
        await orchestrator.process_text(session.id, "hello")
        orchestrator.set_muted(session.id, True)

        info = orchestrator.get_session_info(session.id)

        assert info["sessionId"] == session.id
        assert info["currentAgent"] == "chatAgent"
        assert info["messageCount"] == 2
        assert info["muted"] is True

    @pytest.mark.asyncio
    async def test_switch_agent_rejects_unknown_label(self, orchestrator, session):
        await orchestrator.process_text(session.id, "hello")

        assert orchestrator.switch_agent(session.id, "billingAgent") is False
        assert orchestrator.get_session_info(session.id)["currentAgent"] == "chatAgent"

    @pytest.mark.asyncio
    async def test_supervisor_agent_always_escalates(self, orchestrator, session, mock_openai):
        """Test that the supervisorAgent label skips the canned replies."""
        await orchestrator.process_text(session.id, "hello")
        assert orchestrator.switch_agent(session.id, "supervisorAgent") is True

        reply = await orchestrator.process_text(session.id, "thanks a lot")

        assert mock_openai.responses.create.call_count == 1
        assert reply.metadata["usedSupervisor"] is True
        system = mock_openai.responses.create.call_args.kwargs["input"][0]["content"]
        assert system.startswith("You are a helpful customer service agent working for NewTelco")

    @pytest.mark.asyncio
    async def test_coarse_sweep_clears_idle_conversations(self, orchestrator, registry):
        idle = registry.create(Session())
        active = registry.create(Session())
        await orchestrator.process_text(idle.id, "hello")
        await orchestrator.process_text(active.id, "hello")
        idle.conversation.last_activity = utcnow() - timedelta(minutes=61)

        cleared = await orchestrator.sweep()

        assert cleared == [idle.id]
        assert idle.conversation is None
        assert active.conversation is not None
        # The registry entry itself is untouched
        assert idle.id in registry

    @pytest.mark.asyncio
    async def test_sweep_task_start_stop(self, orchestrator):
        orchestrator.start()
        await asyncio.sleep(0)
        await orchestrator.stop()
        await orchestrator.stop()

    def test_realtime_config(self, orchestrator):
        config = orchestrator.get_realtime_config()

        assert "NewTelco" in config["instructions"]
        assert {tool["name"] for tool in config["tools"]} == {
            "lookupPolicyDocument",
            "getUserAccountInfo",
            "findNearestStore",
        }
