"""Conversation orchestrator: direct replies and the tool-augmented supervisor."""
import asyncio
import json
import logging
import random
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional, Union

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings
from app.services.agent.constants import (
    APOLOGY_REPLY,
    FALLBACK_REPLY,
    FILLER_PHRASES,
    GREETING_INDICATORS,
    GREETING_REPLY,
    OPENING_GREETINGS,
    REPEAT_INDICATORS,
    REPEAT_REPLY,
    THANKS_INDICATORS,
    THANKS_REPLY,
    UNCLEAR_AUDIO_REPLY,
)
from app.services.agent.prompt import (
    AGENT_PROFILES,
    get_instructions_for,
    get_supervisor_instructions,
    get_supervisor_user_prompt,
)
from app.services.agent.tools import ToolRegistry, build_default_tools
from app.services.session.models import ConversationState, ConversationTurn, utcnow
from app.services.session.registry import SessionRegistry
from app.services.speech.audio import (
    AudioValidationError,
    normalize_audio_payload,
    validate_audio_quality,
)
from app.services.speech.stt import SpeechToTextService, TranscriptionError

logger = logging.getLogger(__name__)


class SupervisorError(RuntimeError):
    """The supervisor completion exchange did not produce an answer."""


class AgentMessage(BaseModel):
    """Text or audio turn submitted for a supervisor reply."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["text", "audio"] = "text"
    content: Optional[str] = None
    data: Optional[Union[bytes, str]] = None
    format: str = "wav"
    sample_rate: Optional[int] = Field(default=None, alias="sampleRate")


class SupervisorReply(BaseModel):
    """Assistant turn produced by the orchestrator."""

    content: str
    type: Literal["text"] = "text"
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    metadata: Dict[str, Any] = {}


class ConversationOrchestrator:
    """Decides and produces the assistant's next text turn for a session.

    Conversation state lives on the Session aggregate held by the registry and
    is created on the first processed message.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        client: Optional[Any] = None,
        tools: Optional[ToolRegistry] = None,
        transcription: Optional[SpeechToTextService] = None,
        model: Optional[str] = None,
        max_tool_iterations: Optional[int] = None,
        company_name: Optional[str] = None,
        transcription_language: Optional[str] = None,
        idle_timeout_seconds: Optional[int] = None,
        sweep_interval_seconds: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.registry = registry
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.tools = tools or build_default_tools()
        self.transcription = transcription or SpeechToTextService(client=self.client)
        self.model = model or settings.supervisor_model
        self.max_tool_iterations = max_tool_iterations or settings.supervisor_max_tool_iterations
        self.company_name = company_name or settings.company_name
        self.transcription_language = transcription_language or settings.transcription_language
        self.idle_timeout = timedelta(
            seconds=idle_timeout_seconds or settings.conversation_idle_timeout_seconds
        )
        self.sweep_interval = sweep_interval_seconds or settings.conversation_sweep_interval_seconds
        self._rng = rng or random.Random()
        self._sweep_task: Optional[asyncio.Task] = None

    def get_realtime_config(self) -> Dict[str, Any]:
        """Instructions and tool schemas injected into the upstream session."""
        return {
            "instructions": get_supervisor_instructions(self.company_name),
            "tools": self.tools.schemas(),
        }

    async def process_message(self, session_id: str, message: AgentMessage) -> SupervisorReply:
        """Route a text or audio message to the matching pipeline."""
        if message.type == "audio":
            return await self.process_audio(
                session_id, message.data, message.format, message.sample_rate
            )
        return await self.process_text(session_id, message.content or "")

    async def process_text(self, session_id: str, text: str) -> SupervisorReply:
        """
        Produce the next assistant turn for a user text message.

        Args:
            session_id: Session the message belongs to
            text: User message

        Returns:
            SupervisorReply; failures are reported as an apology, never raised
        """
        state = self._ensure_state(session_id)
        state.add_turn(ConversationTurn(type="text", role="user", content=text))
        profile = AGENT_PROFILES[state.current_agent]

        logger.info(
            f"[SUPERVISOR] Processing text - SessionId: {session_id}, "
            f"Agent: {profile.name}, Message: '{text}'"
        )

        if profile.direct_replies and self.should_handle_directly(text):
            reply = SupervisorReply(
                content=self.direct_response(text),
                metadata={"usedSupervisor": False},
            )
        else:
            try:
                answer = await self.next_response_from_supervisor(
                    text,
                    state.text_turns(),
                    instructions=get_instructions_for(profile, self.company_name),
                )
                filler = self.filler_phrase()
                reply = SupervisorReply(
                    content=f"{filler} {answer}",
                    metadata={"usedSupervisor": True, "fillerPhrase": filler},
                )
            except Exception as e:
                logger.error(
                    f"[SUPERVISOR] Failed to produce a response - SessionId: {session_id}, "
                    f"Error: {type(e).__name__}: {str(e)}",
                    exc_info=True,
                )
                reply = SupervisorReply(content=APOLOGY_REPLY, metadata={"error": True})

        state.add_turn(ConversationTurn(type="text", role="assistant", content=reply.content))
        logger.info(f"[SUPERVISOR] Response - SessionId: {session_id}, Content: '{reply.content}'")
        return reply

    async def process_audio(
        self,
        session_id: str,
        data: Optional[Union[bytes, str]],
        audio_format: str = "wav",
        sample_rate: Optional[int] = None,
    ) -> SupervisorReply:
        """Validate, transcribe, then answer an audio message like a text one."""
        try:
            audio = normalize_audio_payload(data)
        except AudioValidationError as e:
            logger.warning(f"[SUPERVISOR] Invalid audio payload - SessionId: {session_id}: {str(e)}")
            return SupervisorReply(content=str(e), metadata={"error": True})

        quality = validate_audio_quality(audio, audio_format)
        if not quality.is_valid:
            logger.warning(
                f"[SUPERVISOR] Audio quality issues - SessionId: {session_id}, Issues: {quality.issues}"
            )
            return SupervisorReply(
                content=(
                    f"There is a problem with the audio: {', '.join(quality.issues)}. "
                    f"{' '.join(quality.recommendations)}"
                ),
                metadata={"error": True, "qualityIssues": quality.issues},
            )

        try:
            transcription = await self.transcription.transcribe_audio(
                audio, audio_format, language=self.transcription_language
            )
        except TranscriptionError as e:
            return SupervisorReply(
                content=f"An error occurred while processing the audio: {str(e)}",
                metadata={"error": True, "errorMessage": str(e)},
            )

        if not transcription.text.strip():
            return SupervisorReply(content=UNCLEAR_AUDIO_REPLY, metadata={"transcriptionEmpty": True})

        # The transcript joins the history as the user's text turn
        reply = await self.process_text(session_id, transcription.text)
        reply.metadata = {
            **reply.metadata,
            "audioTranscription": {
                "originalText": transcription.text,
                "language": transcription.language,
                "duration": transcription.duration,
                "audioFormat": audio_format,
                "sampleRate": sample_rate,
            },
        }
        return reply

    def should_handle_directly(self, message: str) -> bool:
        """Whether the message is small talk answered from the static reply table."""
        lower = message.lower().strip()
        return any(
            indicator in lower
            for indicator in GREETING_INDICATORS + THANKS_INDICATORS + REPEAT_INDICATORS
        )

    def direct_response(self, message: str) -> str:
        lower = message.lower().strip()
        if lower in OPENING_GREETINGS:
            return f"Hi, you've reached {self.company_name}, how can I help you?"
        if any(greeting in lower for greeting in GREETING_INDICATORS):
            return GREETING_REPLY
        if any(thanks in lower for thanks in THANKS_INDICATORS):
            return THANKS_REPLY
        if any(repeat in lower for repeat in REPEAT_INDICATORS):
            return REPEAT_REPLY
        return FALLBACK_REPLY

    def filler_phrase(self) -> str:
        return self._rng.choice(FILLER_PHRASES)

    async def next_response_from_supervisor(
        self,
        relevant_context: str,
        history: List[Dict[str, Any]],
        instructions: Optional[str] = None,
    ) -> str:
        """
        Run the supervisor completion exchange, executing tool calls locally.

        Args:
            relevant_context: Latest user message
            history: Prior text turns in completion-call message shape
            instructions: System instructions; the supervisor's by default

        Returns:
            Final answer text

        Raises:
            SupervisorError: the exchange exceeded the tool-call bound or produced no text
        """
        input_items: List[Dict[str, Any]] = [
            {
                "type": "message",
                "role": "system",
                "content": instructions or get_supervisor_instructions(self.company_name),
            },
            {
                "type": "message",
                "role": "user",
                "content": get_supervisor_user_prompt(history, relevant_context),
            },
        ]

        response = await self._create_response(input_items)
        iterations = 0
        while True:
            output = getattr(response, "output", None) or []
            function_calls = [item for item in output if item.type == "function_call"]
            if not function_calls:
                break

            iterations += 1
            if iterations > self.max_tool_iterations:
                raise SupervisorError(
                    f"Tool-call loop exceeded {self.max_tool_iterations} iterations"
                )

            for call in function_calls:
                result = self.tools.execute(call.name, call.arguments)
                input_items.append(
                    {
                        "type": "function_call",
                        "call_id": call.call_id,
                        "name": call.name,
                        "arguments": call.arguments,
                    }
                )
                input_items.append(
                    {
                        "type": "function_call_output",
                        "call_id": call.call_id,
                        "output": json.dumps(result, ensure_ascii=False),
                    }
                )

            response = await self._create_response(input_items)

        final_text = "\n".join(
            "".join(part.text for part in (item.content or []) if part.type == "output_text")
            for item in output
            if item.type == "message"
        ).strip()
        if not final_text:
            raise SupervisorError("Supervisor returned no message text")
        return final_text

    async def _create_response(self, input_items: List[Dict[str, Any]]) -> Any:
        return await self.client.responses.create(
            model=self.model,
            input=input_items,
            tools=self.tools.schemas(),
            parallel_tool_calls=False,
        )

    def get_history(self, session_id: str) -> List[ConversationTurn]:
        """Conversation turns of a session, oldest first."""
        state = self._state(session_id)
        return list(state.conversation_history) if state else []

    def get_session_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        state = self._state(session_id)
        if state is None:
            return None
        return {
            "sessionId": session_id,
            "currentAgent": state.current_agent,
            "messageCount": len(state.conversation_history),
            "lastActivity": state.last_activity.isoformat(),
            "muted": state.muted,
        }

    def switch_agent(self, session_id: str, target_agent: str) -> bool:
        """Hand the session off to another agent label."""
        state = self._state(session_id)
        if state is None:
            logger.warning(f"[SUPERVISOR] Cannot switch agent, no conversation - SessionId: {session_id}")
            return False
        if target_agent not in AGENT_PROFILES:
            logger.warning(f"[SUPERVISOR] Unknown agent '{target_agent}' - SessionId: {session_id}")
            return False

        previous, state.current_agent = state.current_agent, target_agent
        state.add_turn(
            ConversationTurn(
                type="system",
                role="assistant",
                event="agent_switch",
                content=f"{previous} -> {target_agent}",
            )
        )
        logger.info(f"[SUPERVISOR] Agent switched {previous} -> {target_agent} - SessionId: {session_id}")
        return True

    def set_muted(self, session_id: str, muted: bool) -> bool:
        """Record the mute flag on an existing conversation."""
        state = self._state(session_id)
        if state is None:
            return False
        state.muted = muted
        state.touch()
        return True

    async def sweep(self, now: Optional[datetime] = None) -> List[str]:
        """Drop conversation state idle for longer than the coarse timeout."""
        cutoff = (now or utcnow()) - self.idle_timeout
        cleared = []
        for session in self.registry.all():
            if session.conversation is not None and session.conversation.last_activity < cutoff:
                session.conversation = None
                cleared.append(session.id)
        if cleared:
            logger.info(f"[SUPERVISOR] Cleared {len(cleared)} idle conversation(s)")
        return cleared

    def start(self) -> None:
        """Start the periodic conversation sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._run_sweeps())

    async def stop(self) -> None:
        """Stop the periodic conversation sweep."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_sweeps(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"[SUPERVISOR] Sweep failed - Error: {type(e).__name__}: {str(e)}", exc_info=True)

    def _state(self, session_id: str) -> Optional[ConversationState]:
        session = self.registry.get(session_id)
        return session.conversation if session else None

    def _ensure_state(self, session_id: str) -> ConversationState:
        session = self.registry.get(session_id)
        if session is None:
            # Unregistered callers get a throwaway conversation
            logger.warning(f"[SUPERVISOR] Session not registered - SessionId: {session_id}")
            return ConversationState()
        if session.conversation is None:
            session.conversation = ConversationState()
        return session.conversation
