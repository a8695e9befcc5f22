"""Request orchestrator: the façade that runs chat and apply requests end to end."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Literal, Mapping, Sequence

from ...chat.ghost_mask import GhostMaskSession, collect_chips, describe_missing, diff_missing, restore
from ...chat.message_model import ApplyOutcome, ChatMessage, ChatSession, MessageMetadata
from ...chat.request_types import detect_request_type, extract_web_search_query
from ...chat.session_registry import SessionRegistry
from ...chat.suggestions import append_block
from ...core.ranges import TextRange
from ...editor.anchors import (
    AnchorDescriptor,
    ApplyAnchorResolver,
    DocumentHandle,
    capture_descriptor,
)
from ...events import (
    ApplyBlocked,
    DiffPreviewRequested,
    EventBus,
    MessagesRemoved,
    ProjectSettingsChanged,
    StateChanged,
    StatusMessage,
    StreamFailed,
    StreamFinalized,
    StreamStarted,
    SuggestionOffered,
)
from ...services.glossary import GlossaryEntry, GlossaryLookup, build_glossary_query, search_glossary
from ...services.persistence import PersistenceScheduler, PersistSnapshot, Timer
from ...services.settings import EngineSettings
from ...services.storage import ChatStorage, PersistedSettings
from ...utils.logging import setup_logging
from ..errors import ModelStreamError, RequestCancelled
from .cancellation import CancellationToken
from .commands import (
    Abort,
    ApplyRequest,
    Command,
    EngineState,
    Finalize,
    ReplayMessage,
    SendApplyRequest,
    SendMessage,
    TokenReceived,
    ToolEvent,
    ToolsUsed,
)
from .message_builder import MessageBuilder, extract_replacement
from .model_types import ChatPayload, ModelStreamer
from .streaming import StreamingCoordinator
from .tool_tracker import ToolCallTracker

LOGGER = logging.getLogger(__name__)

TRANSLATE_REDIRECT_MESSAGE = (
    "Translation requests in chat need a translator persona, translation rules or "
    "project context first. Add them in the chat settings, or select text in the "
    "document and use Apply to translate it in place."
)
WEB_SEARCH_DISABLED_MESSAGE = (
    "Web search is turned off for this project. Enable it in the chat settings and try again."
)
NO_SELECTION_MESSAGE = "Select the text you want to change first."

_TITLE_CHARS = 20

ContextProvider = Callable[[Sequence[str]], str]


class RequestOrchestrator:
    """Runs conversational and apply requests against a model collaborator.

    One orchestrator serves one editor window.  It owns the session registry,
    the streaming coordinator, the apply-anchor resolver and the persistence
    scheduler, and reports everything it does on the event bus.  At most one
    request is in flight; starting another one aborts it.

    Events Emitted:
        - StateChanged: After every phase change
        - StatusMessage: Human-readable progress text
        - StreamStarted / StreamFinalized / StreamFailed: Request lifecycle
        - SuggestionOffered: A reply proposes a rule or context snippet
        - DiffPreviewRequested / ApplyBlocked: Outcome of an apply request
        - ProjectSettingsChanged: Persona, rules or toggles changed
    """

    def __init__(
        self,
        streamer: ModelStreamer,
        *,
        storage: ChatStorage | None = None,
        glossary: GlossaryLookup | None = None,
        bus: EventBus | None = None,
        settings: EngineSettings | None = None,
        document: DocumentHandle | None = None,
        timer: Timer | None = None,
        context_provider: ContextProvider | None = None,
        glossary_domain: str | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            streamer: Model collaborator streaming replies.
            storage: Durable storage; nothing is persisted when omitted.
            glossary: Optional glossary lookup.
            bus: Event bus; a private one is created when omitted.
            settings: Engine settings; defaults are used when omitted.
            document: Default document handle for apply requests.
            timer: Timer driving the persistence debounce.
            context_provider: Returns plain text for attached block ids;
                defaults to slicing the document by its block offsets.
            glossary_domain: Domain filter forwarded to the glossary.
        """
        self._streamer = streamer
        self._storage = storage
        self._glossary = glossary
        self._bus = bus or EventBus()
        self._settings = settings or EngineSettings()
        self._document = document
        self._context_provider = context_provider
        self._glossary_domain = glossary_domain

        self._tracker = ToolCallTracker()
        self._coordinator = StreamingCoordinator(
            self._commit_stream,
            bus=self._bus,
            tracker=self._tracker,
            finalize_wait_seconds=self._settings.finalize_wait_seconds,
        )
        self._anchors = ApplyAnchorResolver(document)
        self._builder = MessageBuilder(max_recent_messages=self._settings.max_recent_messages)
        self._registry = SessionRegistry(
            bus=self._bus,
            max_sessions=self._settings.max_sessions,
            max_messages_per_session=self._settings.max_messages_per_session,
            summary_threshold=self._settings.summary_threshold,
            on_change=self._on_registry_change,
        )
        self._scheduler: PersistenceScheduler | None = None
        if storage is not None:
            self._scheduler = PersistenceScheduler(
                storage,
                self._persist_snapshot,
                lambda: self._loaded_project_id,
                timer=timer,
                delay=self._settings.persist_debounce_seconds,
            )

        self._project_id: str | None = None
        self._loaded_project_id: str | None = None
        self._hydration_generation = 0
        self._is_hydrating = False
        self._project_settings = PersistedSettings()
        self._attachments: list[dict[str, Any]] = []
        self._request_seq = 0
        self._is_loading = False
        self._status_message: str | None = None
        self._error: str | None = None
        self._last_glossary: tuple[GlossaryEntry, ...] = ()
        self._anchor_owner: str | None = None

        self._bus.subscribe(MessagesRemoved, self._on_messages_removed)

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        *,
        streamer: ModelStreamer | None = None,
        storage: ChatStorage | None = None,
        glossary: GlossaryLookup | None = None,
        bus: EventBus | None = None,
        document: DocumentHandle | None = None,
        glossary_domain: str | None = None,
        configure_logging: bool = True,
    ) -> RequestOrchestrator:
        """Build an orchestrator for a host editor from loaded settings.

        Engine logging is configured from ``settings`` unless
        ``configure_logging`` is false, and an :class:`~parley.ai.client.AIClient`
        is created when no ``streamer`` is given.
        """

        if configure_logging:
            setup_logging(settings)
        if streamer is None:
            from ..client import AIClient

            streamer = AIClient(settings.client_settings())
        LOGGER.debug("Orchestrator created for model %s", settings.model)
        return cls(
            streamer,
            storage=storage,
            glossary=glossary,
            bus=bus,
            settings=settings,
            document=document,
            glossary_domain=glossary_domain,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def coordinator(self) -> StreamingCoordinator:
        return self._coordinator

    @property
    def anchors(self) -> ApplyAnchorResolver:
        return self._anchors

    @property
    def scheduler(self) -> PersistenceScheduler | None:
        return self._scheduler

    @property
    def project_settings(self) -> PersistedSettings:
        return self._project_settings

    @property
    def attachments(self) -> tuple[Mapping[str, Any], ...]:
        return tuple(self._attachments)

    @property
    def state(self) -> EngineState:
        """Immutable snapshot of the orchestrator's current state."""
        coordinator = self._coordinator
        return EngineState(
            project_id=self._project_id,
            active_session_id=self._registry.active_session_id,
            session_ids=self._registry.session_ids,
            is_loading=self._is_loading,
            is_hydrating=self._is_hydrating,
            is_finalizing=coordinator.is_finalizing,
            stream_state=coordinator.state.value,
            streaming_message_id=coordinator.message_id,
            streaming_content=coordinator.content if coordinator.message_id else "",
            tools_in_progress=self._tracker.in_progress,
            status_message=self._status_message,
            error=self._error,
            last_injected_glossary=self._last_glossary,
        )

    def attach_document(self, document: DocumentHandle | None) -> None:
        self._document = document
        self._anchors.attach(document)
        self._anchor_owner = None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def dispatch(self, command: Command) -> Any:
        """Route a typed command to the matching operation."""
        if isinstance(command, SendMessage):
            return await self.send_message(command.text)
        if isinstance(command, ReplayMessage):
            return await self.replay_message(command.message_id)
        if isinstance(command, SendApplyRequest):
            return await self.send_apply_request(command.request)
        if isinstance(command, Abort):
            return self.abort()
        if isinstance(command, Finalize):
            message_id = self._coordinator.message_id
            committed = await self._coordinator.finalize(
                token=self._coordinator.current_token, content=command.content
            )
            if committed and message_id is not None:
                message = self._registry.find_message(message_id)
                self._bus.publish(StreamFinalized(message_id=message_id, content=message.content if message else ""))
                self._finish_request()
            return committed
        if isinstance(command, (TokenReceived, ToolEvent, ToolsUsed)):
            return self._coordinator.handle(command)
        raise TypeError(f"Unsupported command: {type(command).__name__}")

    async def send_message(self, text: str) -> str | None:
        """Send a chat message from the composer.

        Returns:
            The id of the stored user message, or ``None`` for blank input.
        """
        content = (text or "").strip()
        if not content:
            return None
        await self._coordinator.wait_until_settled()
        session_id = self._ensure_session()
        session = self._registry.get(session_id)
        history = list(session.messages) if session is not None else []
        attachments, self._attachments = self._attachments, []

        message_id = self._registry.append_message(session_id, "user", content)
        if session is not None and not any(message.role == "user" for message in history):
            self._auto_title(session, content)
        await self._respond(session_id, content, history, attachments)
        return message_id

    async def replay_message(self, message_id: str) -> bool:
        """Regenerate the reply to a user message, dropping everything after it."""
        message = self._registry.find_message(message_id)
        session = self._registry.session_of(message_id)
        if message is None or session is None or message.role != "user":
            LOGGER.debug("Replay ignored for %s", message_id)
            return False
        await self._coordinator.wait_until_settled()
        index = session.index_of(message_id)
        history = list(session.messages[:index])
        self._registry.truncate_after(message_id)
        if self._registry.active_session_id != session.id:
            self._registry.switch(session.id)
        await self._respond(session.id, message.content, history, [])
        return True

    async def send_apply_request(self, request: ApplyRequest) -> ApplyOutcome | None:
        """Ask the model to rewrite the selection (or document) and validate the result.

        The reply is restored, stripped of code fences or quotes and checked
        for every protected token of the source text.  Only then is the
        captured anchor resolved against the live document.  A diff preview
        is requested when both checks pass; otherwise the message records why
        the edit cannot be applied.

        Returns:
            The outcome stored on the assistant message, or ``None`` when no
            reply was produced.
        """
        instruction = (request.instruction or "").strip()
        if not instruction:
            return None
        document = request.document or self._document
        await self._coordinator.wait_until_settled()

        if request.scope == "document":
            descriptor = AnchorDescriptor.for_document()
            source_text = (document.get_text() if document is not None else "") or ""
        else:
            descriptor = request.descriptor
            if descriptor is None and document is not None:
                descriptor = capture_descriptor(document, window=self._settings.anchor_window_chars)
            source_text = descriptor.selection_text if descriptor is not None else ""
        if descriptor is None or not source_text.strip():
            self._set_status(NO_SELECTION_MESSAGE)
            self._publish_state()
            return None

        required = collect_chips(source_text)
        session_id = self._ensure_session()
        user_message_id = self._registry.append_message(session_id, "user", instruction)
        seq = self._begin_request()
        anchor = self._anchors.create(descriptor, document=document)
        self._anchor_owner = user_message_id
        mask_session = GhostMaskSession()
        try:
            glossary = await self._lookup_glossary(source_text, "")
            if seq != self._request_seq:
                return None
            payload = self._builder.build_apply(
                instruction=instruction,
                descriptor=descriptor,
                source_text=source_text,
                session=mask_session,
                persona=self._project_settings.persona,
                rules=self._project_settings.rules,
                project_context=self._project_settings.project_context,
                glossary=glossary,
            )
            result = await self._run_stream(session_id, payload, mask_session, request_type="apply")
            if result is None:
                return None
            message_id, restored, token = result
            replacement = extract_replacement(restored, source_text)
            outcome = self._evaluate_apply(descriptor, replacement, required, document)
            committed = await self._coordinator.finalize(
                token=token, content=replacement, metadata={"apply": outcome}
            )
            if not committed:
                return None
            self._bus.publish(StreamFinalized(message_id=message_id, content=replacement))
            if outcome.appliable:
                self._bus.publish(
                    DiffPreviewRequested(
                        message_id=message_id,
                        start_offset=outcome.start_offset or 0,
                        end_offset=outcome.end_offset or 0,
                        replacement=replacement,
                        scope=outcome.scope,
                    )
                )
            else:
                LOGGER.info("Apply blocked for %s: %s", message_id, outcome.blocked_reason)
                self._bus.publish(
                    ApplyBlocked(
                        message_id=message_id,
                        reason=outcome.blocked_reason or "",
                        missing_chips=outcome.missing_chips,
                    )
                )
            self._finish_request()
            return outcome
        finally:
            if self._anchors.pending is anchor:
                self._anchors.clear()
                self._anchor_owner = None

    def abort(self) -> bool:
        """Cancel the in-flight request without reporting an error.

        Returns:
            ``True`` if a request was in flight.
        """
        self._request_seq += 1
        message_id = self._coordinator.abort()
        if message_id is not None:
            self._mark_cancelled(message_id)
        was_loading = self._is_loading
        self._is_loading = False
        self._status_message = None
        self._publish_state()
        return message_id is not None or was_loading

    async def edit_message(self, message_id: str, content: str, *, resend: bool = True) -> bool:
        """Edit a message in place; edited user messages are sent again by default."""
        self.abort()
        if not self._registry.edit_message(message_id, content):
            return False
        message = self._registry.find_message(message_id)
        if resend and message is not None and message.role == "user":
            await self.replay_message(message_id)
        return True

    def delete_message_from(self, message_id: str) -> list[str]:
        """Delete a message and everything after it, aborting any request first."""
        self.abort()
        return self._registry.truncate_from(message_id)

    # ------------------------------------------------------------------
    # Project settings
    # ------------------------------------------------------------------

    def set_persona(self, text: str) -> None:
        self._update_settings(persona=text or "")

    def set_rules(self, text: str) -> None:
        self._update_settings(rules=text or "")

    def set_project_context(self, text: str) -> None:
        self._update_settings(project_context=text or "")

    def append_to_rules(self, snippet: str) -> None:
        self._update_settings(rules=append_block(self._project_settings.rules, snippet))

    def append_to_project_context(self, snippet: str) -> None:
        self._update_settings(project_context=append_block(self._project_settings.project_context, snippet))

    def set_composer_draft(self, text: str) -> None:
        self._update_settings(composer_draft=text or "")

    def set_web_search_enabled(self, enabled: bool) -> None:
        self._update_settings(web_search_enabled=bool(enabled))

    def set_translation_context_session(self, session_id: str | None) -> None:
        self._update_settings(translation_context_session_id=session_id)

    def accept_suggestion(self, message_id: str, target: Literal["rule", "context"]) -> bool:
        """Save a reply's suggestion after the user confirmed it.

        Returns:
            ``True`` if text was appended to the rules or project context.
        """
        message = self._registry.find_message(message_id)
        suggestion = message.metadata.suggestion if message is not None else None
        if suggestion is None:
            return False
        text = suggestion.text_for(target)
        if not text:
            return False
        if target == "rule":
            self.append_to_rules(text)
            self._registry.update_message(message_id, metadata={"rules_added": True})
        else:
            self.append_to_project_context(text)
            self._registry.update_message(message_id, metadata={"context_added": True})
        return True

    def add_attachment(self, name: str, text: str) -> None:
        """Attach text to the next message only."""
        self._attachments.append({"name": name, "text": text})

    def clear_attachments(self) -> None:
        self._attachments = []

    # ------------------------------------------------------------------
    # Project lifecycle
    # ------------------------------------------------------------------

    async def hydrate_for_project(self, project_id: str | None) -> bool:
        """Switch to ``project_id`` and load its sessions and settings.

        The outgoing project is flushed first.  A load that finishes after a
        newer call started is discarded.

        Returns:
            ``True`` if this call's state was installed.
        """
        if project_id and project_id == self._loaded_project_id and not self._is_hydrating:
            return True
        self._hydration_generation += 1
        generation = self._hydration_generation
        self.abort()
        if self._scheduler is not None:
            self._scheduler.cancel_pending()
            if self._loaded_project_id is not None:
                await self._scheduler.flush_now()
            self._scheduler.begin_hydration()
        if generation != self._hydration_generation:
            return False

        LOGGER.debug("Hydrating chat state for project %s (generation %d)", project_id, generation)
        self._is_hydrating = True
        self._project_id = project_id
        self._loaded_project_id = None
        self._error = None
        self._last_glossary = ()
        self._attachments = []
        self._registry.reset()
        self._project_settings = PersistedSettings()
        self._publish_state()
        try:
            if not project_id or self._storage is None:
                self._loaded_project_id = project_id
                return True
            sessions, settings = await asyncio.gather(
                self._storage.load_sessions(project_id),
                self._storage.load_settings(project_id),
            )
            if generation != self._hydration_generation:
                LOGGER.info("Discarding stale chat load for project %s", project_id)
                return False
            self._registry.replace_all(sessions)
            self._project_settings = settings or PersistedSettings()
            self._loaded_project_id = project_id
            return True
        except Exception as exc:
            if generation == self._hydration_generation:
                LOGGER.warning("Failed to load chat state for project %s: %s", project_id, exc)
                self._error = f"Failed to load chat history: {exc}"
            return False
        finally:
            if generation == self._hydration_generation:
                self._is_hydrating = False
                if self._scheduler is not None:
                    self._scheduler.end_hydration()
                self._publish_state()

    async def flush(self) -> None:
        """Write pending state now (e.g. before the host application exits)."""
        if self._scheduler is not None and self._loaded_project_id is not None:
            await self._scheduler.flush_now()

    # ------------------------------------------------------------------
    # Request pipeline
    # ------------------------------------------------------------------

    async def _respond(
        self,
        session_id: str,
        content: str,
        history: Sequence[ChatMessage],
        attachments: Sequence[Mapping[str, Any]],
    ) -> None:
        settings = self._project_settings
        web_query = extract_web_search_query(content)
        if web_query is not None and not settings.web_search_enabled:
            self._reply_fixed(session_id, WEB_SEARCH_DISABLED_MESSAGE, request_type="question")
            return
        request_type = detect_request_type(content)
        if request_type == "translate" and not self._has_translation_setup():
            LOGGER.debug("Translate request without persona, rules or context; redirecting")
            self._reply_fixed(session_id, TRANSLATE_REDIRECT_MESSAGE, request_type="translate")
            return

        seq = self._begin_request()
        session = self._registry.get(session_id)
        user_text = web_query if web_query is not None else content
        context_text = self._context_text(session)
        glossary = await self._lookup_glossary(user_text, context_text)
        if seq != self._request_seq:
            LOGGER.debug("Request superseded during context lookup")
            return

        mask_session = GhostMaskSession()
        payload = self._builder.build_chat(
            user_text=user_text,
            history=history,
            session=mask_session,
            request_type="question",
            persona=settings.persona,
            rules=settings.rules,
            project_context=settings.project_context,
            glossary=glossary,
            context_text=context_text,
            attachments=attachments,
            web_search=web_query is not None or settings.web_search_enabled,
        )
        result = await self._run_stream(session_id, payload, mask_session, request_type=request_type)
        if result is None:
            return
        message_id, restored, token = result
        suggestion = self._tracker.resolve_suggestion(restored)
        committed = await self._coordinator.finalize(
            token=token,
            content=restored,
            metadata={"suggestion": suggestion} if suggestion is not None else None,
        )
        if not committed:
            return
        self._bus.publish(StreamFinalized(message_id=message_id, content=restored))
        if suggestion is not None:
            self._bus.publish(SuggestionOffered(message_id=message_id, suggestion=suggestion))
        self._finish_request()

    async def _run_stream(
        self,
        session_id: str,
        payload: ChatPayload,
        mask_session: GhostMaskSession,
        *,
        request_type: str,
    ) -> tuple[str, str, CancellationToken] | None:
        """Stream one reply into a new assistant placeholder.

        Returns:
            ``(message_id, restored_text, token)`` when the model finished, or
            ``None`` when the request was cancelled or failed.
        """
        model = payload.model or self._settings.model
        message_id = self._registry.append_message(
            session_id,
            "assistant",
            "",
            MessageMetadata(model=model, request_type=request_type),
        )
        if message_id is None:
            self._is_loading = False
            self._publish_state()
            return None
        token = self._coordinator.start(
            message_id,
            model=model,
            transform=lambda raw: restore(raw, mask_session),
        )
        generation = token.generation
        self._bus.publish(StreamStarted(session_id=session_id, message_id=message_id, generation=generation))
        self._set_status("Waiting for the model...")
        self._publish_state()

        final_text: str | None = None
        try:
            async for event in self._streamer.invoke(payload, token):
                token.raise_if_cancelled()
                if not self._coordinator.is_current(token):
                    raise RequestCancelled(generation)
                if event.type == "token":
                    self._coordinator.handle(TokenReceived(event.text, generation))
                elif event.type == "tool.start" and event.tool_name:
                    self._coordinator.handle(ToolEvent("start", event.tool_name, event.arguments, generation))
                    self._set_status(ToolCallTracker.status_label(event.tool_name))
                elif event.type == "tool.end" and event.tool_name:
                    self._coordinator.handle(ToolEvent("end", event.tool_name, None, generation))
                elif event.type == "tools.used":
                    self._coordinator.handle(ToolsUsed(tuple(event.tools), generation))
                elif event.type == "done":
                    final_text = event.text or self._coordinator.raw_content
                    break
                elif event.type == "cancelled":
                    raise RequestCancelled(generation)
                elif event.type == "error":
                    raise ModelStreamError(event.error or "Model request failed")
        except RequestCancelled:
            self._on_cancelled(token, message_id)
            return None
        except asyncio.CancelledError:
            self._on_cancelled(token, message_id)
            raise
        except Exception as exc:
            await self._on_failed(token, message_id, exc)
            return None

        if token.cancelled or not self._coordinator.is_current(token):
            self._on_cancelled(token, message_id)
            return None
        if final_text is None:
            final_text = self._coordinator.raw_content
        self._set_status("Finishing reply...")
        return message_id, restore(final_text, mask_session), token

    def _evaluate_apply(
        self,
        descriptor: AnchorDescriptor,
        replacement: str,
        required: Sequence[str],
        document: DocumentHandle | None,
    ) -> ApplyOutcome:
        missing = diff_missing(required, replacement)
        if missing:
            return ApplyOutcome(
                appliable=False,
                scope=descriptor.scope,
                blocked_reason=describe_missing(missing),
                replacement=replacement,
                missing_chips=tuple(missing),
            )
        resolution = self._anchors.resolve(document)
        if not resolution.success:
            return ApplyOutcome(
                appliable=False,
                scope=descriptor.scope,
                blocked_reason=resolution.reason,
                replacement=replacement,
            )
        return ApplyOutcome(
            appliable=True,
            scope=descriptor.scope,
            start_offset=resolution.start_offset,
            end_offset=resolution.end_offset,
            replacement=replacement,
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def _on_cancelled(self, token: CancellationToken, message_id: str) -> None:
        LOGGER.debug("Request generation %s cancelled", token.generation)
        if self._coordinator.is_current(token) and self._coordinator.message_id == message_id:
            self._coordinator.abort()
        self._mark_cancelled(message_id)
        self._finish_request()

    async def _on_failed(self, token: CancellationToken, message_id: str, exc: Exception) -> None:
        error = str(exc) or type(exc).__name__
        LOGGER.warning("Model request failed: %s", error)
        failed_id = await self._coordinator.fail(error, token=token)
        if failed_id is None:
            self._mark_cancelled(message_id)
            self._finish_request()
            return
        self._bus.publish(StreamFailed(message_id=failed_id, error=error))
        self._attachments = []
        self._error = error
        self._finish_request()

    def _mark_cancelled(self, message_id: str) -> None:
        message = self._registry.find_message(message_id)
        if message is None or message.metadata.cancelled:
            return
        self._registry.update_message(message_id, metadata={"cancelled": True, "tools_in_progress": ()})

    def _finish_request(self) -> None:
        if not self._coordinator.is_active:
            self._is_loading = False
            self._status_message = None
        self._publish_state()

    def _reply_fixed(self, session_id: str, text: str, *, request_type: str) -> None:
        self._registry.append_message(session_id, "assistant", text, {"request_type": request_type})
        self._finish_request()

    def _begin_request(self) -> int:
        self._request_seq += 1
        self._is_loading = True
        self._error = None
        self._set_status("Checking context...")
        self._publish_state()
        return self._request_seq

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_session(self) -> str:
        active = self._registry.active_session_id
        if active is not None:
            return active
        return self._registry.create()

    def _auto_title(self, session: ChatSession, content: str) -> None:
        title = content.replace("\n", " ").strip()
        if len(title) > _TITLE_CHARS:
            title = f"{title[:_TITLE_CHARS]}..."
        self._registry.rename(session.id, title)

    def _has_translation_setup(self) -> bool:
        settings = self._project_settings
        return any(value.strip() for value in (settings.persona, settings.rules, settings.project_context))

    def _context_text(self, session: ChatSession | None) -> str:
        block_ids = list(session.context_block_ids) if session is not None else []
        if not block_ids:
            return ""
        if self._context_provider is not None:
            return self._context_provider(block_ids) or ""
        document = self._document
        if document is None:
            return ""
        try:
            text = document.get_text() or ""
            offsets = document.get_block_offsets() or {}
        except Exception:  # pragma: no cover - editor handles are external
            LOGGER.debug("Context blocks unavailable", exc_info=True)
            return ""
        parts = []
        for block_id in block_ids:
            raw = offsets.get(block_id)
            if raw is not None:
                parts.append(TextRange.from_value(raw).slice_of(text))
        return "\n\n".join(part for part in parts if part.strip())

    async def _lookup_glossary(self, text: str, context_text: str) -> list[GlossaryEntry]:
        if self._glossary is None:
            self._last_glossary = ()
            return []
        self._set_status("Searching glossary...")
        hits = await search_glossary(
            self._glossary,
            self._project_id,
            build_glossary_query(text, context_text),
            domain=self._glossary_domain,
            limit=self._settings.glossary_limit,
        )
        self._last_glossary = tuple(hits)
        return hits

    async def _commit_stream(self, message_id: str, content: str, patch: Mapping[str, Any]) -> None:
        if not self._registry.update_message(message_id, content=content, metadata=patch):
            LOGGER.debug("Streamed message %s no longer exists; commit dropped", message_id)

    def _update_settings(self, **changes: Any) -> None:
        settings = self._project_settings
        changed = tuple(name for name, value in changes.items() if getattr(settings, name) != value)
        if not changed:
            return
        for name in changed:
            setattr(settings, name, changes[name])
        self._bus.publish(ProjectSettingsChanged(project_id=self._project_id, fields=changed))
        self._notify_dirty()

    def _persist_snapshot(self) -> PersistSnapshot | None:
        if self._loaded_project_id is None:
            return None
        return PersistSnapshot(
            project_id=self._loaded_project_id,
            sessions=list(self._registry.sessions),
            settings=self._project_settings,
        )

    def _notify_dirty(self) -> None:
        if self._scheduler is not None:
            self._scheduler.notify_dirty()

    def _on_registry_change(self) -> None:
        self._notify_dirty()

    def _on_messages_removed(self, event: MessagesRemoved) -> None:
        removed = frozenset(event.message_ids)
        self._coordinator.release(removed)
        if self._anchor_owner is not None and self._anchor_owner in removed:
            self._anchors.clear()
            self._anchor_owner = None

    def _set_status(self, text: str | None) -> None:
        self._status_message = text
        if text:
            self._bus.publish(StatusMessage(text=text))

    def _publish_state(self) -> None:
        self._bus.publish(StateChanged(state=self.state))


__all__ = [
    "NO_SELECTION_MESSAGE",
    "RequestOrchestrator",
    "TRANSLATE_REDIRECT_MESSAGE",
    "WEB_SEARCH_DISABLED_MESSAGE",
]
