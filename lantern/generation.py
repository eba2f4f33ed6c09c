"""Streaming generation controller: one cancellable session at a time."""

import itertools
import logging
import queue
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Union

from .cancellation import CancellationHandle, CancellationToken
from .config import DEFAULT_CHAT_SYSTEM_PROMPT, DEFAULT_STOP_SEQUENCES
from .errors import (
    GenerationBusyError,
    GenerationCancelled,
    GenerationTimeoutError,
    ModelNotLoadedError,
)
from .llm import GenerativeModel
from .models import (
    Aborted,
    Done,
    Errored,
    GenerationEvent,
    GenerationParams,
    GenerationResult,
    GenerationState,
    Initiate,
    Token,
    TokenProgress,
)


logger = logging.getLogger(__name__)

Messages = Union[str, Dict[str, str], Sequence[Dict[str, str]]]
TokenCallback = Callable[[str, TokenProgress], None]
DoneCallback = Callable[[GenerationResult], None]
ErrorCallback = Callable[[BaseException], None]


class GenerationSession:
    """Bookkeeping for one in-flight generation."""

    def __init__(self, session_id: int, handle: CancellationHandle, params: GenerationParams):
        self.id = session_id
        self.handle = handle
        # Always a token this controller may fire, even when the caller's is borrowed
        self.signal = handle.linked_signal()
        self.params = params
        self.text = ""
        self.tokens = 0
        self.started_at = time.perf_counter()
        self.first_token_at: Optional[float] = None
        self.stop_reason: Optional[str] = None
        self.finished = False
        self.lock = threading.RLock()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    def time_to_first_token_ms(self) -> Optional[float]:
        if self.first_token_at is None:
            return None
        return (self.first_token_at - self.started_at) * 1000

    def claim_finish(self) -> bool:
        """Mark the session finished. Only the first caller gets True."""
        with self.lock:
            if self.finished:
                return False
            self.finished = True
            return True


class GenerationController:
    """
    Drives a generative model for one session at a time.

    State moves ``IDLE -> GENERATING -> COMPLETED | ABORTED | ERRORED -> IDLE``.
    The terminal state is what ``on_done`` and ``on_error`` observe. Starting
    a second session before the first is torn down raises
    ``GenerationBusyError`` straight away.

    Example:
        >>> controller = GenerationController(OpenAIChatModel(base_url="http://localhost:8080/v1"))
        >>> result = controller.generate_stream(
        ...     [{"role": "user", "content": "Hi"}],
        ...     on_token=lambda text, progress: print(text, end=""),
        ... )
    """

    def __init__(
        self,
        model: Optional[GenerativeModel] = None,
        *,
        default_params: Optional[GenerationParams] = None,
        stop_sequences: Optional[Sequence[str]] = None,
        system_prompt: str = DEFAULT_CHAT_SYSTEM_PROMPT,
    ):
        self.model = model
        self.default_params = default_params or GenerationParams()
        self.stop_sequences: List[str] = list(
            DEFAULT_STOP_SEQUENCES if stop_sequences is None else stop_sequences
        )
        self.default_system_prompt = system_prompt

        self._state = GenerationState.IDLE
        self._state_lock = threading.Lock()
        self._session: Optional[GenerationSession] = None
        self._session_ids = itertools.count(1)
        self._metrics = {
            "tokens_generated": 0,
            "generation_time": 0.0,
            "time_to_first_token": None,
        }

    # ============ State ============

    @property
    def state(self) -> GenerationState:
        return self._state

    def is_active(self) -> bool:
        return self._session is not None

    def get_metrics(self) -> Dict[str, Optional[float]]:
        return dict(self._metrics)

    # ============ Generation ============

    def generate_stream(
        self,
        messages: Messages,
        params: Optional[GenerationParams] = None,
        on_token: Optional[TokenCallback] = None,
        on_done: Optional[DoneCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        cancellation: Optional[CancellationToken] = None,
        system_prompt: Optional[str] = None,
        on_start: Optional[Callable[[Initiate], None]] = None,
    ) -> GenerationResult:
        """
        Run one streaming generation session to completion.

        Exactly one of ``on_done`` or ``on_error`` fires per session. A
        cancelled, length-limited or timed-out session returns its partial
        text with ``aborted=True``; a timeout is also reported to
        ``on_error``. Any other failure goes to ``on_error`` and is re-raised.

        Args:
            messages: Chat messages, a single message dict, or a plain string
            params: Generation parameters (controller defaults if None)
            on_token: Called with each accepted fragment and running totals
            on_done: Called with the final (or partial, aborted) result
            on_error: Called with the error for failures and timeouts
            cancellation: Caller-owned token. The controller only observes it
            system_prompt: Used when ``messages`` carries no system message
            on_start: Called with an Initiate event once the session is live

        Returns:
            GenerationResult

        Raises:
            GenerationBusyError: Another session is active
            ModelNotLoadedError: No model is attached
        """
        with self._state_lock:
            if self._session is not None:
                raise GenerationBusyError()
            if self.model is None:
                raise ModelNotLoadedError()

            handle = (
                CancellationHandle.borrow(cancellation)
                if cancellation is not None
                else CancellationHandle.create()
            )
            session = GenerationSession(next(self._session_ids), handle, params or self.default_params)
            self._session = session
            self._state = GenerationState.GENERATING

        timer = threading.Timer(session.params.max_time, self._on_timeout, args=(session, on_error))
        timer.daemon = True
        try:
            formatted = self.format_messages(messages, system_prompt)
            logger.info(
                "Session %d started (%d messages, %s cancellation)",
                session.id, len(formatted), "owned" if handle.owned else "borrowed",
            )
            if on_start:
                on_start(Initiate(session_id=session.id, messages=formatted))
            timer.start()
            return self._run(session, formatted, on_token, on_done, on_error)
        finally:
            timer.cancel()
            # A timer that already fired finishes its on_error before the session is torn down
            if timer.is_alive():
                timer.join()
            session.signal.detach()
            with self._state_lock:
                self._session = None
                self._state = GenerationState.IDLE

    def _run(
        self,
        session: GenerationSession,
        messages: List[Dict[str, str]],
        on_token: Optional[TokenCallback],
        on_done: Optional[DoneCallback],
        on_error: Optional[ErrorCallback],
    ) -> GenerationResult:
        def on_text(fragment: str) -> None:
            self._accept_fragment(session, fragment, on_token)

        try:
            output = self.model.generate(messages, session.params, on_text, session.signal)

            if output.kind == "stream":
                try:
                    for fragment in output.fragments:
                        if session.signal.is_cancelled:
                            break
                        on_text(fragment)
                finally:
                    output.close()
                final_text = session.text
            else:
                final_text = output.text
        except Exception as exc:
            if isinstance(exc, GenerationCancelled) or session.signal.is_cancelled:
                return self._finish_aborted(session, on_done)
            return self._finish_error(session, exc, on_error)

        if session.stop_reason == "stop_sequence":
            return self._finish_completed(session, session.text, on_done)
        if session.signal.is_cancelled or session.stop_reason == "timeout":
            return self._finish_aborted(session, on_done)
        return self._finish_completed(session, self.trim_stop_sequence(final_text), on_done)

    def _accept_fragment(
        self,
        session: GenerationSession,
        fragment: str,
        on_token: Optional[TokenCallback],
    ) -> None:
        # Bookkeeping only; the lock keeps tokens from landing after the terminal event
        with session.lock:
            if session.finished or session.signal.is_cancelled:
                return

            if session.first_token_at is None:
                session.first_token_at = time.perf_counter()

            session.text += fragment
            session.tokens += 1

            if self.should_stop(session.text):
                session.text = self.trim_stop_sequence(session.text)
                session.stop_reason = "stop_sequence"
            elif len(session.text) > session.params.max_length:
                session.text = session.text[:session.params.max_length]
                session.stop_reason = "max_length"

            if session.stop_reason is not None:
                logger.debug("Session %d ending early: %s", session.id, session.stop_reason)
                session.signal.cancel()
                return

            if on_token:
                on_token(fragment, TokenProgress(
                    total_tokens=session.tokens,
                    text=session.text,
                    time_elapsed=session.elapsed_ms(),
                ))

    def _on_timeout(self, session: GenerationSession, on_error: Optional[ErrorCallback]) -> None:
        # Claim the terminal event before waking the worker so it cannot report first
        with session.lock:
            if session.finished or session.signal.is_cancelled:
                return
            session.stop_reason = "timeout"
            session.finished = True

        logger.warning("Session %d timed out after %.1fs", session.id, session.params.max_time)
        self._enter_terminal(session, GenerationState.ERRORED)
        self._record_metrics(session)
        try:
            if on_error:
                on_error(GenerationTimeoutError(session.params.max_time))
        finally:
            session.signal.cancel()

    # ============ Outcomes ============

    def _result(self, session: GenerationSession, text: str, aborted: bool) -> GenerationResult:
        elapsed = session.elapsed_ms()
        return GenerationResult(
            text=text,
            tokens=session.tokens,
            time=elapsed,
            time_to_first_token=session.time_to_first_token_ms(),
            tokens_per_second=session.tokens / (elapsed / 1000) if elapsed > 0 else 0.0,
            aborted=aborted,
            stop_reason=session.stop_reason or ("cancelled" if aborted else "completed"),
        )

    def _enter_terminal(self, session: GenerationSession, state: GenerationState) -> None:
        # Visible to callbacks; generate_stream resets to IDLE once the session is torn down
        with self._state_lock:
            if self._session is session:
                self._state = state

    def _record_metrics(self, session: GenerationSession) -> None:
        self._metrics = {
            "tokens_generated": session.tokens,
            "generation_time": session.elapsed_ms(),
            "time_to_first_token": session.time_to_first_token_ms(),
        }

    def _finish_completed(
        self, session: GenerationSession, text: str, on_done: Optional[DoneCallback]
    ) -> GenerationResult:
        if not session.claim_finish():
            # The timer claimed the finish and reports the timeout itself
            return self._result(session, session.text, aborted=True)
        self._enter_terminal(session, GenerationState.COMPLETED)
        self._record_metrics(session)
        result = self._result(session, text, aborted=False)
        logger.info(
            "Session %d completed: %d tokens in %.0fms (%.1f tok/s)",
            session.id, result.tokens, result.time, result.tokens_per_second,
        )
        if on_done:
            on_done(result)
        return result

    def _finish_aborted(self, session: GenerationSession, on_done: Optional[DoneCallback]) -> GenerationResult:
        if not session.claim_finish():
            return self._result(session, session.text, aborted=True)
        self._enter_terminal(session, GenerationState.ABORTED)
        self._record_metrics(session)
        result = self._result(session, session.text, aborted=True)
        logger.info("Session %d aborted (%s) after %d tokens", session.id, result.stop_reason, result.tokens)
        if on_done:
            on_done(result)
        return result

    def _finish_error(
        self, session: GenerationSession, error: Exception, on_error: Optional[ErrorCallback]
    ) -> GenerationResult:
        if session.claim_finish():
            self._enter_terminal(session, GenerationState.ERRORED)
            self._record_metrics(session)
            logger.exception("Session %d failed", session.id)
            if on_error:
                on_error(error)
        raise error

    # ============ Control ============

    def stop(self) -> bool:
        """
        Stop the active session, if any.

        Fires the controller's own token only. A caller-supplied token is
        never cancelled from here.

        Returns:
            True if a session was signalled
        """
        session = self._session
        if session is None:
            return False
        with session.lock:
            if session.stop_reason is None:
                session.stop_reason = "cancelled"
        session.signal.cancel()
        logger.info("Session %d stop requested", session.id)
        return True

    def generate(self, messages: Messages, params: Optional[GenerationParams] = None) -> GenerationResult:
        """Blocking generation without callbacks."""
        return self.generate_stream(messages, params)

    def stream_events(
        self,
        messages: Messages,
        params: Optional[GenerationParams] = None,
        cancellation: Optional[CancellationToken] = None,
        system_prompt: Optional[str] = None,
    ) -> Iterator[GenerationEvent]:
        """
        Run a session on a worker thread and return an iterator of its typed events.

        Order is ``Initiate``, any number of ``Token``, then one of ``Done``,
        ``Aborted`` or ``Errored``. Closing the iterator early stops the session.

        Raises:
            GenerationBusyError: Another session is active (raised here, not
                from the iterator)
            ModelNotLoadedError: No model is attached
        """
        events: "queue.Queue" = queue.Queue()
        finished = object()
        started = threading.Event()
        reported = threading.Event()
        startup_error: List[BaseException] = []

        def on_start(event: Initiate) -> None:
            events.put(event)
            started.set()

        def on_error(error: BaseException) -> None:
            reported.set()
            events.put(Errored(error))

        def worker() -> None:
            try:
                self.generate_stream(
                    messages,
                    params,
                    on_token=lambda text, progress: events.put(Token(text=text, progress=progress)),
                    on_done=lambda result: events.put(Aborted(result) if result.aborted else Done(result)),
                    on_error=on_error,
                    cancellation=cancellation,
                    system_prompt=system_prompt,
                    on_start=on_start,
                )
            except Exception as exc:
                if not started.is_set():
                    startup_error.append(exc)
                elif not reported.is_set():
                    events.put(Errored(exc))
            finally:
                started.set()
                events.put(finished)

        thread = threading.Thread(target=worker, name="lantern-generation", daemon=True)
        thread.start()
        started.wait()
        if startup_error:
            raise startup_error[0]

        first = events.get()
        session_id = first.session_id if isinstance(first, Initiate) else None
        return self._drain(first, events, finished, session_id)

    def _drain(self, first, events: "queue.Queue", finished: object, session_id: Optional[int]) -> Iterator[GenerationEvent]:
        completed = False
        event = first
        try:
            while event is not finished:
                yield event
                event = events.get()
            completed = True
        finally:
            session = self._session
            if not completed and session is not None and session.id == session_id:
                self.stop()

    # ============ Messages & stop sequences ============

    def format_messages(self, messages: Messages, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
        """Normalise messages and prepend a system prompt when none is present."""
        if isinstance(messages, str):
            formatted = [{"role": "user", "content": messages}]
        elif isinstance(messages, dict):
            formatted = [{"role": messages.get("role", "user"), "content": messages["content"]}]
        else:
            formatted = [{"role": m.get("role", "user"), "content": m["content"]} for m in messages]

        if not any(m["role"] == "system" for m in formatted):
            prompt = system_prompt or self.default_system_prompt
            if prompt:
                formatted.insert(0, {"role": "system", "content": prompt})
        return formatted

    def should_stop(self, text: str) -> bool:
        return any(seq in text for seq in self.stop_sequences)

    def trim_stop_sequence(self, text: str) -> str:
        """Cut ``text`` at the earliest stop sequence occurrence."""
        cut = len(text)
        for seq in self.stop_sequences:
            index = text.find(seq)
            if index != -1:
                cut = min(cut, index)
        return text[:cut]

    def set_system_prompt(self, prompt: str) -> None:
        self.default_system_prompt = prompt

    def set_stop_sequences(self, sequences: Sequence[str]) -> None:
        self.stop_sequences = list(sequences)

    def add_stop_sequence(self, sequence: str) -> None:
        if sequence not in self.stop_sequences:
            self.stop_sequences.append(sequence)

    def remove_stop_sequence(self, sequence: str) -> None:
        if sequence in self.stop_sequences:
            self.stop_sequences.remove(sequence)
