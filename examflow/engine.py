"""
Exam session orchestrator: the state machine that drives a timed, multi-phase exam.

Flow: LOADING -> START -> (PENDING) -> IN_PROGRESS -> submit -> IN_PROGRESS /
BREAK / COMPLETED. The grading service owns the session; every successful
response replaces it and decides the next phase. When a submission fails we
advance locally so the test-taker is never stuck, and flag the session as
desynchronized.
"""
import asyncio
import logging
from functools import partial
from typing import Dict, Optional

from examflow.config import FLOW_GATED, Settings
from examflow.dedup import RequestDeduplicator, default_deduplicator
from examflow.encoder import encode_submission
from examflow.errors import ExamNotFoundError, ExamServiceError, UnresolvedOptionError
from examflow.models import ExamSession, LifecycleState, PhaseDescriptor
from examflow.phases import (
    PHASE_PLAN,
    InternalPhase,
    is_question_phase,
    map_server_phase,
    next_phase,
    resolve_vocabulary,
)
from examflow.timer import CountdownTimer

logger = logging.getLogger(__name__)


class SessionListener:
    """Hooks for the UI shell. Override what you need; everything defaults to a no-op."""

    def state_changed(self, state: LifecycleState):
        pass

    def tick(self, remaining: int):
        pass

    def notify(self, level: str, message: str):
        pass

    def exam_not_found(self, exam_id: Optional[str]):
        pass

    def exam_completed(self, exam_id: str):
        pass


class SessionOrchestrator:
    """Owns lifecycle state, the active phase, the session and the answer map for one mounted exam."""

    TICK_INTERVAL = 1.0

    def __init__(self, client, settings: Optional[Settings] = None,
                 listener: Optional[SessionListener] = None,
                 deduplicator: Optional[RequestDeduplicator] = None,
                 tick_interval: float = TICK_INTERVAL):
        self.client = client
        self.settings = settings or Settings(base_url="")
        self.listener = listener or SessionListener()
        self.deduplicator = deduplicator if deduplicator is not None else default_deduplicator
        self.tick_interval = tick_interval
        self.vocabulary = resolve_vocabulary(self.settings.vocabulary)

        self.state = LifecycleState.LOADING
        self.exam_id: Optional[str] = None
        self.session: Optional[ExamSession] = None
        self.current_phase: Optional[InternalPhase] = None
        self.answers: Dict[str, str] = {}
        self.error: Optional[str] = None
        # True after a local fallback until the server confirms a phase again
        self.desynchronized = False

        self._initialized = False
        self._disposed = False
        self._submitting = False
        self._phase_timer: Optional[CountdownTimer] = None
        self._break_timer: Optional[CountdownTimer] = None
        self._auto_start: Optional[asyncio.TimerHandle] = None
        self._tasks = set()

    # ============= Read side =============

    @property
    def gated(self) -> bool:
        return self.settings.flow == FLOW_GATED

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def submitting(self) -> bool:
        return self._submitting

    @property
    def remaining_seconds(self) -> Optional[int]:
        timer = self._break_timer if self.state is LifecycleState.BREAK else self._phase_timer
        return timer.remaining if timer is not None else None

    def phase_descriptor(self) -> Optional[PhaseDescriptor]:
        """
        Describe the active phase from the latest session.

        None while there's no session, during the break, after the end, or
        when the session carries no questions for the phase's module.
        """
        if self.session is None or not is_question_phase(self.current_phase):
            return None
        module, part, minutes = PHASE_PLAN[self.current_phase]
        questions = self.session.questions_for_module(module)
        if not questions:
            logger.debug(f"No {module} questions in exam {self.exam_id} for {self.current_phase.name}")
            return None
        return PhaseDescriptor(phase=self.current_phase, module=module, part=part,
                               questions=questions, minutes=minutes)

    def phase_answers(self) -> Dict[str, str]:
        """Answers recorded for the active phase's questions only."""
        descriptor = self.phase_descriptor()
        if descriptor is None:
            return {}
        ids = set(descriptor.question_ids)
        return {qid: value for qid, value in self.answers.items() if qid in ids}

    # ============= Initialization =============

    async def initialize(self, exam_id: Optional[str] = None, session: Optional[ExamSession] = None):
        """
        Bring the orchestrator up once per mounted session.

        - session given: hand-off, no network call.
        - exam_id only: load it (deduplicated across instances).
        - neither: ask the service for a new exam.

        Repeated calls are ignored. Load failures end in ERROR or a
        not-found signal; they are not raised.
        """
        if self._initialized:
            logger.info("Already initialized, skipping duplicate load")
            return
        self._initialized = True

        if session is not None:
            if exam_id is not None and session.exam_id != exam_id:
                logger.warning(f"Hand-off session {session.exam_id} does not match exam id {exam_id}")
                self.listener.exam_not_found(exam_id)
                return
            logger.info(f"Loading exam {session.exam_id} from hand-off (progress={session.progress})")
            self._adopt(session)
            self._route(LifecycleState.START if self.gated else LifecycleState.IN_PROGRESS)
        elif exam_id is not None:
            await self._load(exam_id)
        else:
            await self._create()

    async def reload(self):
        """Retry affordance for the ERROR state: load the exam again from the service."""
        if self.state is not LifecycleState.ERROR:
            logger.info(f"Reload ignored in state {self.state.value}")
            return
        self.error = None
        if self.exam_id:
            await self._load(self.exam_id)
        else:
            await self._create()

    async def _load(self, exam_id: str):
        self.exam_id = exam_id
        if not exam_id or not str(exam_id).strip():
            logger.warning("Invalid exam ID, redirecting to not found")
            self.listener.exam_not_found(exam_id)
            return

        self._set_state(LifecycleState.LOADING)
        try:
            session = await self.deduplicator.load_once(
                f"exam_{exam_id}", partial(asyncio.to_thread, self.client.fetch_exam, exam_id))
        except ExamNotFoundError as e:
            if self._gone("load", exam_id):
                return
            logger.warning(f"Exam {exam_id} not found: {e}")
            self.listener.exam_not_found(exam_id)
            return
        except ExamServiceError as e:
            if self._gone("load", exam_id):
                return
            logger.error(f"Failed to fetch exam data for {exam_id}: {e}")
            self._fail("Failed to load exam data. Please try again.",
                       "Failed to get the exam. Please check your connection and try again.")
            return

        if self._gone("load", exam_id):
            return
        logger.info(f"✅ Exam {session.exam_id} loaded: progress={session.progress}, questions={len(session.questions)}")
        self._adopt(session)
        self.listener.notify("success", "Exam loaded successfully!")
        self._route(LifecycleState.START)

    async def _create(self):
        logger.info("🆕 No exam provided, requesting a new one")
        self._set_state(LifecycleState.LOADING)
        try:
            session = await asyncio.to_thread(self.client.create_exam)
        except ExamServiceError as e:
            if self._gone("create", None):
                return
            logger.error(f"Failed to get new exam: {e}")
            self._fail("Failed to load exam. Please try again.",
                       "Failed to start the exam. Please check your connection and try again.")
            return

        if self._gone("create", session.exam_id):
            return
        logger.info(f"✅ New exam {session.exam_id} created (progress={session.progress})")
        self._adopt(session)
        self.listener.notify("success", "Exam loaded successfully!")
        self._route(LifecycleState.START)

    async def _resync(self):
        """Re-read the session when the active phase has no questions to show."""
        logger.warning(f"Re-reading exam {self.exam_id}: no questions for {self.current_phase.name}")
        self._set_state(LifecycleState.LOADING)
        try:
            session = await self.deduplicator.load_once(
                f"exam_{self.exam_id}", partial(asyncio.to_thread, self.client.fetch_exam, self.exam_id))
        except ExamServiceError as e:
            if self._gone("resync", self.exam_id):
                return
            logger.error(f"Resync of exam {self.exam_id} failed: {e}")
            self._fail("Failed to load exam data. Please try again.",
                       "Lost track of the exam. Please reload.")
            return

        if self._gone("resync", self.exam_id):
            return
        self._adopt(session)
        if is_question_phase(self.current_phase) and self.phase_descriptor() is None:
            logger.error(f"Exam {self.exam_id} still has no questions for {self.current_phase.name}")
            self._fail("The exam has no questions for this section.", "Failed to load the next section.")
            return
        self._route(self._resume_state)

    # ============= User actions =============

    def start(self):
        """Leave the start screen (also fired by the auto-start grace timer)."""
        if self.state is not LifecycleState.START:
            logger.info(f"Start ignored in state {self.state.value}")
            return
        self._route(self._resume_state)

    def continue_phase(self):
        if self.state is not LifecycleState.PENDING:
            logger.info(f"Continue ignored in state {self.state.value}")
            return
        self._route(LifecycleState.IN_PROGRESS)

    def record_answer(self, question_id: str, value: Optional[str]) -> bool:
        """
        Store (or clear, with None/"") the answer to a question.

        Returns False while input is frozen (not in progress, or a submission
        is in flight). Unknown questions or options raise ValueError.
        """
        if self.state is not LifecycleState.IN_PROGRESS or self._submitting:
            logger.warning(f"Answer to {question_id} ignored in state {self.state.value}")
            return False
        self._store_answer(question_id, value)
        return True

    async def finish_phase(self, answers: Optional[Dict[str, str]] = None):
        """
        Submit the active phase and move to whatever the service says comes next.

        `answers` are merged into the answer map first. Only the active
        phase's questions are sent, one entry each.
        """
        if self._disposed:
            return
        if self.state is not LifecycleState.IN_PROGRESS or self._submitting:
            logger.info(f"Finish ignored in state {self.state.value} (submitting={self._submitting})")
            return
        descriptor = self.phase_descriptor()
        if descriptor is None:
            logger.error(f"Unable to get phase info for exam {self.exam_id} ({self.current_phase})")
            return

        for question_id, value in (answers or {}).items():
            self._store_answer(question_id, value)
        batch = encode_submission(descriptor.questions, self.answers)

        phase = self.current_phase
        self._stop_timers()
        self._submitting = True
        self._set_state(LifecycleState.LOADING)
        logger.info(f"Submitting {len(batch)} answers for exam {self.exam_id} {phase.name}")
        try:
            session = await asyncio.to_thread(self.client.submit, self.exam_id, batch)
        except ExamServiceError as e:
            if self._gone("submit", self.exam_id):
                return
            logger.error(f"Failed to submit answers for exam {self.exam_id} {phase.name}: {e}")
            self.listener.notify("error", "Failed to submit answers. Please check your connection.")
            self._advance_locally(phase)
            return
        finally:
            self._submitting = False

        if self._gone("submit", self.exam_id):
            return
        self._adopt(session)
        if self.current_phase is InternalPhase.BREAK:
            self.listener.notify("success", "Section completed! Time for a break.")
        elif self.current_phase is None:
            self.listener.notify("success", "Congratulations! Test completed successfully!")
        else:
            self.listener.notify("success", "Answers submitted successfully!")
        logger.info(f"Exam {self.exam_id} moved from {phase.name} to {session.progress}")
        self._route(self._resume_state)

    async def complete_break(self):
        """End the break (timer ran out or the test-taker skipped it) with an empty submission."""
        if self._disposed:
            return
        if self.state is not LifecycleState.BREAK or self._submitting:
            logger.info(f"Break completion ignored in state {self.state.value}")
            return

        self._stop_timers()
        self._submitting = True
        self._set_state(LifecycleState.LOADING)
        logger.info(f"Break over for exam {self.exam_id}, fetching the next module")
        try:
            session = await asyncio.to_thread(self.client.submit, self.exam_id, [])
        except ExamServiceError as e:
            if self._gone("complete_break", self.exam_id):
                return
            logger.error(f"Break completion failed for exam {self.exam_id}: {e}")
            self.listener.notify("error", "Failed to load Math module. Please check your connection.")
            self._advance_locally(InternalPhase.BREAK)
            return
        finally:
            self._submitting = False

        if self._gone("complete_break", self.exam_id):
            return
        self._adopt(session)
        if self.current_phase is InternalPhase.BREAK:
            logger.error(f"Exam {self.exam_id} still reports {session.progress} after the break")
            self._advance_locally(InternalPhase.BREAK)
            return
        self.listener.notify("success", "Math module loaded successfully!")
        self._route(self._resume_state)

    def dispose(self):
        """Tear down timers. Requests still in flight finish as no-ops."""
        if self._disposed:
            return
        logger.info(f"Disposing orchestrator for exam {self.exam_id}")
        self._disposed = True
        self._stop_timers()
        self._cancel_auto_start()

    # ============= Transitions =============

    @property
    def _resume_state(self) -> LifecycleState:
        return LifecycleState.PENDING if self.gated else LifecycleState.IN_PROGRESS

    def _adopt(self, session: ExamSession):
        self.session = session
        self.exam_id = session.exam_id
        self.current_phase = map_server_phase(session.progress, self.vocabulary)
        self.desynchronized = False

    def _route(self, target: LifecycleState):
        """Pick the state for the current phase; `target` applies to question phases."""
        if self.current_phase is None:
            self._complete()
        elif self.current_phase is InternalPhase.BREAK:
            self._begin_break()
        elif target is LifecycleState.IN_PROGRESS:
            self._begin_phase()
        else:
            self._stop_timers()
            self._set_state(target)

    def _advance_locally(self, from_phase: InternalPhase):
        successor = next_phase(from_phase)
        self.desynchronized = True
        logger.warning(
            f"Exam {self.exam_id}: advancing locally {from_phase.name} -> "
            f"{successor.name if successor else 'END'}; server progress is {self.session.progress if self.session else None}")
        self.current_phase = successor
        self._route(self._resume_state)

    def _begin_phase(self):
        self._stop_timers()
        descriptor = self.phase_descriptor()
        if descriptor is None:
            self._spawn(self._resync())
            return
        self._set_state(LifecycleState.IN_PROGRESS)
        logger.info(f"{descriptor.module} part {descriptor.part}: {descriptor.total_questions} questions, {descriptor.minutes} min")
        self._phase_timer = CountdownTimer(
            descriptor.seconds,
            on_tick=self._on_tick,
            on_expire=partial(self._on_phase_expired, descriptor.phase),
            interval=self.tick_interval,
            name=f"{self.exam_id}:{descriptor.phase.name}",
        )
        self._phase_timer.start()

    def _begin_break(self):
        self._stop_timers()
        self._set_state(LifecycleState.BREAK)
        self._break_timer = CountdownTimer(
            self.settings.break_minutes * 60,
            on_tick=self._on_tick,
            on_expire=self._on_break_expired,
            interval=self.tick_interval,
            name=f"{self.exam_id}:BREAK",
        )
        self._break_timer.start()

    def _complete(self):
        self._stop_timers()
        self._set_state(LifecycleState.COMPLETED)
        logger.info(f"🎉 Exam {self.exam_id} completed")
        self.listener.exam_completed(self.exam_id)

    def _fail(self, error: str, toast: str):
        self._stop_timers()
        self.error = error
        self._set_state(LifecycleState.ERROR)
        self.listener.notify("error", toast)

    def _set_state(self, state: LifecycleState):
        if state is self.state:
            return
        logger.info(f"Exam {self.exam_id}: {self.state.value} -> {state.value}")
        if self.state is LifecycleState.START:
            self._cancel_auto_start()
        self.state = state
        if state is LifecycleState.START:
            self._schedule_auto_start()
        self.listener.state_changed(state)

    # ============= Timers =============

    def _on_tick(self, remaining: int):
        try:
            self.listener.tick(remaining)
        except Exception:
            logger.exception(f"Listener tick failed for exam {self.exam_id} at {remaining}s")

    def _on_phase_expired(self, phase: InternalPhase):
        if self.current_phase is not phase or self.state is not LifecycleState.IN_PROGRESS:
            logger.debug(f"Stale expiry for {phase.name} ignored")
            return
        logger.info(f"Time is up for exam {self.exam_id} {phase.name}, submitting")
        self._spawn(self._finish_expired(phase))

    async def _finish_expired(self, phase: InternalPhase):
        if self.current_phase is phase:
            await self.finish_phase()

    def _on_break_expired(self):
        if self.state is LifecycleState.BREAK:
            self._spawn(self.complete_break())

    def _stop_timers(self):
        for timer in (self._phase_timer, self._break_timer):
            if timer is not None:
                timer.stop()
        self._phase_timer = None
        self._break_timer = None

    def _schedule_auto_start(self):
        self._cancel_auto_start()
        loop = asyncio.get_running_loop()
        self._auto_start = loop.call_later(self.settings.start_grace_seconds, self._auto_start_fired)

    def _auto_start_fired(self):
        self._auto_start = None
        if self._disposed:
            return
        logger.info(f"Auto-starting exam {self.exam_id} after {self.settings.start_grace_seconds}s")
        self.start()

    def _cancel_auto_start(self):
        if self._auto_start is not None:
            self._auto_start.cancel()
            self._auto_start = None

    # ============= Helpers =============

    def _store_answer(self, question_id: str, value: Optional[str]):
        question = self.session.find_question(question_id) if self.session else None
        if question is None:
            raise ValueError(f"Question {question_id!r} is not part of exam {self.exam_id}")
        if value is None or value == "":
            self.answers.pop(question_id, None)
            return
        if question.is_choice and question.option_value(str(value)) is None:
            raise UnresolvedOptionError(question_id, str(value))
        self.answers[question_id] = str(value)

    def _gone(self, operation: str, exam_id: Optional[str]) -> bool:
        if self._disposed:
            logger.info(f"Orchestrator disposed; dropping {operation} result for exam {exam_id}")
        return self._disposed

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background step for exam {self.exam_id} failed: {exc}", exc_info=exc)

    async def wait_idle(self):
        """Wait for background steps (timer-driven submissions, resyncs) to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
