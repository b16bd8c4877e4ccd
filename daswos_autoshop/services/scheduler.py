"""AutoShop scheduler - per-user state machine driving autonomous purchases.

States: idle -> active -> {expired, stopped, budget_exhausted}. The three
end states are terminal; a new ``start`` creates a new session.

Each active session owns one interval job on an APScheduler
``AsyncIOScheduler``. Every tick runs one selection cycle:

1. end time passed -> expired
2. window budget spent, or coin balance below the minimum item price -> budget_exhausted
3. ask the engine for a candidate (no match -> skip this tick)
4. gate it through the validator (reject -> recommendation rejected)
5. settle it through the ledger (approve -> recommendation purchased)

A failing cycle is logged and retried next tick. Only a failure to persist
the session itself ends it (stopped, with ``last_error`` set).
"""

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from daswos_autoshop.domain.exceptions import (
    NoMatchError,
    SessionAlreadyActiveError,
    SessionPersistenceError,
    StorageError,
)
from daswos_autoshop.domain.ledger import Ledger
from daswos_autoshop.domain.models import (
    AutoShopSession,
    CycleOutcome,
    Policy,
    Recommendation,
    SearchContext,
    SessionState,
)
from daswos_autoshop.domain.ports import RecommendationStore, SessionStore
from daswos_autoshop.domain.recommendation import RecommendationEngine, removed_product_ids
from daswos_autoshop.domain.validator import validate_purchase
from daswos_autoshop.infrastructure.observability.logging import log_cycle
from daswos_autoshop.infrastructure.observability.metrics import cycle_counter
from daswos_autoshop.services.purchasing import PurchaseExecutor
from daswos_autoshop.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

REASON_CYCLE_FAILED = "autoshop cycle failed"


def job_id(user_id: str) -> str:
    return f"autoshop:{user_id}"


class AutoShopScheduler:
    """Owns every AutoShop session in this process, keyed by user id"""

    def __init__(
        self,
        ledger: Ledger,
        engine: RecommendationEngine,
        recommendations: RecommendationStore,
        sessions: SessionStore,
        executor: PurchaseExecutor,
        interval_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.engine = engine
        self.recommendations = recommendations
        self.session_store = sessions
        self.executor = executor
        self.interval_seconds = interval_seconds
        self.clock = clock

        self._sessions: Dict[str, AutoShopSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._closing = False
        self._scheduler = self._build_scheduler()

    @staticmethod
    def _build_scheduler() -> AsyncIOScheduler:
        return AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # a late tick runs once, not once per missed interval
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone="UTC",
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(
        self,
        user_id: str,
        policy: Policy,
        duration: timedelta,
        search_context: Optional[SearchContext] = None,
    ) -> AutoShopSession:
        """
        Create an active session, run one cycle immediately, then keep ticking.

        Raises:
            SessionAlreadyActiveError: the user already has an active session
            SessionPersistenceError: the new session could not be saved
        """
        current = self._sessions.get(user_id)
        if current is not None and current.active:
            raise SessionAlreadyActiveError(f"AutoShop already active for user {user_id}")

        now = self.clock()
        session = AutoShopSession(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            state=SessionState.ACTIVE,
            start_time=now,
            end_time=now + duration,
            settings=policy,
            search_context=search_context or SearchContext(),
        )
        self._persist(session)
        self._register(session)
        logger.info(
            "AutoShop session started",
            extra={"user_id": user_id, "session_id": session.session_id, "end_time": session.end_time.isoformat()},
        )

        await self.run_cycle(user_id)
        if session.active:
            self._schedule(user_id)
        return replace(session)

    async def stop(self, user_id: str) -> Optional[AutoShopSession]:
        """
        Stop the user's session. Idempotent: stopping a session that is not
        active changes nothing. A cycle already running may finish; no new
        cycle starts once this returns.
        """
        session = self._sessions.get(user_id)
        if session is None:
            return self.session_store.get(user_id)

        if session.active:
            session.state = SessionState.STOPPED
            logger.info("AutoShop session stopped", extra={"user_id": user_id, "session_id": session.session_id})
            try:
                self._persist(session)
            except SessionPersistenceError as e:
                session.last_error = str(e)
                logger.error(f"Stopped session could not be saved: {e}", extra={"user_id": user_id})

        self._unschedule(user_id)
        return replace(session)

    def status(self, user_id: str) -> Optional[AutoShopSession]:
        session = self._sessions.get(user_id)
        if session is not None:
            return replace(session)
        return self.session_store.get(user_id)

    def is_scheduled(self, user_id: str) -> bool:
        """Whether a cycle job is registered for the user"""
        return self._scheduler.get_job(job_id(user_id)) is not None

    async def resume(self) -> int:
        """Re-attach jobs for sessions persisted as active (e.g. after a restart)"""
        try:
            persisted = self.session_store.list_active()
        except StorageError as e:
            logger.error(f"Could not load active AutoShop sessions: {e}")
            return 0

        resumed = 0
        for session in persisted:
            if self.is_scheduled(session.user_id):
                continue
            self._register(session)
            await self.run_cycle(session.user_id)
            if session.active:
                self._schedule(session.user_id)
            resumed += 1
        logger.info(f"Resumed {resumed} AutoShop sessions")
        return resumed

    async def shutdown(self) -> None:
        """Stop all jobs without changing session state, so they resume on restart"""
        self._closing = True
        try:
            self._scheduler.remove_all_jobs()
            # Let in-flight cycles finish; they hold the user's lock
            for lock in list(self._locks.values()):
                async with lock:
                    pass
            if self._scheduler.running:
                self._scheduler.shutdown(wait=True)
                self._scheduler = self._build_scheduler()
        finally:
            self._closing = False

    # ── Cycle ─────────────────────────────────────────────────────────────────

    async def run_cycle(self, user_id: str) -> CycleOutcome:
        """Run one selection cycle for the user's session"""
        lock = self._locks.get(user_id)
        if lock is None or self._closing:
            return CycleOutcome.INACTIVE

        async with lock:
            session = self._sessions.get(user_id)
            if session is None or not session.active or self._closing:
                return CycleOutcome.INACTIVE

            start_time = time.time()
            outcome, detail = await self._cycle(session)
            session.last_cycle_at = self.clock()

            try:
                self._persist(session)
            except SessionPersistenceError as e:
                session.state = SessionState.STOPPED
                session.last_error = str(e)
                outcome, detail = CycleOutcome.STOPPED, str(e)
                logger.error(f"AutoShop session ended, state not saved: {e}", extra={"user_id": user_id})

            if not session.active:
                self._unschedule(user_id)

            duration_ms = (time.time() - start_time) * 1000
            cycle_counter.labels(outcome=outcome.value).inc()
            log_cycle(user_id, session.session_id, outcome.value, duration_ms, detail)
            return outcome

    async def _cycle(self, session: AutoShopSession) -> Tuple[CycleOutcome, Optional[str]]:
        now = self.clock()
        policy = session.settings
        user_id = session.user_id
        recommendation: Optional[Recommendation] = None

        if now > session.end_time:
            session.state = SessionState.EXPIRED
            return CycleOutcome.EXPIRED, None

        try:
            if session.spent_this_window >= policy.budget_limit:
                session.state = SessionState.BUDGET_EXHAUSTED
                return CycleOutcome.BUDGET_EXHAUSTED, "budget limit reached"
            if policy.use_coins and self.ledger.balance(user_id) < policy.min_item_price:
                session.state = SessionState.BUDGET_EXHAUSTED
                return CycleOutcome.BUDGET_EXHAUSTED, "balance below minimum item price"

            excluded = removed_product_ids(self.recommendations, user_id)
            try:
                proposal = await self.engine.propose(user_id, policy, session.search_context, excluded=excluded)
            except NoMatchError as e:
                return CycleOutcome.NO_MATCH, str(e)

            recommendation = self.recommendations.add(proposal.recommendation)
            spending = self.ledger.spending_snapshot(user_id, now)
            decision = validate_purchase(recommendation, proposal.product, policy, spending, session)

            if not decision.approved:
                self.executor.reject(recommendation, decision.reason)
                return CycleOutcome.REJECTED, decision.reason

            result = await self.executor.execute(recommendation, proposal.product, policy, session.session_id)
            if not result.success:
                return CycleOutcome.REJECTED, result.reason

            session.spent_this_window += proposal.product.price
            session.purchase_count_this_window += 1
            session.last_error = None
            return CycleOutcome.PURCHASED, proposal.product.id

        except Exception as e:
            # Catalog outages, storage hiccups and validator bugs end this tick only
            session.last_error = str(e)
            logger.error(f"AutoShop cycle failed: {e}", extra={"user_id": user_id, "session_id": session.session_id})
            if recommendation is not None:
                self._abandon(recommendation)
            return CycleOutcome.FAILED, str(e)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _abandon(self, recommendation: Recommendation) -> None:
        """Close a recommendation a failed cycle left open, so no pending row outlives its tick"""
        try:
            self.executor.reject(recommendation, REASON_CYCLE_FAILED)
        except StorageError as e:
            logger.error(
                f"Could not reject abandoned recommendation: {e}",
                extra={"user_id": recommendation.user_id, "recommendation_id": recommendation.id},
            )

    def _register(self, session: AutoShopSession) -> None:
        self._sessions[session.user_id] = session
        self._locks.setdefault(session.user_id, asyncio.Lock())

    def _schedule(self, user_id: str) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        self._scheduler.add_job(
            self.run_cycle,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=job_id(user_id),
            name=f"AutoShop cycle for {user_id}",
            args=[user_id],
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def _unschedule(self, user_id: str) -> None:
        if self.is_scheduled(user_id):
            self._scheduler.remove_job(job_id(user_id))

    def _persist(self, session: AutoShopSession) -> None:
        try:
            self.session_store.save(session)
        except StorageError as e:
            raise SessionPersistenceError(f"Could not persist AutoShop session {session.session_id}: {e}") from e
