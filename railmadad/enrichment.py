# Deferred AI enrichment of newly created / resubmitted complaints

import asyncio
import logging
import weakref
from typing import Callable, Dict, List, Optional

from . import config
from .models import AnalysisOutcome, AnalysisResult, ComplaintBase, Status, now_utc, touch
from .store import ComplaintRepository

logger = logging.getLogger(__name__)

Listener = Callable[[ComplaintBase], None]


def _strong_ref(listener: Listener) -> Callable[[], Listener]:
    return lambda: listener


def apply_analysis(complaint: ComplaintBase, outcome: AnalysisOutcome) -> ComplaintBase:
    """Return ``complaint`` with the analysis attached and routed."""
    analysis = AnalysisResult(
        id=f"analysis-{complaint.id}",
        complaint_id=complaint.id,
        category=outcome.category,
        urgency_score=outcome.urgency_score,
        summary=outcome.summary,
        keywords=outcome.keywords,
        suggested_department=outcome.suggested_department,
        analysis_timestamp=now_utc(),
    )
    return complaint.model_copy(update={
        "status": Status.IN_PROGRESS,
        "assigned_to": outcome.suggested_department or config.DEFAULT_DEPARTMENT,
        "analysis": analysis,
        "updated_at": touch(complaint.created_at, complaint.updated_at),
    })


class EnrichmentPipeline:
    """Runs the analysis service a short delay after a complaint is written.

    One task per complaint id; scheduling again replaces the earlier task.
    Each task works on the snapshot it reads when it wakes up, so an edit to
    the same record made while the analysis is in flight is overwritten when
    the result lands. Results for records deleted in the meantime are dropped.
    """

    def __init__(self, repository: ComplaintRepository, analysis, delay: Optional[float] = None):
        self.repository = repository
        self.analysis = analysis
        self.delay = config.ENRICHMENT_DELAY_SECONDS if delay is None else delay
        self._tasks: Dict[str, asyncio.Task] = {}
        self._listeners: List[Callable[[], Optional[Listener]]] = []

    def add_listener(self, listener: Listener) -> None:
        """Register ``listener``. Bound methods are held weakly, so a
        controller that is dropped without ``close()`` stops listening."""
        if hasattr(listener, "__func__"):
            ref = weakref.WeakMethod(listener)
        else:
            ref = _strong_ref(listener)
        self._listeners.append(ref)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners = [ref for ref in self._listeners if ref() not in (None, listener)]

    def listeners(self) -> List[Listener]:
        """Live listeners; dead weak references are pruned."""
        self._listeners = [ref for ref in self._listeners if ref() is not None]
        return [ref() for ref in self._listeners]

    def schedule(self, complaint_id: str) -> asyncio.Task:
        self.cancel(complaint_id)
        task = asyncio.get_running_loop().create_task(
            self._run(complaint_id), name=f"enrich-{complaint_id}")
        self._tasks[complaint_id] = task
        task.add_done_callback(lambda t, cid=complaint_id: self._forget(cid, t))
        return task

    def _forget(self, complaint_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(complaint_id) is task:
            del self._tasks[complaint_id]

    def cancel(self, complaint_id: str) -> bool:
        task = self._tasks.pop(complaint_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def pending(self) -> List[str]:
        return [cid for cid, task in self._tasks.items() if not task.done()]

    async def join(self) -> None:
        """Wait until every scheduled task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        self._tasks.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, complaint_id: str) -> Optional[ComplaintBase]:
        await asyncio.sleep(self.delay)
        try:
            snapshot = self.repository.get(complaint_id)
            if snapshot is None:
                logger.info("Complaint %s is gone; skipping analysis", complaint_id)
                return None
            outcome = await self.analysis.analyze(snapshot)
            enriched = apply_analysis(snapshot, outcome)
            if not self.repository.exists(complaint_id):
                logger.warning("Complaint %s was deleted during analysis; dropping result", complaint_id)
                return None
            self.repository.merge_write([enriched])
        except Exception as e:
            logger.error("Error in AI analysis for %s: %s", complaint_id, e)
            return None

        logger.info("Complaint %s analysed: %s (urgency %s) -> %s", complaint_id,
                    enriched.analysis.category, enriched.analysis.urgency_score, enriched.assigned_to)
        for listener in self.listeners():
            try:
                listener(enriched)
            except Exception as e:
                logger.error("Enrichment listener failed for %s: %s", complaint_id, e)
        return enriched
