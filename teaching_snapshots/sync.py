"""
Cross-Store Synchronizer
========================

Pushes restored Act 2 results into the topic-specific state containers
that other parts of the UI read directly (timeline analysis, claim
analysis). The containers are injected as setters; the engine never
imports them.

Synchronization is fire-and-forget from the restorer's point of view: the
primary restored state is returned first and the dependent containers
converge shortly after. Each setter runs as its own task and a failing
setter is logged without affecting the others.
"""

import asyncio
import copy
import inspect
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .aliases import resolve

logger = logging.getLogger(__name__)

MAIN_SCOPE = "main"

# setter(scope, data); may return an awaitable
Setter = Callable[[str, Any], Any]

_pending: Set[asyncio.Task] = set()


@dataclass
class DependentSinks:
    """One optional setter per dependent state container"""
    timeline_analysis: Optional[Setter] = None
    claim_analysis: Optional[Setter] = None


async def _run_sync_task(name: str, setter: Setter, scope: str, data: Any) -> bool:
    try:
        result = setter(scope, copy.deepcopy(data))
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Syncing {name} to its store failed (non-fatal): {e}", exc_info=True)
        return False

    logger.info(f"Synced {name} to its store (scope={scope})")
    return True


async def sync_to_all_stores(
    db_session: Any,
    restored_state: Dict[str, Any],
    sinks: DependentSinks,
) -> None:
    """
    Propagate restored sub-objects into the dependent containers.

    Never raises: every task is awaited independently and failures are
    only logged.
    """
    tasks: List[Awaitable[bool]] = []

    timeline_analysis = resolve(db_session, "act2_timeline_analysis")
    if timeline_analysis is not None and sinks.timeline_analysis is not None:
        tasks.append(_run_sync_task("timelineAnalysis", sinks.timeline_analysis, MAIN_SCOPE, timeline_analysis))

    claim_analysis = resolve(db_session, "act2_claim_analysis")
    if claim_analysis is not None and sinks.claim_analysis is not None:
        tasks.append(_run_sync_task("claimAnalysis", sinks.claim_analysis, MAIN_SCOPE, claim_analysis))

    if restored_state.get("story_chapters"):
        logger.debug("Story chapters are restored with the primary state, no sync needed")

    if not tasks:
        return

    results = await asyncio.gather(*tasks, return_exceptions=True)
    failed = sum(1 for result in results if result is not True)
    if failed:
        logger.warning(f"{failed} of {len(results)} store sync tasks failed")


def _on_sync_done(task: asyncio.Task) -> None:
    _pending.discard(task)
    if task.cancelled():
        logger.warning("Store sync task was cancelled")
    elif task.exception() is not None:
        logger.error(f"Store sync task crashed: {task.exception()}")


def schedule_sync(
    db_session: Any,
    restored_state: Dict[str, Any],
    sinks: DependentSinks,
) -> Union[asyncio.Task, threading.Thread]:
    """
    Start sync_to_all_stores without waiting for it.

    Runs as a task on the current event loop; when called outside a loop
    the coroutine gets its own loop on a daemon thread.
    """
    coro = sync_to_all_stores(db_session, restored_state, sinks)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        thread = threading.Thread(target=asyncio.run, args=(coro,), name="snapshot-store-sync", daemon=True)
        thread.start()
        return thread

    task = loop.create_task(coro)
    _pending.add(task)
    task.add_done_callback(_on_sync_done)
    return task


async def drain_pending_syncs() -> None:
    """Wait for scheduled sync tasks on the current loop (shutdown, tests)"""
    loop = asyncio.get_running_loop()
    pending = [task for task in _pending if task.get_loop() is loop]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
