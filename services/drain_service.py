# ============================================================================
# DRAIN COORDINATOR
# ============================================================================
# EPOCH: 1 - METRIC DRAIN
# STATUS: Service - Per-build drain state machine
# PURPOSE: Stream each drainable build's events into the metrics sink
# CREATED: 17 OCT 2026
# ============================================================================
"""
Drain Coordinator

For each drainable build, in order:

    SELECTED -> STREAMING -> COMPLETED
                          -> FAILED
             -> SKIPPED   (claim held elsewhere, or already drained
                           by another worker once claimed)

- the stream opens at ordinal 0 and is closed on every exit path
- events are pumped one at a time: read, translate, emit
- on end of stream the build's drained flag is set in one UPDATE
- any read/translate/emit/update error leaves the flag false

Failure policy:
- fail-fast (default): the first failed build stops the run
- continue_on_error: remaining builds are drained, failures are
  collected and raised together at the end

Either way the next run retries every build still marked undrained.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.contracts import DrainState
from core.logging import log_context
from core.models import Build
from core.observability import MetricEmitter
from infrastructure.locking import LockService
from repositories import BuildRepository, EndOfBuildEventStream, close_quietly
from services.translator import EventTranslator

logger = logging.getLogger(__name__)


# ============================================================================
# RESULTS & ERRORS
# ============================================================================

@dataclass
class BuildDrainResult:
    """Outcome of one build's drain attempt."""
    build_id: int
    build_name: str
    state: DrainState = DrainState.SELECTED
    events_read: int = 0
    events_skipped: int = 0
    metrics_emitted: int = 0
    error: Optional[str] = None


@dataclass
class DrainSummary:
    """Outcome of one run."""
    builds_selected: int = 0
    results: List[BuildDrainResult] = field(default_factory=list)

    def _count(self, state: DrainState) -> int:
        return sum(1 for r in self.results if r.state == state)

    @property
    def completed(self) -> int:
        return self._count(DrainState.COMPLETED)

    @property
    def failed(self) -> int:
        return self._count(DrainState.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(DrainState.SKIPPED)

    @property
    def metrics_emitted(self) -> int:
        return sum(r.metrics_emitted for r in self.results)


class BuildDrainError(Exception):
    """A single build failed to drain. Its drained flag is still false."""

    def __init__(self, build: Build, stage: str, cause: BaseException, result: BuildDrainResult):
        self.build = build
        self.stage = stage
        self.cause = cause
        self.result = result
        super().__init__(
            f"failed to drain build {build.build_id} "
            f"({build.team_name}/{build.pipeline_name}/{build.job_name} #{build.name}) "
            f"during {stage}: {cause}"
        )


class DrainRunError(Exception):
    """One or more builds failed in continue_on_error mode."""

    def __init__(self, errors: List[BuildDrainError], summary: DrainSummary):
        self.errors = errors
        self.summary = summary
        super().__init__(
            f"{len(errors)} of {summary.builds_selected} builds failed to drain: "
            + "; ".join(str(e) for e in errors)
        )


# ============================================================================
# COORDINATOR
# ============================================================================

class DrainCoordinator:
    """Drains builds one at a time, events one at a time."""

    def __init__(
        self,
        build_repo: BuildRepository,
        translator: EventTranslator,
        emitter: MetricEmitter,
        lock_service: Optional[LockService] = None,
        mark_drained: bool = True,
        continue_on_error: bool = False,
    ):
        """
        Args:
            build_repo: Build store access
            translator: Event-to-metric translation policy
            emitter: Metrics sink
            lock_service: When set, each build is claimed before streaming
            mark_drained: Persist the drained flag on completion
            continue_on_error: Drain remaining builds after a failure
        """
        self.build_repo = build_repo
        self.translator = translator
        self.emitter = emitter
        self.lock_service = lock_service
        self.mark_drained = mark_drained
        self.continue_on_error = continue_on_error

    async def run(self) -> DrainSummary:
        """
        Drain every eligible build.

        Raises:
            Exception: selecting builds failed (nothing was drained)
            BuildDrainError: a build failed (fail-fast mode)
            DrainRunError: one or more builds failed (continue mode)
        """
        try:
            builds = await self.build_repo.get_drainable_builds()
        except Exception as e:
            logger.error(f"Failed to get drainable builds: {e}")
            raise

        summary = DrainSummary(builds_selected=len(builds))
        errors: List[BuildDrainError] = []

        for build in builds:
            try:
                result = await self.drain_build(build)
            except BuildDrainError as e:
                summary.results.append(e.result)
                if not self.continue_on_error:
                    raise
                errors.append(e)
                continue
            summary.results.append(result)

        if errors:
            raise DrainRunError(errors, summary)

        logger.info(
            f"Drain run finished: {summary.completed} completed, "
            f"{summary.skipped} skipped, {summary.metrics_emitted} metrics emitted"
        )
        return summary

    async def drain_build(self, build: Build) -> BuildDrainResult:
        """
        Drain one build, claiming it first when a lock service is set.

        Raises:
            BuildDrainError: on any failure; the stream is already closed
        """
        identity = build.identity()
        with log_context(
            session="drain-build",
            team=identity["team"],
            pipeline=identity["pipeline"],
            job=identity["job"],
            build=identity["build"],
        ):
            if self.lock_service is None:
                return await self._drain(build)

            result = BuildDrainResult(build_id=build.build_id, build_name=build.name)
            lock_name = LockService.build_drain_lock_name(build.build_id)
            try:
                async with self.lock_service.lock(lock_name) as lock:
                    if lock is None:
                        logger.info(f"Build {build.build_id} is being drained elsewhere, skipping")
                        result.state = DrainState.SKIPPED
                        return result
                    if await self.build_repo.is_drained(build):
                        logger.info(f"Build {build.build_id} was drained by another worker, skipping")
                        result.state = DrainState.SKIPPED
                        return result
                    return await self._drain(build)
            except BuildDrainError:
                raise
            except Exception as e:
                logger.error(f"Failed to claim build {build.build_id}: {e}")
                result.state = DrainState.FAILED
                result.error = str(e)
                raise BuildDrainError(build, "claim", e, result) from e

    def _fail(self, build: Build, result: BuildDrainResult, stage: str, error: Exception) -> BuildDrainError:
        result.state = DrainState.FAILED
        result.error = str(error)
        logger.error(
            f"Failed to drain build {build.build_id} during {stage} "
            f"after {result.metrics_emitted} metrics: {error}"
        )
        return BuildDrainError(build, stage, error, result)

    async def _drain(self, build: Build) -> BuildDrainResult:
        result = BuildDrainResult(build_id=build.build_id, build_name=build.name)

        try:
            stream = await self.build_repo.events(build, 0)
        except Exception as e:
            raise self._fail(build, result, "open-stream", e) from e

        result.state = DrainState.STREAMING
        stage = "read"
        try:
            while True:
                stage = "read"
                try:
                    event = await stream.next()
                except EndOfBuildEventStream:
                    break
                result.events_read += 1

                stage = "translate"
                metric = self.translator.translate(build, event)
                if metric is None:
                    result.events_skipped += 1
                    continue

                stage = "emit"
                with log_context(session="build-event"):
                    await self.emitter.emit(metric)
                result.metrics_emitted += 1
        except Exception as e:
            raise self._fail(build, result, stage, e) from e
        finally:
            await close_quietly(stream)

        if self.mark_drained:
            try:
                await self.build_repo.set_drained(build, True)
            except Exception as e:
                raise self._fail(build, result, "mark-drained", e) from e

        result.state = DrainState.COMPLETED
        logger.info(
            f"Drained build {build.build_id}: {result.events_read} events, "
            f"{result.metrics_emitted} metrics"
        )
        return result


__all__ = [
    "DrainCoordinator",
    "DrainSummary",
    "BuildDrainResult",
    "BuildDrainError",
    "DrainRunError",
]
