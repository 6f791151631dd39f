"""Per-scene checkpointing for the audio and visuals stages.

The Scene Tracker walks a project's scenes in index order and runs one
track's operation (narration audio or scene video) on at most `cap` of them
per invocation, one at a time. Each scene's outcome is recorded on the scene
itself, so an invocation that stops early loses nothing already finished.

Rules:
    - a track that is done (sub_state=done with a ref) is skipped
    - a track whose retry_count has reached max_retries is skipped forever
    - the cap counts scenes attempted, not scenes that succeeded
    - failed attempts are added to retry_count; it never decreases
    - if the invocation budget runs out before a scene starts, that scene and
      every later one stay as they are for the next invocation
    - an attempt cut off at the deadline is not a failure: it adds nothing
      to retry_count and leaves the track in its previous sub-state

all_terminal is the only signal the stage processor uses to advance: it is
True when every scene's track is done or out of retries.

Usage:
    tracker = SceneTracker(retry, max_retries=3, attempts_per_scene=3, base_delay=1.0)
    result = await tracker.advance(scenes, SceneTrack.AUDIO, cap=2, operation=synthesize)
    if result.all_terminal:
        ...
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from autopilot.exceptions import BudgetExhaustedError, OperationFailedError
from autopilot.schemas.scene import Scene, SceneTrack, SubState
from autopilot.services.retry import RetryController
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

SceneOperation = Callable[[Scene], Awaitable[str]]


@dataclass
class SceneAttempt:
    """What happened to one scene during this invocation."""

    index: int
    succeeded: bool
    attempts: int
    error: str | None = None
    exhausted: bool = False


@dataclass
class SceneAdvance:
    scenes: list[Scene]
    all_terminal: bool
    attempted: list[SceneAttempt] = field(default_factory=list)
    budget_stopped: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.attempted)

    @property
    def failures(self) -> list[SceneAttempt]:
        return [a for a in self.attempted if not a.succeeded]


class SceneTracker:
    """Advance one scene track through the Retry Controller.

    Args:
        retry: Budget-aware retry controller for this invocation.
        max_retries: Per-track attempt cap across all invocations.
        attempts_per_scene: Retry Controller attempts per scene per run.
        base_delay: Backoff base passed to the Retry Controller.
    """

    def __init__(
        self,
        retry: RetryController,
        *,
        max_retries: int,
        attempts_per_scene: int,
        base_delay: float,
    ):
        self.retry = retry
        self.max_retries = max_retries
        self.attempts_per_scene = attempts_per_scene
        self.base_delay = base_delay

    def is_eligible(self, scene: Scene, track: SceneTrack) -> bool:
        return not scene.work(track).is_terminal(self.max_retries)

    def all_terminal(self, scenes: list[Scene], track: SceneTrack) -> bool:
        return all(scene.work(track).is_terminal(self.max_retries) for scene in scenes)

    async def advance(
        self,
        scenes: list[Scene],
        track: SceneTrack,
        *,
        cap: int,
        operation: SceneOperation,
    ) -> SceneAdvance:
        """Run `operation` on up to `cap` eligible scenes.

        The input list is not mutated; updated copies are returned.
        """
        updated = [scene.model_copy(deep=True) for scene in scenes]
        result = SceneAdvance(scenes=updated, all_terminal=False)

        for index, scene in enumerate(updated):
            if len(result.attempted) >= cap:
                break
            if not self.is_eligible(scene, track):
                continue

            work = scene.work(track)
            allowed = min(self.attempts_per_scene, self.max_retries - work.retry_count)
            work.sub_state = SubState.IN_PROGRESS

            try:
                outcome = await self.retry.run(
                    lambda scene=scene: operation(scene),
                    max_attempts=allowed,
                    base_delay=self.base_delay,
                    label=f"{track.value}_scene_{index}",
                )
            except BudgetExhaustedError:
                # Nothing was attempted; leave the scene exactly as it was
                result.scenes[index] = scenes[index].model_copy(deep=True)
                result.budget_stopped = True
                log.info("scene_budget_exhausted", track=track.value, scene=index)
                break
            except OperationFailedError as e:
                # An attempt stopped at the deadline did not fail; only the
                # attempts before it count against the scene.
                cut_off = isinstance(e.last_error, BudgetExhaustedError)
                failed_attempts = e.attempts - 1 if cut_off else e.attempts
                if failed_attempts == 0:
                    result.scenes[index] = scenes[index].model_copy(deep=True)
                    result.budget_stopped = True
                    log.info("scene_attempt_cut_off", track=track.value, scene=index)
                    break

                work.retry_count += failed_attempts
                work.error = str(e)
                exhausted = work.retry_count >= self.max_retries
                if cut_off and not exhausted:
                    work.sub_state = scenes[index].work(track).sub_state
                else:
                    work.sub_state = SubState.FAILED
                result.attempted.append(
                    SceneAttempt(
                        index=index,
                        succeeded=False,
                        attempts=failed_attempts,
                        error=str(e),
                        exhausted=exhausted,
                    )
                )
                log.warning(
                    "scene_failed",
                    track=track.value,
                    scene=index,
                    retry_count=work.retry_count,
                    exhausted=exhausted,
                    abandoned=e.abandoned,
                )
                if e.abandoned:
                    result.budget_stopped = True
                    break
                continue

            work.ref = outcome.value
            work.sub_state = SubState.DONE
            work.error = None
            work.retry_count += outcome.attempts - 1
            result.attempted.append(
                SceneAttempt(index=index, succeeded=True, attempts=outcome.attempts)
            )
            log.info("scene_done", track=track.value, scene=index, attempts=outcome.attempts)

        result.all_terminal = self.all_terminal(result.scenes, track)
        return result
