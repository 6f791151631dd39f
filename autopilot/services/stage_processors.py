"""Stage processors: one per pipeline stage.

Each processor turns (ProjectSnapshot, StageContext) into a StageDelta. It
never writes to the database and never advances more than one stage.

Pipeline Flow:
    scripting → audio → visuals → thumbnail → merging → review → ready

    scripting  one Retry Controller call: script + scene plan
    audio      Scene Tracker, up to K scenes (AUDIO_SCENES_PER_RUN) per run
    visuals    Scene Tracker, exactly one scene per run
    thumbnail  one Retry Controller call
    merging    deterministic manifest, no provider calls
    review     approval policy; holds at review until approved

Failure Handling:
    Any exception escaping a stage's work is caught in
    StageProcessor.process(): the stage is left unchanged, last_error and a
    log line are recorded, and an error notification is emitted once per
    stage. Whole-stage failures also bump project.retry_count; at
    MAX_STAGE_FAILURES the project is marked failed. ConfigurationError is
    not caught here; it aborts the invocation.

Resumption:
    A stage whose output is already present (script and scenes, thumbnail
    ref) advances without calling its port again.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from autopilot.config import PipelineSettings
from autopilot.exceptions import BudgetExhaustedError, ConfigurationError, OperationFailedError
from autopilot.models import (
    ApprovalWorkflow,
    NotificationKind,
    PipelineStage,
    ProjectStatus,
    utcnow,
)
from autopilot.schemas.manifest import build_manifest
from autopilot.schemas.scene import Scene, SceneTrack, dump_scenes
from autopilot.services.ports import CapabilityPorts
from autopilot.services.retry import RetryController
from autopilot.services.scene_tracker import SceneTracker
from autopilot.services.snapshot import ProjectSnapshot, StageDelta, format_log_line
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

# Video synthesis is slow; never more than one scene per invocation
VISUALS_SCENES_PER_RUN = 1
DEFAULT_THUMBNAIL_STYLE = "Modern, Bold"

APPROVAL_CONDITION = "approval_needed:review"
READY_CONDITION = "success:ready"


def error_condition(stage: PipelineStage) -> str:
    return f"error:{stage.value}"


@dataclass
class StageContext:
    """Per-invocation collaborators handed to every processor."""

    ports: CapabilityPorts
    settings: PipelineSettings
    retry: RetryController
    scene_tracker: SceneTracker
    clock: Callable[[], datetime] = field(default=utcnow)


class StageRun:
    """Mutable helper wrapping the delta being built for one processor run."""

    def __init__(self, snapshot: ProjectSnapshot, ctx: StageContext):
        self.snapshot = snapshot
        self.ctx = ctx
        self.delta = StageDelta()

    def log(self, message: str) -> None:
        self.delta.log_lines.append(format_log_line(self.ctx.clock(), self.snapshot.stage, message))

    def set(self, name: str, value: Any) -> None:
        self.delta.updates[name] = value

    def advance(self) -> None:
        self.delta.new_stage = self.snapshot.stage.next_stage()

    async def notify_once(
        self,
        condition: str,
        kind: NotificationKind,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Emit a notification unless `condition` was already notified.

        Returns:
            True if the notification was emitted.
        """
        if self.delta.field_value(self.snapshot, "notified_condition") == condition:
            return False

        await self.ctx.ports.notifier.emit(
            self.snapshot.channel.id,
            kind,
            message,
            {"project_id": self.snapshot.id, "stage": self.snapshot.stage.value, **(metadata or {})},
        )
        self.set("notified_condition", condition)
        return True


class StageProcessor:
    """Base class. Subclasses set `stage` and implement `run()`."""

    stage: ClassVar[PipelineStage]
    # Whole-stage failures count toward MAX_STAGE_FAILURES
    whole_stage: ClassVar[bool] = True

    async def run(self, run: StageRun) -> None:
        raise NotImplementedError

    async def process(self, snapshot: ProjectSnapshot, ctx: StageContext) -> StageDelta:
        """Run the stage and convert failures into a recorded, non-raising delta.

        Raises:
            ConfigurationError: Missing configuration discovered mid-stage.
        """
        run = StageRun(snapshot, ctx)
        try:
            await self.run(run)
        except ConfigurationError:
            raise
        except BudgetExhaustedError:
            log.info("stage_deferred_budget", project_id=snapshot.id, stage=snapshot.stage.value)
            return StageDelta()
        except Exception as e:
            # Drop any partial work; a failed stage persists only the failure
            run.delta = StageDelta()
            await self.record_failure(run, e)
        return run.delta

    async def record_failure(self, run: StageRun, error: Exception) -> None:
        snapshot = run.snapshot
        message = f"{type(error).__name__}: {error}"
        if isinstance(error, OperationFailedError):
            message = str(error)

        log.error(
            "stage_failed",
            project_id=snapshot.id,
            stage=snapshot.stage.value,
            error=message,
        )
        run.log(f"{snapshot.stage.value} failed: {message}")
        run.set("last_error", message)

        # Attempts cut short by the budget are retried next invocation without penalty
        abandoned = isinstance(error, OperationFailedError) and error.abandoned
        if self.whole_stage and not abandoned:
            failures = snapshot.retry_count + 1
            run.set("retry_count", failures)
            if failures >= run.ctx.settings.max_stage_failures:
                run.delta.new_status = ProjectStatus.FAILED
                run.log(f"Stage failed {failures} times; marking project failed")
                await run.notify_once(
                    f"failed:{snapshot.stage.value}",
                    NotificationKind.ERROR,
                    f'"{snapshot.title}" failed permanently at {snapshot.stage.value}: {message}',
                    {"failures": failures},
                )
                return

        await run.notify_once(
            error_condition(snapshot.stage),
            NotificationKind.ERROR,
            f'"{snapshot.title}" failed at {snapshot.stage.value}: {message}',
        )


class ScriptingProcessor(StageProcessor):
    stage = PipelineStage.SCRIPTING

    async def run(self, run: StageRun) -> None:
        snapshot, ctx = run.snapshot, run.ctx
        if snapshot.script and snapshot.scenes:
            run.log("Script already present; skipping generation")
            run.advance()
            return

        run.log("Starting script generation")
        result = await ctx.retry.run(
            lambda: ctx.ports.scripts.generate_script(snapshot.channel, snapshot.title),
            max_attempts=ctx.settings.retry_max_attempts,
            base_delay=ctx.settings.retry_base_delay_seconds,
            label="generate_script",
        )
        generated = result.value

        run.set("script", generated.script)
        run.set("scenes", dump_scenes(generated.scenes))
        run.log(f"Generated script with {len(generated.scenes)} scenes")
        run.advance()


class SceneStageProcessor(StageProcessor):
    """Shared flow for the audio and visuals stages."""

    whole_stage = False
    track: ClassVar[SceneTrack]
    noun: ClassVar[str]

    def cap(self, ctx: StageContext) -> int:
        raise NotImplementedError

    async def synthesize(self, run: StageRun, scene: Scene) -> str:
        raise NotImplementedError

    def on_complete(self, run: StageRun, scenes: list[Scene]) -> None:
        pass

    async def run(self, run: StageRun) -> None:
        snapshot, ctx = run.snapshot, run.ctx
        result = await ctx.scene_tracker.advance(
            snapshot.scenes,
            self.track,
            cap=self.cap(ctx),
            operation=lambda scene: self.synthesize(run, scene),
        )

        if result.changed:
            run.set("scenes", dump_scenes(result.scenes))
        for attempt in result.attempted:
            if attempt.succeeded:
                run.log(f"Scene {attempt.index + 1} {self.noun} generated")
            elif attempt.exhausted:
                run.log(f"Scene {attempt.index + 1} {self.noun} failed permanently: {attempt.error}")
            else:
                run.log(f"Scene {attempt.index + 1} {self.noun} failed: {attempt.error}")

        failures = result.failures
        if failures:
            last = failures[-1]
            run.set("last_error", f"Scene {last.index + 1}: {last.error}")
            await run.notify_once(
                error_condition(snapshot.stage),
                NotificationKind.ERROR,
                f'{self.noun.capitalize()} generation failed for scene {last.index + 1} of "{snapshot.title}"',
                {"scene": last.index + 1, "error": last.error or ""},
            )

        if result.all_terminal:
            done = sum(1 for scene in result.scenes if scene.work(self.track).is_done)
            skipped = len(result.scenes) - done
            message = f"All scene {self.noun} complete ({done}/{len(result.scenes)} generated)"
            if skipped:
                message += f"; {skipped} skipped after retries"
            run.log(message)
            self.on_complete(run, result.scenes)
            run.advance()
        else:
            remaining = sum(
                1 for scene in result.scenes if ctx.scene_tracker.is_eligible(scene, self.track)
            )
            if result.changed:
                run.log(f"{remaining} scene(s) still need {self.noun}")


class AudioProcessor(SceneStageProcessor):
    stage = PipelineStage.AUDIO
    track = SceneTrack.AUDIO
    noun = "audio"

    def cap(self, ctx: StageContext) -> int:
        return ctx.settings.audio_scenes_per_run

    async def synthesize(self, run: StageRun, scene: Scene) -> str:
        return await run.ctx.ports.voice.synthesize_voice(scene.narration_text)

    def on_complete(self, run: StageRun, scenes: list[Scene]) -> None:
        first = next((scene.audio_ref for scene in scenes if scene.audio_ref), None)
        run.set("audio_master_ref", first)


class VisualsProcessor(SceneStageProcessor):
    stage = PipelineStage.VISUALS
    track = SceneTrack.VIDEO
    noun = "video"

    def cap(self, ctx: StageContext) -> int:
        return VISUALS_SCENES_PER_RUN

    async def synthesize(self, run: StageRun, scene: Scene) -> str:
        enhancers = run.snapshot.channel.prompt_enhancers.strip()
        prompt = f"{scene.visual_prompt}. {enhancers}" if enhancers else scene.visual_prompt
        return await run.ctx.ports.video.synthesize_video(
            prompt, run.ctx.settings.video_aspect_ratio
        )

    def on_complete(self, run: StageRun, scenes: list[Scene]) -> None:
        first = next((scene.video_ref for scene in scenes if scene.video_ref), None)
        run.set("video_ref", first)


class ThumbnailProcessor(StageProcessor):
    stage = PipelineStage.THUMBNAIL

    async def run(self, run: StageRun) -> None:
        snapshot, ctx = run.snapshot, run.ctx
        if snapshot.thumbnail_ref:
            run.log("Thumbnail already present; skipping generation")
            run.advance()
            return

        style = ", ".join(snapshot.channel.style_memory) or DEFAULT_THUMBNAIL_STYLE
        run.log("Generating thumbnail")
        result = await ctx.retry.run(
            lambda: ctx.ports.thumbnails.synthesize_thumbnail(
                snapshot.title, snapshot.channel.niche, style
            ),
            max_attempts=ctx.settings.retry_max_attempts,
            base_delay=ctx.settings.retry_base_delay_seconds,
            label="synthesize_thumbnail",
        )
        run.set("thumbnail_ref", result.value)
        run.log("Thumbnail generated")
        run.advance()


class MergingProcessor(StageProcessor):
    stage = PipelineStage.MERGING

    async def run(self, run: StageRun) -> None:
        snapshot = run.snapshot
        manifest = build_manifest(snapshot.id, snapshot.title, snapshot.scenes)
        with_video = sum(1 for scene in snapshot.scenes if scene.video_ref)

        run.set("merge_instructions", manifest)
        if not snapshot.video_ref:
            first = next((scene.video_ref for scene in snapshot.scenes if scene.video_ref), None)
            run.set("video_ref", first)
        run.delta.merge_manifest = manifest
        run.log(f"Merge manifest prepared ({with_video}/{len(snapshot.scenes)} scenes with video)")
        run.advance()


class ReviewProcessor(StageProcessor):
    stage = PipelineStage.REVIEW

    async def run(self, run: StageRun) -> None:
        snapshot = run.snapshot
        auto = snapshot.approval_workflow is ApprovalWorkflow.AUTO_PUBLISH

        if auto or snapshot.approved:
            reason = "auto-publish enabled" if auto else "approved by reviewer"
            run.log(f"Video ready ({reason})")
            run.advance()
            run.delta.new_status = ProjectStatus.READY
            await run.notify_once(
                READY_CONDITION,
                NotificationKind.SUCCESS,
                f'"{snapshot.title}" is ready to publish',
            )
            return

        notified = await run.notify_once(
            APPROVAL_CONDITION,
            NotificationKind.APPROVAL_NEEDED,
            f'"{snapshot.title}" is ready for review',
            {"approval_workflow": snapshot.approval_workflow.value},
        )
        if notified:
            run.log("Awaiting approval; reviewer notified")


STAGE_PROCESSORS: dict[PipelineStage, StageProcessor] = {
    processor.stage: processor
    for processor in (
        ScriptingProcessor(),
        AudioProcessor(),
        VisualsProcessor(),
        ThumbnailProcessor(),
        MergingProcessor(),
        ReviewProcessor(),
    )
}
