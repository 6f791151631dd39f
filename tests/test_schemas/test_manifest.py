"""Tests for the merge manifest."""

from autopilot.schemas.manifest import MANIFEST_VERSION, build_manifest
from autopilot.schemas.scene import SubState
from tests.support.factories import make_scene


class TestBuildManifest:
    def test_scenes_listed_in_order_with_refs(self):
        scenes = [
            make_scene(0, audio=SubState.DONE, video=SubState.DONE),
            make_scene(1, audio=SubState.DONE, video=SubState.FAILED, video_retries=3),
        ]

        manifest = build_manifest("p-1", "Black Holes", scenes)

        assert manifest["version"] == MANIFEST_VERSION
        assert manifest["project_id"] == "p-1"
        assert manifest["title"] == "Black Holes"
        assert [s["index"] for s in manifest["scenes"]] == [0, 1]
        assert manifest["scenes"][0]["video_ref"] == "video://existing-1"
        assert manifest["scenes"][1]["video_ref"] is None
        assert manifest["scenes"][1]["audio_ref"] == "audio://existing-2"

    def test_same_scenes_produce_identical_manifest(self):
        scenes = [make_scene(i, video=SubState.DONE) for i in range(3)]

        assert build_manifest("p-1", "t", scenes) == build_manifest("p-1", "t", scenes)

    def test_empty_scene_list(self):
        manifest = build_manifest("p-1", "t", [])

        assert manifest["scenes"] == []
        assert manifest["output_format"]["container"] == "mp4"
