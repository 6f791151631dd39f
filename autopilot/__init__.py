"""Autopilot video production pipeline.

A resumable, stage-by-stage engine that turns a video project into finished
artifacts (script, narration, scene video, thumbnail, merge manifest) one
bounded invocation at a time.
"""

__version__ = "0.1.0"
