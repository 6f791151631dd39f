# Data factories for test data generation

from tests.support.factories.project_factory import (
    BASE_TIME,
    approve_in_db,
    create_channel,
    create_project,
    make_channel_profile,
    make_scene,
    make_scenes,
    make_snapshot,
    reload_project,
)

__all__ = [
    "BASE_TIME",
    "approve_in_db",
    "create_channel",
    "create_project",
    "make_channel_profile",
    "make_scene",
    "make_scenes",
    "make_snapshot",
    "reload_project",
]
