"""Tests for the OpenCV frame source."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from rxreader.camera.frame_source import CameraFacing, OpenCVFrameSource
from rxreader.config import Settings
from rxreader.errors import DeviceError, FrameNotReadyError

if TYPE_CHECKING:
    from conftest import DeviceRegistry


def _make_source(registry: DeviceRegistry, frame_size: tuple[int, int] = (1280, 720)) -> OpenCVFrameSource:
    return OpenCVFrameSource(
        device_indices={CameraFacing.FRONT: 0, CameraFacing.BACK: 1},
        frame_size=frame_size,
        capture_factory=registry.factory,
    )


class TestCameraFacing:
    def test_toggled(self) -> None:
        assert CameraFacing.FRONT.toggled() is CameraFacing.BACK
        assert CameraFacing.BACK.toggled() is CameraFacing.FRONT

    def test_from_settings_maps_indices(self) -> None:
        settings = Settings(front_camera_index=2, back_camera_index=5, frame_width=640, frame_height=480)
        source = OpenCVFrameSource.from_settings(settings)
        assert source._device_indices == {CameraFacing.FRONT: 2, CameraFacing.BACK: 5}
        assert source._frame_size == (640, 480)


class TestAcquire:
    def test_acquire_opens_device_for_facing(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        handle = source.acquire(CameraFacing.BACK)
        assert handle.facing is CameraFacing.BACK
        assert handle.device_index == 1
        assert registry.opened == [1]
        assert len(registry.open_handles) == 1

    def test_actual_resolution_may_differ_from_hint(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry, frame_size=(1920, 1080))
        handle = source.acquire(CameraFacing.FRONT)
        assert handle.requested_size == (1920, 1080)
        assert handle.actual_size == (640, 480)

    def test_denied_device_raises_device_error(self, registry: DeviceRegistry) -> None:
        registry.denied = {0}
        source = _make_source(registry)
        with pytest.raises(DeviceError, match="front"):
            source.acquire(CameraFacing.FRONT)
        assert source.handle is None
        assert registry.open_handles == set()

    def test_reacquire_releases_previous_handle(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        first = source.acquire(CameraFacing.FRONT)
        second = source.acquire(CameraFacing.FRONT)
        assert first.stream_id != second.stream_id
        assert len(registry.open_handles) == 1

    def test_toggle_twice_holds_exactly_one_handle(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.acquire(CameraFacing.FRONT)
        source.acquire(CameraFacing.BACK)
        handle = source.acquire(CameraFacing.FRONT)
        assert registry.opened == [0, 1, 0]
        assert len(registry.open_handles) == 1
        assert handle.facing is CameraFacing.FRONT
        assert source.current_frame().shape == (480, 640, 3)

    def test_failed_switch_leaves_no_handle(self, registry: DeviceRegistry) -> None:
        registry.denied = {1}
        source = _make_source(registry)
        source.acquire(CameraFacing.FRONT)
        with pytest.raises(DeviceError):
            source.acquire(CameraFacing.BACK)
        assert source.handle is None
        assert registry.open_handles == set()

    def test_concurrent_acquires_do_not_overlap(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        facings = [CameraFacing.FRONT, CameraFacing.BACK] * 4
        threads = [threading.Thread(target=source.acquire, args=(facing,)) for facing in facings]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert registry.max_opening == 1
        assert len(registry.open_handles) == 1


class TestFrames:
    def test_no_stream_is_not_ready(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        with pytest.raises(FrameNotReadyError):
            source.current_frame()

    def test_failed_read_is_not_ready(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.acquire(CameraFacing.FRONT)
        registry.frames_left = 0
        with pytest.raises(FrameNotReadyError):
            source.current_frame()

    def test_lost_device_raises_device_error(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.acquire(CameraFacing.FRONT)
        registry.lose_device = True
        with pytest.raises(DeviceError):
            source.current_frame()

    def test_frame_comes_from_active_device(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.acquire(CameraFacing.BACK)
        assert source.current_frame()[0, 0, 0] == 10


class TestRelease:
    def test_release_closes_device(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.acquire(CameraFacing.FRONT)
        source.release()
        assert source.handle is None
        assert registry.open_handles == set()

    def test_release_of_stale_handle_is_ignored(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        stale = source.acquire(CameraFacing.FRONT)
        current = source.acquire(CameraFacing.BACK)
        source.release(stale)
        assert source.handle == current
        assert len(registry.open_handles) == 1

    def test_release_without_stream_is_noop(self, registry: DeviceRegistry) -> None:
        source = _make_source(registry)
        source.release()
        assert source.handle is None
