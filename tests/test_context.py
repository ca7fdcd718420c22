import os
import shutil
import threading

import pytest

from facedetect.context import FaceContext
from facedetect.preprocess import preprocess

from conftest import texture


@pytest.fixture
def ctx(app_config, full_frame_detector):
    return FaceContext.from_config(app_config, detector=full_frame_detector)


def test_starts_without_model(ctx):
    assert not ctx.is_gallery_loaded()
    assert ctx.recognize(texture(1)).label == -1


def test_train_installs_and_persists(ctx, app_config, full_frame_detector, alice_base):
    result = ctx.train()
    assert result.ok, result.reason
    assert ctx.is_gallery_loaded()
    assert ctx.recognize(preprocess(alice_base)).name == "Alice"

    # a fresh context picks the model up from disk
    fresh = FaceContext.from_config(app_config, detector=full_frame_detector)
    assert fresh.is_gallery_loaded()
    assert fresh.recognize(preprocess(alice_base)).name == "Alice"


def test_failed_train_keeps_previous_model(ctx, app_config, tmp_path):
    assert ctx.train().ok
    before = ctx.recognizer.gallery
    with open(app_config.paths.model_path, "rb") as f:
        model_bytes = f.read()

    result = ctx.train(tmp_path / "does_not_exist")
    assert not result.ok
    assert "not found" in result.reason
    assert ctx.recognizer.gallery is before
    with open(app_config.paths.model_path, "rb") as f:
        assert f.read() == model_bytes


def test_no_faces_reports_reason(app_config, no_face_detector):
    ctx = FaceContext.from_config(app_config, detector=no_face_detector)
    result = ctx.train()
    assert not result.ok
    assert "No faces" in result.reason
    assert not ctx.is_gallery_loaded()


def test_second_train_rejected_while_running(ctx):
    started = threading.Event()
    release = threading.Event()
    real_build = ctx.trainer.build_gallery

    def slow_build(root):
        started.set()
        release.wait(5)
        return real_build(root)

    ctx.trainer.build_gallery = slow_build
    results = []
    worker = threading.Thread(target=lambda: results.append(ctx.train()))
    worker.start()
    try:
        assert started.wait(5)
        second = ctx.train()
        assert not second.ok
        assert "in progress" in second.reason
    finally:
        release.set()
        worker.join(10)
    assert results[0].ok


def test_reload_after_model_removed(ctx, app_config):
    assert ctx.train().ok
    os.remove(app_config.paths.model_path)
    assert ctx.reload() is False
    assert not ctx.is_gallery_loaded()


def test_failed_save_keeps_model_and_names_paired(ctx, app_config, training_root):
    assert ctx.train().ok
    before = ctx.recognizer.gallery
    with open(app_config.paths.model_path, "rb") as f:
        model_bytes = f.read()

    # names map can no longer be replaced: the second half of the save fails
    os.remove(app_config.paths.names_path)
    os.mkdir(app_config.paths.names_path)
    shutil.rmtree(training_root / "Bob")

    result = ctx.train()
    assert not result.ok
    assert "could not save model" in result.reason
    assert ctx.recognizer.gallery is before
    with open(app_config.paths.model_path, "rb") as f:
        assert f.read() == model_bytes
    leftovers = [p for p in os.listdir(os.path.dirname(app_config.paths.model_path)) if p.endswith(".tmp")]
    assert leftovers == []
