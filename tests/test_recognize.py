import math

import numpy as np
import pytest

from facedetect.config import BandConfig, RecognizerConfig
from facedetect.embed import LBPHExtractor
from facedetect.errors import ConfigurationError, RecognitionUnavailable
from facedetect.gallery import Gallery
from facedetect.recognize import UNKNOWN, Band, FaceRecognizer, confidence_band

from conftest import texture


@pytest.fixture(scope="module")
def extractor():
    return LBPHExtractor()


@pytest.fixture(scope="module")
def faces():
    return {"alice": texture(21), "bob": texture(22), "carol": texture(23)}


@pytest.fixture(scope="module")
def gallery(extractor, faces):
    descs = [extractor.describe(faces["alice"]), extractor.describe(faces["bob"])]
    return Gallery.from_samples(descs, [0, 1], {0: "Alice", 1: "Bob"}, extractor.params)


def test_unknown_sentinel():
    assert UNKNOWN.label == -1
    assert UNKNOWN.name == "Unknown"
    assert math.isinf(UNKNOWN.distance)
    assert not UNKNOWN.is_known


def test_exact_face_matches_with_zero_distance(extractor, faces, gallery):
    rec = FaceRecognizer(extractor, gallery=gallery)
    res = rec.recognize(faces["bob"])
    assert res.label == 1
    assert res.name == "Bob"
    assert res.distance == 0.0
    assert res.is_known


def test_nearest_neighbour_wins(extractor, faces, gallery):
    rec = FaceRecognizer(extractor, gallery=gallery)
    res = rec.match(extractor.describe(faces["carol"]))
    d_alice = rec.match(extractor.describe(faces["carol"]), Gallery.from_samples(
        [gallery.descriptors[0]], [0], {0: "Alice"}, extractor.params)).distance
    d_bob = rec.match(extractor.describe(faces["carol"]), Gallery.from_samples(
        [gallery.descriptors[1]], [1], {1: "Bob"}, extractor.params)).distance
    assert res.distance == pytest.approx(min(d_alice, d_bob))
    assert res.label == (0 if d_alice <= d_bob else 1)


def test_threshold_turns_far_match_unknown(faces, gallery):
    cfg = RecognizerConfig(threshold=1.0)
    ext = LBPHExtractor(cfg)
    rec = FaceRecognizer(ext, cfg, gallery)
    res = rec.recognize(faces["carol"])
    assert res.label == -1
    assert res.name == "Unknown"
    assert res.distance > 1.0
    assert rec.recognize(faces["alice"]).label == 0


def test_match_without_gallery_raises(extractor, faces):
    rec = FaceRecognizer(extractor)
    assert not rec.is_gallery_loaded()
    with pytest.raises(RecognitionUnavailable):
        rec.match(extractor.describe(faces["alice"]))


def test_recognize_without_gallery_is_unknown(extractor, faces):
    assert FaceRecognizer(extractor).recognize(faces["alice"]) is UNKNOWN


def test_recognize_bad_region_is_unknown(extractor, gallery):
    rec = FaceRecognizer(extractor, gallery=gallery)
    assert rec.recognize(np.zeros((0, 0), dtype=np.uint8)) is UNKNOWN
    assert rec.recognize(None) is UNKNOWN


def test_swap_returns_previous(extractor, gallery):
    rec = FaceRecognizer(extractor)
    assert rec.swap_gallery(gallery) is None
    assert rec.is_gallery_loaded()
    assert rec.swap_gallery(None) is gallery
    assert not rec.is_gallery_loaded()


def test_incompatible_gallery_refused(extractor):
    other = Gallery.from_samples([np.zeros(8 * 256, np.float32)], [0], {0: "X"},
                                 (1, 8, 4, 2, 150, 150))
    rec = FaceRecognizer(extractor)
    with pytest.raises(ConfigurationError):
        rec.swap_gallery(other)
    assert rec.gallery is None


def test_load_from_disk(tmp_path, extractor, faces, gallery):
    model, names = tmp_path / "model.npz", tmp_path / "names.json"
    rec = FaceRecognizer(extractor)
    assert rec.load(model, names) is False

    gallery.save(model, names)
    assert rec.load(model, names) is True
    assert rec.recognize(faces["alice"]).name == "Alice"

    model.write_bytes(b"garbage")
    assert rec.load(model, names) is False
    assert rec.gallery is None


@pytest.mark.parametrize("distance,band", [
    (0.0, Band.EXCELLENT),
    (34.9, Band.EXCELLENT),
    (35.0, Band.GOOD),
    (64.9, Band.GOOD),
    (65.0, Band.WEAK),
    (99.9, Band.WEAK),
    (100.0, Band.UNKNOWN),
    (math.inf, Band.UNKNOWN),
])
def test_confidence_bands(distance, band):
    assert confidence_band(distance) is band


def test_custom_bands():
    bands = BandConfig(excellent=1, good=2, weak=3)
    assert confidence_band(2.5, bands) is Band.WEAK


def test_bands_must_increase():
    with pytest.raises(ConfigurationError):
        BandConfig(excellent=50, good=40, weak=100)


def test_same_answer_after_save_and_reload(tmp_path, extractor, faces, gallery):
    model, names = tmp_path / "model.npz", tmp_path / "names.json"
    gallery.save(model, names)
    query = extractor.describe(faces["carol"])

    before = FaceRecognizer(extractor, gallery=gallery).match(query)
    after = FaceRecognizer(extractor, gallery=Gallery.load(model, names)).match(query)
    assert after == before
