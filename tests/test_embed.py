import numpy as np
import pytest

from facedetect.config import RecognizerConfig
from facedetect.embed import (
    LBPHExtractor,
    cell_map,
    chi_square,
    chi_square_many,
    code_image,
    lbp_image,
    paste,
    spatial_histogram,
)
from facedetect.errors import InvalidFrameError
from facedetect.preprocess import to_gray

from conftest import texture


def test_constant_image_sets_every_bit():
    codes = lbp_image(np.full((10, 10), 90, dtype=np.uint8))
    assert codes.shape == (8, 8)
    assert np.all(codes == 255)


def test_bright_centre_clears_every_bit():
    img = np.zeros((3, 3), dtype=np.uint8)
    img[1, 1] = 200
    assert lbp_image(img).tolist() == [[0]]


def test_axis_neighbour_sets_its_own_bit():
    img = np.zeros((3, 3), dtype=np.uint8)
    img[1, 1] = 100
    img[1, 2] = 200   # right neighbour = sample 0
    assert lbp_image(img).tolist() == [[1]]


def test_lbp_rejects_tiny_or_color_input():
    with pytest.raises(InvalidFrameError):
        lbp_image(np.zeros((2, 2), dtype=np.uint8))
    with pytest.raises(InvalidFrameError):
        lbp_image(np.zeros((5, 5, 3), dtype=np.uint8))


def test_each_cell_histogram_sums_to_one():
    codes = lbp_image(texture(4))
    hist = spatial_histogram(codes, 256, 8, 8)
    assert hist.dtype == np.float32
    assert hist.shape == (8 * 8 * 256,)
    np.testing.assert_allclose(hist.reshape(64, 256).sum(axis=1), 1.0, rtol=1e-5)


def test_descriptor_dimension_and_read_only():
    ext = LBPHExtractor()
    desc = ext.describe(texture(5))
    assert ext.dim == 16384
    assert desc.shape == (16384,)
    assert desc.dtype == np.float32
    assert not desc.flags.writeable
    assert ext.params == (1, 8, 8, 8, 150, 150)


def test_any_crop_size_is_resized():
    ext = LBPHExtractor()
    assert ext.describe(texture(6, shape=(97, 61))).shape == (ext.dim,)


def test_color_crop_accepted():
    ext = LBPHExtractor()
    face = np.dstack([texture(7)] * 3)
    np.testing.assert_array_equal(ext.describe(face), ext.describe(texture(7)))


def test_color_crop_uses_shared_gray_conversion():
    ext = LBPHExtractor()
    rng = np.random.default_rng(13)
    for channels in (3, 4):
        face = rng.integers(0, 256, size=(150, 150, channels), dtype=np.uint8)
        np.testing.assert_array_equal(ext.describe(face), ext.describe(to_gray(face)))


def test_empty_crop_raises():
    with pytest.raises(InvalidFrameError):
        LBPHExtractor().describe(np.zeros((0, 0), dtype=np.uint8))


def test_smaller_grid_smaller_descriptor():
    ext = LBPHExtractor(RecognizerConfig(grid_x=4, grid_y=2))
    assert ext.describe(texture(8)).shape == (4 * 2 * 256,)


def test_codes_ignore_uniform_brightness_shift():
    ext = LBPHExtractor()
    face = texture(9)
    np.testing.assert_array_equal(ext.describe(face), ext.describe(face + np.uint8(30)))


# ── chi-square ──
def test_chi_square_identity_and_symmetry():
    ext = LBPHExtractor()
    a = ext.describe(texture(10))
    b = ext.describe(texture(11))
    assert chi_square(a, a) == 0.0
    assert chi_square(a, b) == pytest.approx(chi_square(b, a))
    assert chi_square(a, b) > 0


def test_chi_square_disjoint_histograms():
    a = np.array([1.0, 0.0])
    b = np.array([0.0, 1.0])
    assert chi_square(a, b) == pytest.approx(4.0)


def test_chi_square_skips_empty_bins():
    a = np.array([0.5, 0.5, 0.0])
    b = np.array([0.5, 0.5, 0.0])
    assert chi_square(a, b) == 0.0


def test_chi_square_many_matches_pairwise():
    rows = np.array([[1.0, 0.0], [0.5, 0.5], [0.0, 1.0]])
    q = np.array([0.0, 1.0])
    d = chi_square_many(rows, q)
    assert d.tolist() == pytest.approx([4.0, 2 * 0.25 / 0.5 + 2 * 0.25 / 1.5, 0.0])


def test_preview_tiles():
    ext = LBPHExtractor()
    face = texture(12)
    assert code_image(face, ext).shape == (160, 160, 3)
    tile = cell_map(ext.describe(face), ext)
    assert tile.shape == (160, 160, 3)

    canvas = np.zeros((100, 100, 3), dtype=np.uint8)
    paste(canvas, tile, 0, 0)      # does not fit: left alone
    assert not canvas.any()
    paste(canvas, np.full((10, 10, 3), 9, np.uint8), 5, 5)
    assert canvas[5:15, 5:15].min() == 9
