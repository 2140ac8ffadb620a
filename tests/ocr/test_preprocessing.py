from __future__ import annotations

import numpy as np
from PIL import Image

from trackrecover.ocr import preprocessing
from trackrecover.ocr.models import RasterImage

RED = (255, 0, 0)
BLUE = (0, 0, 255)


def _raster(size=(4, 4), color=(255, 255, 255), mode="RGB") -> RasterImage:
    return RasterImage(Image.new(mode, size, color))


def test_scale_one_is_passthrough() -> None:
    image = _raster()
    assert preprocessing.scale(image, 1) is image


def test_scale_uses_nearest_neighbour() -> None:
    source = Image.new("L", (2, 2), 0)
    source.putpixel((1, 0), 255)
    source.putpixel((0, 1), 255)
    scaled = preprocessing.scale(RasterImage(source), 1.5)
    assert scaled.size == (3, 3)
    assert set(np.unique(np.asarray(scaled.image)).tolist()) == {0, 255}


def test_scale_does_not_mutate_input() -> None:
    image = _raster(size=(10, 6))
    preprocessing.scale(image, 3)
    assert image.size == (10, 6)


def test_rotate_is_clockwise_and_swaps_dimensions() -> None:
    source = Image.new("RGB", (2, 1))
    source.putpixel((0, 0), RED)
    source.putpixel((1, 0), BLUE)
    rotated = preprocessing.rotate(RasterImage(source), 90)
    assert rotated.size == (1, 2)
    assert rotated.image.getpixel((0, 0)) == RED
    assert rotated.image.getpixel((0, 1)) == BLUE

    assert preprocessing.rotate(RasterImage(source), 180).size == (2, 1)
    assert preprocessing.rotate(RasterImage(source), 270).image.getpixel((0, 0)) == BLUE


def test_rotate_zero_is_passthrough() -> None:
    image = _raster()
    assert preprocessing.rotate(image, 0) is image


def test_crop_tile_clamps_to_bounds() -> None:
    image = _raster(size=(100, 100))
    assert preprocessing.crop_tile(image, 90, 90, 50, 50).size == (10, 10)
    assert preprocessing.crop_tile(image, -5, -5, 20, 20).size == (20, 20)


def test_tile_overlap_covers_centre_pixel_twice() -> None:
    boxes = preprocessing.tile_boxes(100, 100, 2, overlap=0.1)
    assert len(boxes) == 4
    covering = [
        (x, y, w, h) for x, y, w, h in boxes if x <= 50 < x + w and y <= 50 < y + h
    ]
    assert len(covering) >= 2


def test_tile_boxes_row_major_and_within_image() -> None:
    boxes = preprocessing.tile_boxes(90, 60, 3, overlap=0.1)
    assert len(boxes) == 9
    assert boxes[0][:2] == (0, 0)
    assert boxes[1][0] > boxes[0][0] and boxes[1][1] == 0
    for x, y, w, h in boxes:
        assert x + w <= 90 and y + h <= 60


def test_contrast_stretch_spans_full_range() -> None:
    data = np.array([[100, 125], [140, 150]], dtype=np.uint8)
    stretched = preprocessing.grayscale_contrast_stretch(RasterImage(Image.fromarray(data)))
    values = np.asarray(stretched.image)
    assert values.min() == 0
    assert values.max() == 255


def test_contrast_stretch_on_flat_image_does_not_divide_by_zero() -> None:
    stretched = preprocessing.grayscale_contrast_stretch(_raster(color=(80, 80, 80)))
    assert np.asarray(stretched.image).max() == 0


def test_threshold_and_invert() -> None:
    data = np.array([[180, 181]], dtype=np.uint8)
    binary = preprocessing.threshold(RasterImage(Image.fromarray(data)), 180)
    assert np.asarray(binary.image).tolist() == [[0, 255]]
    assert np.asarray(preprocessing.invert(binary).image).tolist() == [[255, 0]]


def test_preprocess_variants_order() -> None:
    names = [name for name, _variant in preprocessing.preprocess_variants(_raster())]
    assert names == [
        "stretch",
        "threshold-180",
        "threshold-180-inverted",
        "threshold-160",
        "threshold-160-inverted",
        "threshold-140",
        "threshold-140-inverted",
        "threshold-120",
        "threshold-120-inverted",
        "inverted",
    ]


def test_preprocess_variants_are_lazy(monkeypatch) -> None:
    calls: list[int] = []
    original = preprocessing.threshold

    def spy(image, level):
        calls.append(level)
        return original(image, level)

    monkeypatch.setattr(preprocessing, "threshold", spy)
    variants = preprocessing.preprocess_variants(_raster())
    next(variants)
    assert calls == []
    next(variants)
    assert calls == [180]


def test_color_mask_isolates_magenta_ink() -> None:
    source = Image.new("RGB", (4, 1), (255, 255, 255))
    source.putpixel((0, 0), (214, 51, 132))  # receipt magenta
    source.putpixel((1, 0), (0, 0, 0))
    source.putpixel((2, 0), (255, 0, 0))
    mask = preprocessing.color_mask(RasterImage(source))
    assert mask.mode == "L"
    assert np.asarray(mask.image).tolist() == [[0, 255, 255, 255]]
