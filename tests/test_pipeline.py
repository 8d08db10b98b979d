import time
from io import BytesIO
from unittest.mock import MagicMock

import pytest
from PIL import Image as PILImage

from imgsvc.context import Deadline
from imgsvc.engines import GRAVITY_CENTRE, GeometryEngine, GeometryOps, PillowGeometryEngine
from imgsvc.errors import ConversionMismatchError, DeadlineExceededError, EngineError
from imgsvc.formats import detect_format
from imgsvc.pipeline import PipelineExecutor, TransformPipeline
from imgsvc.transforms import validate_spec

from conftest import make_image, open_image


RED, GREEN, BLUE, WHITE = (255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 255)


def quadrants_png() -> bytes:
    # [[R, G],
    #  [B, W]]
    img = PILImage.new("RGB", (2, 2))
    img.putdata([RED, GREEN, BLUE, WHITE])
    out = BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def pixels(data: bytes):
    return list(open_image(data).convert("RGB").getdata())


@pytest.fixture
def pipeline():
    return TransformPipeline()


def run(pipeline, data, **raw):
    return pipeline.run(data, validate_spec(raw))


def test_noop_spec_keeps_format_and_dimensions(pipeline):
    data = make_image("jpeg", (64, 48))
    out = run(pipeline, data)
    assert detect_format(out) == "jpeg"
    assert open_image(out).size == (64, 48)


@pytest.mark.parametrize("fmt", ["jpeg", "png", "webp", "tiff"])
def test_conversion_round_trip(pipeline, fmt):
    out = run(pipeline, make_image("png"), format=fmt)
    assert detect_format(out) == fmt
    assert open_image(out).format == fmt.upper()


def test_non_positive_quality_is_default(pipeline):
    data = make_image("jpeg")
    assert run(pipeline, data, quality=0) == run(pipeline, data, quality=75)
    assert run(pipeline, data, quality=-3) == run(pipeline, data, quality=75)


def test_low_quality_is_not_larger(pipeline):
    data = make_image("jpeg", (128, 96))
    low = run(pipeline, data, quality=40)
    default = run(pipeline, data)
    assert low != default
    assert len(low) <= len(default)


def test_partial_resize_is_ignored(pipeline):
    data = make_image("jpeg")
    assert run(pipeline, data, resize={"width": 10}) == run(pipeline, data)


def test_resize_sets_exact_dimensions(pipeline):
    out = run(pipeline, make_image("png", (64, 48)), resize={"width": 32, "height": 10})
    assert open_image(out).size == (32, 10)


def test_crop_is_centred():
    img = PILImage.new("RGB", (6, 6), (0, 0, 0))
    for x in (2, 3):
        for y in (2, 3):
            img.putpixel((x, y), WHITE)
    buf = BytesIO()
    img.save(buf, format="PNG")

    out = run(TransformPipeline(), buf.getvalue(), crop={"width": 2, "height": 2})
    assert open_image(out).size == (2, 2)
    assert pixels(out) == [WHITE] * 4


def test_crop_larger_than_image_is_clamped(pipeline):
    out = run(pipeline, make_image("png", (20, 10)), crop={"width": 50, "height": 5})
    assert open_image(out).size == (20, 5)


def test_rotate_90_is_clockwise(pipeline):
    out = run(pipeline, quadrants_png(), rotate=90)
    assert pixels(out) == [BLUE, RED, WHITE, GREEN]


def test_rotate_swaps_dimensions(pipeline):
    out = run(pipeline, make_image("jpeg", (64, 48)), rotate=270)
    assert open_image(out).size == (48, 64)


def test_arbitrary_rotation_expands_canvas(pipeline):
    out = run(pipeline, make_image("png", (40, 40)), rotate=45)
    width, height = open_image(out).size
    assert width > 40 and height > 40


def test_flip_mirrors_about_x_axis(pipeline):
    out = run(pipeline, quadrants_png(), flip=True)
    assert pixels(out) == [BLUE, WHITE, RED, GREEN]


def test_mirror_mirrors_about_y_axis(pipeline):
    out = run(pipeline, quadrants_png(), mirror=True)
    assert pixels(out) == [GREEN, RED, WHITE, BLUE]


def test_rotate_webp_grayscale_from_jpeg(pipeline):
    out = run(
        pipeline,
        make_image("jpeg", (64, 48)),
        rotate=90,
        format="webp",
        filters={"grayscale": True},
    )
    assert detect_format(out) == "webp"
    img = open_image(out).convert("RGB")
    assert img.size == (48, 64)
    for r, g, b in img.getdata():
        assert max(r, g, b) - min(r, g, b) <= 8


def test_filters_keep_current_format(pipeline):
    out = run(pipeline, make_image("png"), filters={"sepia": True})
    assert detect_format(out) == "png"


def test_sepia_warms_gray(pipeline):
    img = PILImage.new("RGB", (4, 4), (128, 128, 128))
    buf = BytesIO()
    img.save(buf, format="PNG")
    r, g, b = pixels(run(pipeline, buf.getvalue(), filters={"sepia": True}))[0]
    assert r > g > b


def test_gamma_above_one_brightens(pipeline):
    img = PILImage.new("RGB", (4, 4), (128, 128, 128))
    buf = BytesIO()
    img.save(buf, format="PNG")
    r, _, _ = pixels(run(pipeline, buf.getvalue(), filters={"gamma": 2.0}))[0]
    assert r > 128


def test_blur_keeps_dimensions_and_changes_pixels(pipeline):
    data = make_image("png", (16, 16))
    out = run(pipeline, data, filters={"gaussian_blur": 2.0})
    assert open_image(out).size == (16, 16)
    assert pixels(out) != pixels(run(pipeline, data))


def test_alpha_channel_survives_filters(pipeline):
    img = PILImage.new("RGBA", (4, 4), (200, 100, 50, 60))
    buf = BytesIO()
    img.save(buf, format="PNG")
    out = open_image(run(pipeline, buf.getvalue(), filters={"grayscale": True}))
    assert out.mode == "RGBA"
    assert out.getpixel((0, 0))[3] == 60


def test_undecodable_input_fails_first_stage(pipeline):
    with pytest.raises(EngineError) as exc:
        run(pipeline, b"definitely not an image", rotate=90)
    assert exc.value.stage == "orientation"


def test_stage_order_and_skipping():
    geometry = MagicMock(spec=GeometryEngine)
    geometry.apply.side_effect = lambda data, ops: data
    filters = MagicMock()
    filters.apply.side_effect = lambda data, spec: data
    pipeline = TransformPipeline(geometry=geometry, filters=filters)
    data = make_image("png")

    pipeline.run(data, validate_spec({"crop": {"width": 5, "height": 5}, "quality": 50}))

    ops = [c.args[1] for c in geometry.apply.call_args_list]
    assert ops == [
        GeometryOps(quality=50),
        GeometryOps(quality=50, width=5, height=5, gravity=GRAVITY_CENTRE),
    ]
    filters.apply.assert_not_called()


def test_failure_aborts_remaining_stages():
    geometry = MagicMock(spec=GeometryEngine)
    geometry.apply.side_effect = [b"rotated", OSError("vips exploded")]
    filters = MagicMock()
    pipeline = TransformPipeline(geometry=geometry, filters=filters)

    with pytest.raises(EngineError) as exc:
        pipeline.run(make_image("png"), validate_spec({
            "resize": {"width": 5, "height": 5},
            "format": "webp",
            "filters": {"grayscale": True},
        }))
    assert exc.value.stage == "resize"
    assert geometry.apply.call_count == 2
    filters.apply.assert_not_called()


def test_conversion_mismatch_detected():
    class LyingEngine(PillowGeometryEngine):
        def apply(self, data, ops):
            # 忽略目标格式，总是输出 png
            return super().apply(data, GeometryOps(quality=ops.quality))

    pipeline = TransformPipeline(geometry=LyingEngine())
    with pytest.raises(ConversionMismatchError) as exc:
        pipeline.run(make_image("png"), validate_spec({"format": "webp"}))
    assert exc.value.expected == "webp"
    assert exc.value.actual == "png"


def test_expired_deadline_stops_pipeline(pipeline):
    deadline = Deadline(expires_at=0)
    with pytest.raises(DeadlineExceededError):
        pipeline.run(make_image("png"), validate_spec({}), deadline)


def test_executor_runs_on_pool():
    executor = PipelineExecutor(max_workers=2)
    try:
        out = executor.run(make_image("jpeg"), validate_spec({"format": "png"}), Deadline(30))
        assert detect_format(out) == "png"
    finally:
        executor.shutdown()


def test_executor_propagates_engine_errors():
    executor = PipelineExecutor(max_workers=1)
    try:
        with pytest.raises(EngineError):
            executor.run(b"garbage", validate_spec({}))
    finally:
        executor.shutdown()


def sixteen_bit_gray(fmt: str):
    values = [i * 1000 for i in range(64)]
    img = PILImage.frombytes("I;16", (8, 8), b"".join(v.to_bytes(2, "little") for v in values))
    out = BytesIO()
    img.save(out, format=fmt.upper())
    return out.getvalue(), values


@pytest.mark.parametrize("fmt", ["png", "tiff"])
def test_noop_spec_keeps_16_bit_grayscale(pipeline, fmt):
    data, values = sixteen_bit_gray(fmt)

    out = open_image(run(pipeline, data))

    assert out.mode in ("I;16", "I")
    assert list(out.getdata()) == values


class SlowPipeline(TransformPipeline):
    def run(self, data, spec, deadline=None):
        time.sleep(0.5)
        return data


def test_executor_gives_up_when_deadline_passes():
    executor = PipelineExecutor(SlowPipeline(), max_workers=1)
    try:
        started = time.monotonic()
        with pytest.raises(DeadlineExceededError):
            executor.run(make_image("png"), validate_spec({}), Deadline(0.05))
        assert time.monotonic() - started < 0.4
    finally:
        executor.shutdown()
