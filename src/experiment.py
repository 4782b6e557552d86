"""Experiment orchestration module.

:class:`ExperimentRunner` takes one :class:`~src.models.ExperimentRequest`
through the encode-and-render stages, uploads every rendered image and
assembles the :class:`~src.models.ExperimentResult` record.

Stages:

1. ``single-value`` (always): binary encoding of ``Value1`` drawn as a 2D
   bitmap, and of ``Value2`` (or ``Value1``) drawn as a 1D strip.
2. ``datetime`` (when ``DateTimeDataRow`` names a file): one DateTime
   bitmap per row of the batch file.
3. ``scalar-aqi`` (when ``ScalarEncoderAQI`` names a file): per row, one
   scalar bitmap per input, a side-by-side overview and a heatmap of
   how often each bit was active.
4. ``geospatial`` (when ``Value3`` is set): latitude bitmap.

Each stage, and each row of a batch stage, is isolated: a failure is
logged and recorded as a failed :class:`~src.models.StageOutcome`, and
processing continues with the next one.
"""

import functools
import json
import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import numpy as np

from src.bitmap import (
    BLACK,
    BLUE,
    WHITE,
    YELLOW,
    draw_1d_bitmap,
    draw_bitmap,
    draw_bitmaps,
    draw_heatmaps,
    near_square_shape,
    to_grid,
)
from src.config import WorkerConfig
from src.encoders import (
    BinaryEncoder,
    DateTimeEncoder,
    GeoSpatialEncoder,
    ScalarEncoder,
    aqi_scalar_config,
    default_datetime_settings,
    geospatial_config,
)
from src.models import (
    DateTimeDataRow,
    ExperimentRequest,
    ExperimentResult,
    ScalarAqiDataRow,
    StageOutcome,
    parse_datetime_rows,
    parse_scalar_aqi_rows,
)
from src.storage import StorageGateway, result_file_names

logger = logging.getLogger(__name__)

TEST_NAME = "SDR to Bitmap"

# No accuracy metric is defined for this experiment; every completed run
# reports this value.
ACCURACY_PLACEHOLDER: float = 100.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _timestamp() -> str:
    """UTC timestamp with millisecond precision for artifact names."""
    return _utcnow().strftime("%Y%m%d_%H%M%S_%f")[:-3]


def _slug(text: str) -> str:
    return re.sub(r"[^0-9A-Za-z]+", "-", text).strip("-") or "value"


def _describe_error(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


class ExperimentRunner:
    """Runs the SDR-to-bitmap experiment for one request at a time."""

    def __init__(self, storage: StorageGateway, config: WorkerConfig | None = None) -> None:
        self.storage = storage
        self.config = config or WorkerConfig()

    def _new_result(self, request: ExperimentRequest) -> ExperimentResult:
        row_key = uuid.uuid4().hex
        return ExperimentResult(
            partition_key=f"{self.config.group_id}-{row_key}",
            row_key=row_key,
            experiment_id=request.experiment_id or _utcnow().strftime("%Y%m%d%H%M%S%f")[:-3],
            name=request.name,
            description=request.description,
            test_name=TEST_NAME,
        )

    async def process(self, request: ExperimentRequest) -> ExperimentResult:
        """Run every applicable stage for *request* and return the result record."""
        result = self._new_result(request)
        result.start_time_utc = _utcnow()
        logger.info(
            "Experiment %s started (row key %s, input file %s)",
            result.experiment_id,
            result.row_key,
            request.input_file,
        )

        stages = result.stages
        stages.append(await self._run_stage("single-value", self._single_value_stage, request))

        if request.datetime_data_row:
            # one date window per batch, anchored at the experiment start
            datetime_encoder = DateTimeEncoder(default_datetime_settings(result.start_time_utc))
            stages.extend(
                await self._batch_stages(
                    "datetime",
                    request.datetime_data_row,
                    parse_datetime_rows,
                    functools.partial(self._datetime_row_stage, datetime_encoder),
                )
            )

        if request.scalar_encoder_aqi:
            stages.extend(
                await self._batch_stages(
                    "scalar-aqi",
                    request.scalar_encoder_aqi,
                    parse_scalar_aqi_rows,
                    self._scalar_aqi_row_stage,
                )
            )

        if request.value3 is not None:
            stages.append(await self._run_stage("geospatial", self._geospatial_stage, request))

        result.end_time_utc = _utcnow()
        result.test_data = json.dumps(
            {
                "InputFile": request.input_file,
                "DateTimeDataRow": request.datetime_data_row,
                "ScalarEncoderAQI": request.scalar_encoder_aqi,
                "Stages": [stage.to_dict() for stage in stages],
            },
            indent=2,
        )
        result.accuracy = ACCURACY_PLACEHOLDER

        failed = result.failed_stages
        logger.info(
            "Experiment %s completed: %d stages, %d failed",
            result.experiment_id,
            len(stages),
            len(failed),
        )
        return result

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        name: str,
        stage: Callable[..., Awaitable[list[str]]],
        *args: Any,
    ) -> StageOutcome:
        """Run one stage and turn its artifacts or its exception into an outcome."""
        try:
            artifacts = await stage(*args)
        except Exception as exc:
            logger.error("Stage %s failed: %s", name, _describe_error(exc), exc_info=True)
            return StageOutcome(name=name, success=False, error_message=_describe_error(exc))

        logger.info("Stage %s completed with %d artifacts", name, len(artifacts))
        return StageOutcome(name=name, success=True, artifacts=artifacts)

    async def _batch_stages(
        self,
        name: str,
        file_name: str,
        parse: Callable[[str], list[Any]],
        render_row: Callable[[int, Any], Awaitable[list[str]]],
    ) -> list[StageOutcome]:
        """Load a batch file and run one isolated stage per row."""
        try:
            text = await self.storage.download_input_file(file_name)
            rows = parse(text)
        except Exception as exc:
            logger.error("Stage %s: cannot load %s: %s", name, file_name, _describe_error(exc))
            return [StageOutcome(name=name, success=False, error_message=_describe_error(exc))]

        if not rows:
            logger.warning("Stage %s: %s contains no rows", name, file_name)
            return [StageOutcome(name=name, success=True)]

        outcomes = []
        for index, row in enumerate(rows, start=1):
            outcomes.append(await self._run_stage(f"{name}[{index}]", render_row, index, row))
        return outcomes

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _single_value_stage(self, request: ExperimentRequest) -> list[str]:
        encoder = BinaryEncoder(self.config.binary_bits)

        vector = encoder.encode(request.value1)
        grid = to_grid(vector, *near_square_shape(len(vector)))
        bitmap = draw_bitmap(grid, self.config.bitmap_size, BLACK, YELLOW)
        bitmap_name = f"EncodedValueVisualization_BinaryEncoder_{_timestamp()}.png"
        await self.storage.upload_result_file(bitmap_name, bitmap)

        strip_vector = encoder.encode(request.value2 or request.value1)
        strip = draw_1d_bitmap(strip_vector, scale=self.config.strip_scale)
        strip_name = f"Draw1DBitmap_{_timestamp()}.png"
        await self.storage.upload_result_file(strip_name, strip)

        return [bitmap_name, strip_name]

    async def _datetime_row_stage(
        self, encoder: DateTimeEncoder, index: int, row: DateTimeDataRow
    ) -> list[str]:
        logger.info(
            "DataRow - W: %s, R: %s, Input: %s, ExpectedOutput: %s",
            row.w,
            row.r,
            row.input,
            ", ".join(str(bit) for bit in row.expected_output),
        )
        vector = encoder.encode(row.input)
        grid = to_grid(vector, *near_square_shape(len(vector)))
        bitmap = draw_bitmap(grid, self.config.bitmap_size, BLACK, YELLOW, text=row.input)

        name = f"DateTimeBitMap_{_slug(row.input)}_{index}_{_timestamp()}.png"
        await self.storage.upload_result_file(name, bitmap)
        return [name]

    async def _scalar_aqi_row_stage(self, index: int, row: ScalarAqiDataRow) -> list[str]:
        logger.info(
            "DataRow - Inputs: %s, MinValue: %s, MaxValue: %s",
            ", ".join(str(value) for value in row.inputs),
            row.min_value,
            row.max_value,
        )
        if not row.inputs:
            logger.warning("Scalar AQI row %d has no inputs", index)
            return []

        encoder = ScalarEncoder(aqi_scalar_config(row.min_value, row.max_value))
        vectors = [encoder.encode(value) for value in row.inputs]
        grids = [to_grid(vector) for vector in vectors]
        size = self.config.bitmap_size

        images = [draw_bitmap(grid, size, WHITE, BLUE) for grid in grids]
        base_name = f"ScalarAQIBitmap_{index}_{_timestamp()}"
        await self.storage.upload_result_files(base_name, images)
        names = result_file_names(base_name, len(images))

        grid_width, grid_height = grids[0].shape
        overview = draw_bitmaps(
            grids,
            width=max(size, len(grids) * grid_width),
            height=max(size // 4, grid_height),
            inactive_color=WHITE,
            active_color=BLUE,
        )
        overview_name = f"ScalarAQIBatch_{index}_{_timestamp()}.png"
        await self.storage.upload_result_file(overview_name, overview)
        names.append(overview_name)

        # share of inputs that activated each bit, on the 0-255 heat scale
        frequency = np.mean(np.asarray(vectors, dtype=float), axis=0) * 255.0
        heatmap = draw_heatmaps([to_grid(frequency)], width=size, height=size)
        heatmap_name = f"ScalarAQIHeatmap_{index}_{_timestamp()}.png"
        await self.storage.upload_result_file(heatmap_name, heatmap)
        names.append(heatmap_name)

        return names

    async def _geospatial_stage(self, request: ExperimentRequest) -> list[str]:
        encoder = GeoSpatialEncoder(geospatial_config())
        vector = encoder.encode(request.value3)
        grid = to_grid(vector, *near_square_shape(len(vector)))
        bitmap = draw_bitmap(grid, self.config.bitmap_size, BLACK, YELLOW)

        name = f"GeoSpatialBitmap_{_timestamp()}.png"
        await self.storage.upload_result_file(name, bitmap)
        return [name]
