"""SDR encoder module.

This module turns typed input values (numeric strings, scalars, dates and
coordinates) into sparse distributed representations: fixed-width tuples
of 0/1 bits. Every encoder is configured once through an
:class:`EncoderConfig`, whose geometry is validated at construction time,
and afterwards behaves as a pure function of its input.

The variant set is closed: :class:`BinaryEncoder`, :class:`ScalarEncoder`,
:class:`DateTimeEncoder` and :class:`GeoSpatialEncoder`. They share the
:class:`Encoder` protocol rather than a base class.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

from src.errors import ConfigurationError, InputValidationError

SparseVector = tuple[int, ...]

# Default bit count of the binary value encoder.
BINARY_BITS: int = 156

SEASON_ENCODER = "SeasonEncoder"
DAY_OF_WEEK_ENCODER = "DayOfWeekEncoder"
WEEKEND_ENCODER = "WeekendEncoder"
DATETIME_ENCODER = "DateTimeEncoder"

DATETIME_SUB_ENCODERS = frozenset(
    {SEASON_ENCODER, DAY_OF_WEEK_ENCODER, WEEKEND_ENCODER, DATETIME_ENCODER}
)

# Settings keys as they appear in legacy encoder dictionaries.
_LEGACY_KEYS: dict[str, str] = {
    "Name": "name",
    "W": "w",
    "N": "n",
    "MinVal": "min_value",
    "MaxVal": "max_value",
    "Radius": "radius",
    "Periodic": "periodic",
    "ClipInput": "clip_input",
    "Offset": "offset",
}

_DATE_FORMATS = (
    "%m/%d/%Y %H:%M:%S %z",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
    "%Y/%m/%d",
)


@dataclass(frozen=True)
class EncoderConfig:
    """Geometry and range of a single encoder.

    Attributes:
        name: Encoder name (also the ordering key inside composites).
        w: Number of active bits.
        n: Total number of bits.
        min_value: Lower bound of the input range.
        max_value: Upper bound of the input range.
        radius: Informational radius; ``n`` always governs the geometry.
        periodic: Whether the range wraps around.
        clip_input: Clamp out-of-range input instead of rejecting it.
        offset: Alignment tag for composite sub-encoders.
    """

    name: str
    w: int
    n: int
    min_value: float = 0.0
    max_value: float = 1.0
    radius: float = -1.0
    periodic: bool = False
    clip_input: bool = False
    offset: int = 0

    def __post_init__(self) -> None:
        for field_name in ("w", "n", "offset"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int):
                msg = f"Encoder '{self.name}': {field_name} must be an integer, got {value!r}"
                raise ConfigurationError(msg)
        if self.n <= 0:
            msg = f"Encoder '{self.name}': n must be positive, got {self.n}"
            raise ConfigurationError(msg)
        if not 0 < self.w <= self.n:
            msg = f"Encoder '{self.name}': w must satisfy 0 < w <= n, got w={self.w}, n={self.n}"
            raise ConfigurationError(msg)
        if self.periodic:
            if self.min_value == self.max_value:
                msg = f"Encoder '{self.name}': periodic range must not be empty"
                raise ConfigurationError(msg)
        elif self.min_value >= self.max_value:
            msg = (
                f"Encoder '{self.name}': min_value must be lower than max_value, "
                f"got {self.min_value} >= {self.max_value}"
            )
            raise ConfigurationError(msg)
        if self.offset < 0:
            msg = f"Encoder '{self.name}': offset must not be negative, got {self.offset}"
            raise ConfigurationError(msg)

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str | None = None) -> "EncoderConfig":
        """Create an EncoderConfig from a settings dictionary.

        Accepts snake_case keys as well as the legacy ``W``/``N``/``MinVal``
        style keys.

        Args:
            data: Encoder settings
            name: Fallback name when the settings carry none

        Returns:
            EncoderConfig instance

        Raises:
            ConfigurationError: If required keys are missing or values are invalid
        """
        normalized = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}
        if name is not None:
            normalized.setdefault("name", name)
        normalized.setdefault("name", "encoder")

        missing = [key for key in ("w", "n") if key not in normalized]
        if missing:
            msg = f"Encoder settings for '{normalized['name']}' must define {missing}"
            raise ConfigurationError(msg)

        known = set(cls.__dataclass_fields__)
        try:
            return cls(**{key: value for key, value in normalized.items() if key in known})
        except TypeError as e:
            msg = f"Invalid encoder settings for '{normalized['name']}': {e}"
            raise ConfigurationError(msg) from e


class Encoder(Protocol):
    """Capability shared by all encoder variants."""

    @property
    def width(self) -> int: ...

    def encode(self, value: Any) -> SparseVector: ...


def _to_float(value: Any) -> float:
    """Parse a real number from a number or numeric string."""
    if isinstance(value, bool) or value is None:
        msg = f"Value {value!r} cannot be parsed as a number"
        raise InputValidationError(msg)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            msg = f"Value {value!r} cannot be parsed as a number"
            raise InputValidationError(msg) from None
    else:
        msg = f"Value {value!r} cannot be parsed as a number"
        raise InputValidationError(msg)
    if not math.isfinite(number):
        msg = f"Value {value!r} is not a finite number"
        raise InputValidationError(msg)
    return number


def _to_integer(value: Any) -> int:
    """Parse a number or numeric string and truncate it toward zero.

    Strings go through :class:`~decimal.Decimal` so integers wider than a
    double's 53-bit mantissa keep every digit.
    """
    if isinstance(value, bool) or value is None:
        msg = f"Value {value!r} cannot be parsed as a number"
        raise InputValidationError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(_to_float(value))
    if not isinstance(value, str):
        msg = f"Value {value!r} cannot be parsed as a number"
        raise InputValidationError(msg)
    try:
        number = Decimal(value.strip())
    except InvalidOperation:
        msg = f"Value {value!r} cannot be parsed as a number"
        raise InputValidationError(msg) from None
    if not number.is_finite():
        msg = f"Value {value!r} is not a finite number"
        raise InputValidationError(msg)
    return int(number)


class BinaryEncoder:
    """Encodes the integer part of a number as a left-padded binary code."""

    def __init__(self, n: int = BINARY_BITS) -> None:
        if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
            msg = f"Binary encoder needs a positive bit count, got {n!r}"
            raise ConfigurationError(msg)
        self.n = n

    @property
    def width(self) -> int:
        return self.n

    def encode(self, value: Any) -> SparseVector:
        """Encode *value* into exactly ``n`` bits.

        Raises:
            InputValidationError: If the value is not a non-negative real number
            ConfigurationError: If the binary code is wider than ``n``
        """
        number = _to_integer(value)
        if number < 0:
            msg = f"Binary encoder cannot encode negative value {value!r}"
            raise InputValidationError(msg)

        binary = format(number, "b")
        if len(binary) > self.n:
            msg = f"Value {value!r} needs {len(binary)} bits, encoder has only {self.n}"
            raise ConfigurationError(msg)

        return tuple(1 if char == "1" else 0 for char in binary.rjust(self.n, "0"))


class ScalarEncoder:
    """Maps a number onto a contiguous run of ``w`` active bits out of ``n``.

    Neighbouring values share most of their active bits. Non-periodic
    encoders place ``min_value`` on the first ``w`` bits and ``max_value``
    on the last ``w`` bits; periodic encoders wrap the run around the end
    of the vector, and ``max_value`` coincides with ``min_value``.
    """

    def __init__(self, config: EncoderConfig) -> None:
        self.config = config

    @property
    def width(self) -> int:
        return self.config.n

    @property
    def resolution(self) -> float:
        """Input distance between two adjacent bucket positions."""
        cfg = self.config
        span = abs(cfg.max_value - cfg.min_value)
        if cfg.periodic:
            return span / cfg.n
        if cfg.n == cfg.w:
            return span
        return span / (cfg.n - cfg.w)

    @property
    def radius(self) -> float:
        """Input distance over which two values still share active bits."""
        return self.config.w * self.resolution

    def _clip(self, number: float) -> float:
        cfg = self.config
        low, high = sorted((cfg.min_value, cfg.max_value))
        if low <= number <= high:
            return number
        if not cfg.clip_input:
            msg = f"Encoder '{cfg.name}': input {number} is outside [{low}, {high}]"
            raise InputValidationError(msg)
        return min(max(number, low), high)

    def first_on_bit(self, value: Any) -> int:
        """Return the index of the first active bit for *value*."""
        cfg = self.config
        number = self._clip(_to_float(value))
        span = cfg.max_value - cfg.min_value

        if cfg.periodic:
            fraction = ((number - cfg.min_value) / span) % 1.0
            center = min(int(fraction * cfg.n), cfg.n - 1)
            return (center - (cfg.w - 1) // 2) % cfg.n

        if cfg.n == cfg.w:
            return 0
        start = math.floor((number - cfg.min_value) * (cfg.n - cfg.w) / span + 0.5)
        return min(max(start, 0), cfg.n - cfg.w)

    def encode(self, value: Any) -> SparseVector:
        cfg = self.config
        start = self.first_on_bit(value)
        bits = [0] * cfg.n
        for i in range(cfg.w):
            bits[(start + i) % cfg.n] = 1
        return tuple(bits)


class GeoSpatialEncoder:
    """Scalar encoding of a single coordinate (latitude or longitude)."""

    def __init__(self, config: EncoderConfig) -> None:
        if config.periodic:
            msg = f"Geospatial encoder '{config.name}' cannot be periodic"
            raise ConfigurationError(msg)
        self.config = config
        self._scalar = ScalarEncoder(config)

    @property
    def width(self) -> int:
        return self.config.n

    def encode(self, value: Any) -> SparseVector:
        return self._scalar.encode(value)


def _add_years(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return moment.replace(year=moment.year + years, day=28)


def _epoch_days(moment: datetime) -> float:
    return math.floor(moment.timestamp() / 86400)


def parse_datetime(value: Any) -> datetime:
    """Parse a date/time value; naive values are taken as UTC.

    Raises:
        InputValidationError: If the value is not a recognised date string
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    moment = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            else:
                msg = f"Value {value!r} cannot be parsed as a date"
                raise InputValidationError(msg) from None
    else:
        msg = f"Value {value!r} cannot be parsed as a date"
        raise InputValidationError(msg)

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def default_datetime_settings(reference: datetime | None = None) -> dict[str, EncoderConfig]:
    """Build the standard four sub-encoder configurations.

    The absolute date encoder covers the window from four years before
    to one year after *reference* (default: now), at day precision.
    """
    if reference is None:
        reference = datetime.now(UTC)
    elif reference.tzinfo is None:
        reference = reference.replace(tzinfo=UTC)

    return {
        SEASON_ENCODER: EncoderConfig(
            name=SEASON_ENCODER, w=3, n=12, min_value=1.0, max_value=367.0,
            periodic=True, clip_input=True, offset=100,
        ),
        DAY_OF_WEEK_ENCODER: EncoderConfig(
            name=DAY_OF_WEEK_ENCODER, w=21, n=66, min_value=0.0, max_value=7.0,
            clip_input=True, offset=90,
        ),
        WEEKEND_ENCODER: EncoderConfig(
            name=WEEKEND_ENCODER, w=21, n=42, min_value=0.0, max_value=1.0,
            clip_input=True, offset=100,
        ),
        DATETIME_ENCODER: EncoderConfig(
            name=DATETIME_ENCODER, w=21, n=1024,
            min_value=_epoch_days(_add_years(reference, -4)),
            max_value=_epoch_days(_add_years(reference, 1)),
            clip_input=True, offset=100,
        ),
    }


class DateTimeEncoder:
    """Composite encoder over season, weekday, weekend and absolute date.

    The output is the concatenation of the configured sub-encoders,
    ordered by sub-encoder name. Any subset of the four sub-encoders may
    be configured, but the composite length must be even so the vector
    can be drawn as a 2D grid.
    """

    def __init__(self, settings: dict[str, EncoderConfig]) -> None:
        if not settings:
            msg = "DateTime encoder needs at least one sub-encoder"
            raise ConfigurationError(msg)
        unknown = sorted(set(settings) - DATETIME_SUB_ENCODERS)
        if unknown:
            msg = f"Unknown DateTime sub-encoders: {unknown}"
            raise ConfigurationError(msg)

        self._encoders: list[tuple[str, ScalarEncoder]] = [
            (name, ScalarEncoder(settings[name])) for name in sorted(settings)
        ]
        total = sum(encoder.width for _, encoder in self._encoders)
        if total % 2 != 0:
            msg = (
                f"DateTime encoder produces {total} bits; only an even number of bits "
                f"can be drawn as a 2D grid"
            )
            raise ConfigurationError(msg)
        self._width = total

    @property
    def width(self) -> int:
        return self._width

    @property
    def segments(self) -> list[tuple[str, int, int]]:
        """``(name, start, length)`` of each sub-encoder in the composite."""
        result = []
        start = 0
        for name, encoder in self._encoders:
            result.append((name, start, encoder.width))
            start += encoder.width
        return result

    @staticmethod
    def _feature(name: str, moment: datetime) -> float:
        if name == SEASON_ENCODER:
            return float(moment.timetuple().tm_yday)
        if name == DAY_OF_WEEK_ENCODER:
            return float(moment.weekday())
        if name == WEEKEND_ENCODER:
            return 1.0 if moment.weekday() >= 5 else 0.0
        return _epoch_days(moment)

    def encode(self, value: Any) -> SparseVector:
        moment = parse_datetime(value)
        bits: list[int] = []
        for name, encoder in self._encoders:
            bits.extend(encoder.encode(self._feature(name, moment)))
        return tuple(bits)


def build_encoder(kind: str, config: EncoderConfig | dict[str, EncoderConfig]) -> Encoder:
    """Construct an encoder of the given variant.

    Args:
        kind: One of ``binary``, ``scalar``, ``datetime``, ``geospatial``
        config: Encoder configuration, or sub-encoder configurations for
            ``datetime``

    Returns:
        Encoder instance

    Raises:
        ConfigurationError: If the kind is unknown or does not match the config
    """
    if kind == "datetime":
        if not isinstance(config, dict):
            msg = "DateTime encoder needs a mapping of sub-encoder configurations"
            raise ConfigurationError(msg)
        return DateTimeEncoder(config)

    if not isinstance(config, EncoderConfig):
        msg = f"Encoder kind '{kind}' needs a single EncoderConfig"
        raise ConfigurationError(msg)
    if kind == "binary":
        return BinaryEncoder(config.n)
    if kind == "scalar":
        return ScalarEncoder(config)
    if kind == "geospatial":
        return GeoSpatialEncoder(config)

    msg = f"Unknown encoder kind: {kind!r}"
    raise ConfigurationError(msg)


def aqi_scalar_config(min_value: float, max_value: float) -> EncoderConfig:
    """Scalar encoder settings used for air-quality index batches."""
    return EncoderConfig(
        name="scalar", w=21, n=100, min_value=min_value, max_value=max_value,
        radius=-1.0, periodic=False, clip_input=False,
    )


def geospatial_config() -> EncoderConfig:
    """Latitude encoder settings spanning Italy (48.75) to Germany (51.86)."""
    return EncoderConfig(
        name="latitude", w=21, n=40, min_value=48.75, max_value=51.86,
        radius=1.5, periodic=False, clip_input=True,
    )
