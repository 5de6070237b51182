"""Pydantic model for the persisted user configuration (``config.json``)."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from feedstream import __version__

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

DEFAULT_TIMEOUT = 30  # seconds
DEFAULT_BATCH_SIZE = 100
DISABLED_USER_AGENT = "-"
PALETTE_SIZE = 256


class ColorMap:
    """Fixed 256-slot palette remap; unmapped indexes map to themselves."""

    __slots__ = ("_slots",)

    def __init__(self, mapping: dict[int, int] | None = None):
        slots = list(range(PALETTE_SIZE))
        for key, value in (mapping or {}).items():
            slots[key % PALETTE_SIZE] = value % PALETTE_SIZE
        self._slots = tuple(slots)

    def __call__(self, color: int) -> int:
        return self._slots[color % PALETTE_SIZE]


class UserConfig(BaseModel):
    """User-editable settings, stored with the camelCase keys used on disk."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    version: str = __version__
    user_agent: str = Field(default=f"feedstream/{__version__}", alias="userAgent")
    timeout: int = Field(default=DEFAULT_TIMEOUT, ge=0)  # seconds
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=0, alias="batchSize")
    last_run: datetime = Field(default=EPOCH, alias="lastRun")
    styling: int = Field(default=0, ge=0, le=2)  # 0: default, 1: enabled, 2: disabled
    summary: int = Field(default=0, ge=0, le=1)  # 0: disabled, 1: enabled
    color_map: dict[int, int] = Field(default_factory=dict, alias="colorMap")
    hide_future_items: bool = Field(default=False, alias="hideFutureItems")

    @field_validator("color_map")
    @classmethod
    def _check_palette_range(cls, value: dict[int, int]) -> dict[int, int]:
        for key, mapped in value.items():
            if not 0 <= key < PALETTE_SIZE or not 0 <= mapped < PALETTE_SIZE:
                raise ValueError(f"color mapping {key}:{mapped} is outside 0-{PALETTE_SIZE - 1}")
        return value

    @field_validator("last_run")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def effective_timeout(self) -> int:
        return self.timeout or DEFAULT_TIMEOUT

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size or DEFAULT_BATCH_SIZE

    @property
    def palette(self) -> ColorMap:
        return ColorMap(self.color_map)
