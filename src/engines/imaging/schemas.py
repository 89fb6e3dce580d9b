from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutputFormat(str, Enum):
    JPG = "jpg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    ORIGINAL = "original"


class ResizeMode(str, Enum):
    FIT = "fit"
    EXACT = "exact"


class ResizePreset(str, Enum):
    NONE = "none"
    SQUARE = "square"
    FOUR_FIVE = "fourFive"
    THREE_FOUR = "threeFour"
    LANDSCAPE = "landscape"


class BackgroundMode(str, Enum):
    NONE = "none"
    TRANSPARENT = "transparent"
    SOLID = "solid"


class FitPolicy(str, Enum):
    CONTAIN = "contain"
    COVER = "cover"


# =============================================================================
# Processing Settings (one value per batch, never mutated)
# =============================================================================

class _SettingsModel(BaseModel):
    """Accepts both the camelCase wire keys and snake_case field names."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ResizeSettings(_SettingsModel):
    use_preset: bool = Field(default=False, alias="usePreset")
    preset: ResizePreset = ResizePreset.NONE
    width: Optional[int] = Field(default=None, ge=0)
    height: Optional[int] = Field(default=None, ge=0)
    # The contain/cover policies always keep the aspect ratio; the flag is
    # accepted so settings documents from existing clients validate.
    keep_aspect_ratio: bool = Field(default=True, alias="keepAspectRatio")
    mode: ResizeMode = ResizeMode.FIT


class BackgroundSettings(_SettingsModel):
    enabled: bool = False
    mode: BackgroundMode = BackgroundMode.NONE
    color: Optional[str] = "#ffffff"

    @property
    def is_active(self) -> bool:
        return self.enabled and self.mode != BackgroundMode.NONE

    @property
    def is_solid(self) -> bool:
        return self.enabled and self.mode == BackgroundMode.SOLID

    @property
    def is_transparent(self) -> bool:
        return self.enabled and self.mode == BackgroundMode.TRANSPARENT


class CompressionSettings(_SettingsModel):
    # Free-form on purpose: unknown levels map to the medium quality
    level: str = "medium"


class FileNamingSettings(_SettingsModel):
    suffix: Optional[str] = ""
    to_lowercase: bool = Field(default=False, alias="toLowercase")
    replace_spaces: bool = Field(default=False, alias="replaceSpaces")


class ProcessingSettings(_SettingsModel):
    output_format: OutputFormat = Field(default=OutputFormat.JPG, alias="outputFormat")
    resize: ResizeSettings = Field(default_factory=ResizeSettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    background: BackgroundSettings = Field(default_factory=BackgroundSettings)
    file_naming: FileNamingSettings = Field(default_factory=FileNamingSettings, alias="fileNaming")

    @field_validator("output_format", mode="before")
    @classmethod
    def normalize_output_format(cls, v):
        if isinstance(v, str):
            v = v.strip().lower().lstrip(".")
            if v == "jpeg":
                return OutputFormat.JPG
        return v


# =============================================================================
# Pipeline Values
# =============================================================================

@dataclass(frozen=True)
class ImageBlob:
    """Raw image bytes travelling through the pipeline."""
    data: bytes
    filename: str
    mime_type: str = "application/octet-stream"

    def with_data(self, data: bytes, mime_type: Optional[str] = None) -> "ImageBlob":
        """New blob for the same source file carrying a stage's output."""
        return ImageBlob(data=data, filename=self.filename, mime_type=mime_type or self.mime_type)


RGBA = Tuple[int, int, int, int]


@dataclass(frozen=True)
class ResizePlan:
    """Concrete geometry for one resize; None dimensions follow the source aspect ratio."""
    width: Optional[int]
    height: Optional[int]
    fit: FitPolicy
    background: Optional[RGBA] = None


@dataclass(frozen=True)
class ProcessedFile:
    name: str
    data: bytes


@dataclass(frozen=True)
class SingleResult:
    filename: str
    data: bytes
    skipped: Tuple[str, ...] = ()
    kind: str = field(default="single", init=False)


@dataclass(frozen=True)
class ArchiveResult:
    data: bytes
    filename: str = "processed_images.zip"
    entry_names: Tuple[str, ...] = ()
    skipped: Tuple[str, ...] = ()
    kind: str = field(default="archive", init=False)

    @property
    def entry_count(self) -> int:
        return len(self.entry_names)


BatchResult = Union[SingleResult, ArchiveResult]
