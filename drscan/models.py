"""
Data models for the diabetic retinopathy screening application.
"""
import time
import uuid
from dataclasses import dataclass, asdict
from types import MappingProxyType
from typing import Dict, Any, Mapping

SEVERITY_LEVELS = (0, 1, 2, 3, 4)

DR_LEVELS: Mapping[int, str] = MappingProxyType({
    0: 'No DR',
    1: 'Mild DR',
    2: 'Moderate DR',
    3: 'Severe DR',
    4: 'Proliferative DR',
})

DR_DESCRIPTIONS: Mapping[int, str] = MappingProxyType({
    0: 'No visible signs of diabetic retinopathy. Regular screening should continue '
       'as recommended by your healthcare provider.',
    1: 'Mild non-proliferative diabetic retinopathy (NPDR) with microaneurysms. '
       'Monitor closely and maintain good blood sugar control.',
    2: 'Moderate NPDR with multiple microaneurysms, dot and blot hemorrhages, and hard '
       'exudates. More frequent monitoring required.',
    3: 'Severe NPDR with extensive hemorrhages, venous beading, and intraretinal '
       'microvascular abnormalities (IRMA). Immediate medical attention needed.',
    4: 'Proliferative diabetic retinopathy (PDR) with neovascularization and potential '
       'vitreous hemorrhage. Urgent treatment required.',
})

for _table in (DR_LEVELS, DR_DESCRIPTIONS):
    if tuple(sorted(_table)) != SEVERITY_LEVELS:
        raise RuntimeError(f"Severity table does not cover exactly {SEVERITY_LEVELS}")


def _check_level(level: int) -> int:
    # bool is an int subclass; True must not pass as level 1
    if isinstance(level, bool) or not isinstance(level, int) or level not in SEVERITY_LEVELS:
        raise ValueError(f"Severity level must be one of {SEVERITY_LEVELS}, got {level!r}")
    return level


def describe_level(level: int) -> str:
    """Return the fixed description for a severity level."""
    return DR_DESCRIPTIONS[_check_level(level)]


def level_label(level: int) -> str:
    """Return the short label (e.g. 'Moderate DR') for a severity level."""
    return DR_LEVELS[_check_level(level)]


@dataclass(frozen=True)
class AnalysisResult:
    """One classification outcome for an uploaded retinal image."""
    id: str
    timestamp: int  # epoch milliseconds
    image_url: str  # data:<mime>;base64,<payload>
    level: int  # 0 to 4
    description: str

    def __post_init__(self):
        _check_level(self.level)
        if self.description != DR_DESCRIPTIONS[self.level]:
            raise ValueError(f"Description does not match severity level {self.level}")

    @classmethod
    def create(cls, image_url: str, level: int) -> "AnalysisResult":
        """
        Build a new result with a fresh id and the current time.

        Args:
            image_url: Data URL of the analysed image
            level: Severity level returned by the classifier

        Returns:
            New AnalysisResult whose description comes from the severity table
        """
        return cls(
            id=str(uuid.uuid4()),
            timestamp=int(time.time() * 1000),
            image_url=image_url,
            level=level,
            description=describe_level(level),
        )

    @property
    def label(self) -> str:
        return DR_LEVELS[self.level]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted history shape."""
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'imageUrl': self.image_url,
            'level': self.level,
            'description': self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """
        Rebuild a result from its persisted shape.

        Raises:
            KeyError: If a field is missing
            ValueError: If the level or description is invalid
        """
        return cls(
            id=str(data['id']),
            timestamp=int(data['timestamp']),
            image_url=str(data['imageUrl']),
            level=data['level'],
            description=data['description'],
        )


@dataclass
class ImageFilters:
    """Display adjustments for the current image, in percent."""
    brightness: int = 100
    contrast: int = 100
    saturation: int = 100

    MIN_VALUE = 50
    MAX_VALUE = 150
    DEFAULT_VALUE = 100

    def reset(self) -> None:
        self.brightness = self.DEFAULT_VALUE
        self.contrast = self.DEFAULT_VALUE
        self.saturation = self.DEFAULT_VALUE

    def clamped(self) -> "ImageFilters":
        """Return a copy with every value forced into the 50-150 range."""
        values = {
            name: max(self.MIN_VALUE, min(self.MAX_VALUE, int(value)))
            for name, value in asdict(self).items()
        }
        return ImageFilters(**values)

    def is_default(self) -> bool:
        return asdict(self) == asdict(ImageFilters())
