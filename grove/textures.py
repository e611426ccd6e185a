"""
Texture references for bark and leaf materials.

No image data is decoded here. The provider maps closed (species, channel)
keys to file references that a renderer can resolve; it is built once and is
read-only afterwards, so any number of trees may share it.

Layout under the asset root:
    bark/{type}_{channel}_1k.jpg   (channel in ao, color, normal, roughness)
    leaves/{type}_color.png
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from grove.config import BarkType, LeafType, coerce_enum


class BarkChannel(str, Enum):
    """PBR map kinds available for each bark species."""

    AO = "ao"
    COLOR = "color"
    NORMAL = "normal"
    ROUGHNESS = "roughness"


@dataclass(frozen=True)
class TextureRef:
    """
    A texture file reference.

    Attributes:
        key: Stable lookup key, e.g. "bark/oak/normal"
        path: File location under the asset root
        srgb: True for colour maps; data maps (normal, ao, roughness) are linear
        wrap: Sampler wrap mode
    """

    key: str
    path: Path
    srgb: bool
    wrap: str = "repeat"


class TextureProvider:
    """Read-only registry of bark and leaf texture references."""

    def __init__(self, root: str | Path = "assets") -> None:
        self.root = Path(root)
        refs = {}
        for bark in BarkType:
            for channel in BarkChannel:
                ref = TextureRef(
                    key=f"bark/{bark.value}/{channel.value}",
                    path=self.root / "bark" / f"{bark.value}_{channel.value}_1k.jpg",
                    srgb=channel is BarkChannel.COLOR,
                )
                refs[(bark, channel)] = ref
        for leaf in LeafType:
            refs[leaf] = TextureRef(
                key=f"leaves/{leaf.value}/color",
                path=self.root / "leaves" / f"{leaf.value}_color.png",
                srgb=True,
                wrap="clamp",
            )
        self._refs = MappingProxyType(refs)

    def __len__(self) -> int:
        return len(self._refs)

    def bark(self, type: BarkType | str, channel: BarkChannel | str) -> TextureRef:
        bark = coerce_enum(BarkType, type, "bark.type")
        return self._refs[(bark, coerce_enum(BarkChannel, channel, "bark channel"))]

    def bark_set(self, type: BarkType | str) -> dict[BarkChannel, TextureRef]:
        """All channels for one bark species."""
        return {channel: self.bark(type, channel) for channel in BarkChannel}

    def leaf(self, type: LeafType | str) -> TextureRef:
        return self._refs[coerce_enum(LeafType, type, "leaves.type")]

    def references(self) -> list[TextureRef]:
        return list(self._refs.values())

    def missing(self) -> list[TextureRef]:
        """References whose files do not exist under the asset root."""
        return [ref for ref in self._refs.values() if not ref.path.is_file()]
