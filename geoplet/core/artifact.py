"""Generated artwork held between generation and mint."""

from dataclasses import dataclass
from typing import Optional

from ..exceptions import ArtifactTooLarge

MAX_ARTIFACT_BYTES = 24 * 1024
WEBP_DATA_URI_PREFIX = "data:image/webp;base64,"


def payload_size(image_data: str) -> int:
    """Bytes the image string occupies as contract calldata."""
    return len(image_data.encode("utf-8"))


@dataclass
class GeneratedArtifact:
    """A base64 image (usually a ``data:image/webp;base64,`` URI) for one FID."""

    image_data: str
    prompt: Optional[str] = None
    model: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return payload_size(self.image_data)

    @property
    def is_empty(self) -> bool:
        return not self.image_data or self.image_data == WEBP_DATA_URI_PREFIX

    def validate_size(self, max_bytes: int = MAX_ARTIFACT_BYTES) -> None:
        if self.size_bytes > max_bytes:
            raise ArtifactTooLarge(self.size_bytes, max_bytes)
