"""
Image ingestion for XRay Report Assistant.

Turns uploaded radiographs into model-ready payloads:
- Filters candidates to declared image types
- Reads and size-checks the binary content
- Keeps the original MIME type for the model call
- Produces disposable preview thumbnails that must be released explicitly
"""

import asyncio
import base64
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Protocol
from uuid import uuid4

from PIL import Image

from app.config import settings
from app.core.exceptions import IngestionError
from app.utils.file_validators import FileValidator, file_validator
from app.utils.logger import get_logger

logger = get_logger("image_processor")


class CandidateFile(Protocol):
    """Anything with a filename, a declared type and an async read (e.g. UploadFile)."""

    filename: Optional[str]
    content_type: Optional[str]

    async def read(self) -> bytes: ...


@dataclass
class LocalFile:
    """Candidate backed by in-memory bytes or a path on disk."""

    filename: str
    content_type: Optional[str]
    data: Optional[bytes] = None
    path: Optional[Path] = None

    async def read(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise OSError(f"No content for {self.filename}")
        return await asyncio.to_thread(Path(self.path).read_bytes)


@dataclass
class PreviewHandle:
    """Thumbnail file on disk; owned by exactly one UploadedImage."""

    path: Optional[Path] = None
    released: bool = False

    def release(self) -> None:
        """Delete the thumbnail. Safe to call more than once."""
        if self.released:
            return
        self.released = True
        if self.path is not None:
            self.path.unlink(missing_ok=True)
            logger.debug("Preview released", path=str(self.path))


@dataclass
class UploadedImage:
    """An accepted radiograph, ready to be sent to the model."""

    filename: str
    mime_type: str
    data: bytes
    preview: PreviewHandle = field(default_factory=PreviewHandle)

    @property
    def base64_data(self) -> str:
        """Transport encoding of the image bytes."""
        return base64.b64encode(self.data).decode("ascii")

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ImageProcessor:
    """
    Converts candidate uploads into UploadedImage entries.

    Non-image candidates are skipped silently. A single unreadable file
    aborts the whole batch and releases any previews already created.
    """

    def __init__(
        self,
        validator: Optional[FileValidator] = None,
        preview_dir: Optional[Path] = None,
        preview_size: Optional[int] = None
    ):
        self.validator = validator or file_validator
        self._preview_dir = preview_dir
        self.preview_size = preview_size or settings.preview_size

    @property
    def preview_dir(self) -> Path:
        if self._preview_dir is None:
            self._preview_dir = settings.temp_path / "previews"
        self._preview_dir.mkdir(parents=True, exist_ok=True)
        return self._preview_dir

    async def ingest(self, candidates: Iterable[CandidateFile]) -> List[UploadedImage]:
        """
        Read and encode every image candidate, preserving input order.

        Args:
            candidates: Ordered files with declared MIME types

        Returns:
            Accepted images in input order

        Raises:
            IngestionError: If any accepted file cannot be read
        """
        images: List[UploadedImage] = []

        try:
            for candidate in candidates:
                filename = candidate.filename or "unnamed"

                if not self.validator.is_image_type(candidate.content_type):
                    logger.debug(
                        "Skipping non-image upload",
                        filename=filename,
                        content_type=candidate.content_type
                    )
                    continue

                try:
                    data = await candidate.read()
                except Exception as e:
                    raise IngestionError(
                        f"Failed to read file '{filename}': {e}"
                    ) from e

                self.validator.validate_file_size(data, filename)

                images.append(UploadedImage(
                    filename=filename,
                    mime_type=candidate.content_type.lower(),
                    data=data,
                    preview=self.create_preview(data, filename)
                ))
        except Exception as e:
            for image in images:
                image.preview.release()
            logger.warning("Image ingestion aborted", error=str(e))
            raise

        logger.info(
            "Images ingested",
            count=len(images),
            filenames=[image.filename for image in images]
        )
        return images

    def create_preview(self, data: bytes, filename: str) -> PreviewHandle:
        """
        Write a PNG thumbnail for display.

        Undecodable bytes yield an empty handle rather than an error; the
        model still receives the original payload.
        """
        if not self.validator.can_decode_image(data):
            logger.info("No preview for undecodable image", filename=filename)
            return PreviewHandle()

        path = self.preview_dir / f"{uuid4().hex}.png"
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.thumbnail((self.preview_size, self.preview_size))
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                img.save(path, format="PNG")
        except (Image.DecompressionBombError, OSError) as e:
            logger.warning("Preview generation failed", filename=filename, error=str(e))
            path.unlink(missing_ok=True)
            return PreviewHandle()

        return PreviewHandle(path=path)


class UploadSet:
    """
    The active set of uploaded images, unique by filename.

    Owns the preview handles of its entries: removing or clearing an entry
    releases its handle. Use as a context manager to release everything
    on exit.
    """

    def __init__(self):
        self._images: List[UploadedImage] = []

    def add(self, images: Iterable[UploadedImage]) -> List[UploadedImage]:
        """
        Append new images, dropping any whose filename is already present.

        Returns:
            The images actually added
        """
        existing = {image.filename for image in self._images}
        added = []
        for image in images:
            if image.filename in existing:
                logger.info("Duplicate upload dropped", filename=image.filename)
                image.preview.release()
                continue
            existing.add(image.filename)
            self._images.append(image)
            added.append(image)
        return added

    def remove(self, filename: str) -> bool:
        """Remove an entry by filename and release its preview."""
        for index, image in enumerate(self._images):
            if image.filename == filename:
                del self._images[index]
                image.preview.release()
                return True
        return False

    def clear(self) -> None:
        """Remove every entry, releasing all previews."""
        images, self._images = self._images, []
        for image in images:
            image.preview.release()

    @property
    def images(self) -> List[UploadedImage]:
        return list(self._images)

    def __iter__(self) -> Iterator[UploadedImage]:
        return iter(list(self._images))

    def __len__(self) -> int:
        return len(self._images)

    def __enter__(self) -> "UploadSet":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()


# Singleton instance
image_processor = ImageProcessor()
