"""Local image store: image files on disk, laid out per installation and type."""

import time
from pathlib import Path

from loguru import logger

from pvsync.core.config import SyncSettings
from pvsync.core.exceptions import ValidationError

INSTALLATION_DIR_PREFIX = "installation_"
REQUIRED_IMAGE_DIR_PREFIX = "required_"
DEFAULT_FILE_NAME = "image.jpg"


class LocalImageStore:
    """Persists image files under ``base_dir`` and enforces store quotas."""

    def __init__(self, base_dir: str | Path, config: SyncSettings):
        self.base_dir = Path(base_dir)
        self.config = config

    def get_installation_directory(self, installation_id: int) -> Path:
        """Directory of one installation, created on demand."""
        path = self.base_dir / f"{INSTALLATION_DIR_PREFIX}{installation_id}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_required_image_directory(
        self, installation_id: int, required_image_id: int
    ) -> Path:
        """Directory of one required image type of an installation."""
        path = (
            self.get_installation_directory(installation_id)
            / f"{REQUIRED_IMAGE_DIR_PREFIX}{required_image_id}"
        )
        path.mkdir(parents=True, exist_ok=True)
        return path

    def is_image_file(self, path: str | Path) -> bool:
        """Check the extension against the allowed image formats."""
        return Path(path).suffix.lower() in self.config.allowed_extensions

    def get_images_for_required_type(
        self, installation_id: int, required_image_id: int
    ) -> list[Path]:
        """Image files stored for a required type."""
        target_dir = self.get_required_image_directory(installation_id, required_image_id)
        return sorted(
            p for p in target_dir.iterdir() if p.is_file() and self.is_image_file(p)
        )

    def get_installation_storage_size(self, installation_id: int) -> int:
        """Total bytes of image files stored for an installation."""
        installation_dir = self.get_installation_directory(installation_id)
        return sum(
            p.stat().st_size
            for p in installation_dir.rglob("*")
            if p.is_file() and self.is_image_file(p)
        )

    def validate(
        self,
        installation_id: int,
        required_image_id: int,
        file_name: str,
        size: int,
    ) -> None:
        """Raise ValidationError if the image may not be stored."""
        if not self.is_image_file(file_name):
            raise ValidationError(
                "Invalid image file extension",
                file_name=file_name,
            )

        if size > self.config.max_image_size_bytes:
            raise ValidationError(
                "Image size exceeds maximum allowed size",
                size=size,
                limit=self.config.max_image_size_bytes,
            )

        existing = self.get_images_for_required_type(installation_id, required_image_id)
        if len(existing) >= self.config.max_images_per_type:
            raise ValidationError(
                "Maximum number of images reached for this type",
                installation_id=installation_id,
                required_image_id=required_image_id,
            )

        current_size = self.get_installation_storage_size(installation_id)
        if current_size + size > self.config.max_storage_per_installation_bytes:
            raise ValidationError(
                "Maximum storage size reached for this installation",
                installation_id=installation_id,
            )

    def save_local_file(
        self,
        installation_id: int,
        required_image_id: int,
        source_bytes: bytes,
        suggested_name: str | None = None,
    ) -> str:
        """Validate and write an image file, returning its path."""
        base_name = Path(suggested_name).name if suggested_name else DEFAULT_FILE_NAME
        self.validate(installation_id, required_image_id, base_name, len(source_bytes))

        target_dir = self.get_required_image_directory(installation_id, required_image_id)
        stamp = int(time.time() * 1000)
        file_name = f"{stamp}_{base_name}"
        counter = 1
        while (target_dir / file_name).exists():
            file_name = f"{stamp}_{counter}_{base_name}"
            counter += 1

        target_path = target_dir / file_name
        target_path.write_bytes(source_bytes)

        logger.debug(
            f"Stored image {file_name} for installation {installation_id}, "
            f"required {required_image_id}"
        )
        return str(target_path)

    def read_file(self, path: str | Path) -> bytes:
        """Read a stored image file."""
        return Path(path).read_bytes()

    def delete_local_file(self, path: str | Path) -> None:
        """Delete an image file; a missing file is not an error."""
        file_path = Path(path)
        if file_path.exists():
            file_path.unlink()
            logger.debug(f"Deleted local image file: {file_path}")

    def cleanup_images(
        self,
        installation_id: int,
        required_image_id: int,
        active_paths: list[str],
    ) -> int:
        """Delete image files of a type that no active record references."""
        if not self.config.auto_cleanup_enabled:
            return 0

        keep = {str(Path(p)) for p in active_paths}
        deleted = 0
        for path in self.get_images_for_required_type(installation_id, required_image_id):
            if str(path) not in keep:
                try:
                    path.unlink()
                    deleted += 1
                except OSError as e:
                    logger.warning(f"Failed to delete image file: {e}")

        if deleted:
            logger.info(
                f"Image cleanup: deleted {deleted} files for installation "
                f"{installation_id}, required {required_image_id}"
            )
        return deleted
