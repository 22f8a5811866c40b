import secrets
from pathlib import Path
from typing import Iterable, List, Protocol

from ..context import logger

CAPTCHA_ALLOWED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif"}
CAPTCHA_EXCLUDE_PREFIXES = {"puzzle-", "bg-", "slot-", "piece-"}


class ImageSource(Protocol):
    def pick_random_image(self) -> Path: ...


class LocalImageSource:
    """Picks background images from a directory on disk."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)

    def list_candidates(self) -> List[Path]:
        if not self.base_dir.is_dir():
            return []
        candidates: List[Path] = []
        for item in self.base_dir.iterdir():
            if not item.is_file():
                continue
            ext = item.suffix.lower()
            stem = item.stem.lower()
            if ext not in CAPTCHA_ALLOWED_EXTS:
                continue
            if any(stem.startswith(prefix) for prefix in CAPTCHA_EXCLUDE_PREFIXES):
                continue
            candidates.append(item)
        return sorted(candidates)

    def pick_random_image(self) -> Path:
        candidates = self.list_candidates()
        if not candidates:
            logger.error(f"No captcha background images found in {self.base_dir}")
            raise FileNotFoundError(f"No images found in directory: {self.base_dir}")
        return secrets.choice(candidates)


class StaticImageSource:
    def __init__(self, paths: Iterable[Path]):
        self.paths = [Path(path) for path in paths]
        if not self.paths:
            raise ValueError("StaticImageSource requires at least one image path")

    def pick_random_image(self) -> Path:
        return secrets.choice(self.paths)


__all__ = ["ImageSource", "LocalImageSource", "StaticImageSource"]
