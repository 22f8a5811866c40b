import os
from collections import Counter
from pathlib import Path
from random import Random
from typing import List, Tuple

os.environ.setdefault("ENV", "development")
os.environ.setdefault("CAPTCHA_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("CAPTCHA_STORE", "memory")

import pytest
from PIL import Image
from redis.exceptions import ConnectionError as RedisConnectionError

from slidegate.config import EmailCaptchaConfig, ImageCaptchaConfig, Size
from slidegate.services.email_captcha import EmailCaptchaService
from slidegate.services.image_captcha import ImageCaptchaService
from slidegate.services.images import StaticImageSource
from slidegate.services.puzzle import PuzzleGenerator
from slidegate.services.store import MemoryTTLStore, RedisTTLStore
from slidegate.services.trajectory import Trajectory

SECRET = "test-signing-secret"


def human_trail(distance: float, steps: int = 20, start_x: float = 20.0, start_y: float = 100.0) -> List[Tuple[float, float]]:
    """Smooth left-to-right drag covering ``distance`` pixels."""
    points = [(start_x, start_y)]
    for index in range(1, steps + 1):
        wobble = (index % 3) - 1
        points.append((start_x + distance * index / steps, start_y + wobble))
    return points


def human_trajectory(distance: float, duration_ms: float = 1200.0) -> Trajectory:
    return Trajectory(
        final_x=distance,
        slider_offset_x=distance,
        duration_ms=duration_ms,
        samples=human_trail(distance),
    )


@pytest.fixture
def source_image(tmp_path: Path) -> Path:
    image = Image.new("RGB", (480, 270))
    pixels = image.load()
    for x in range(image.width):
        for y in range(image.height):
            pixels[x, y] = (x % 256, y % 256, (x * y) % 256)
    path = tmp_path / "landscape.png"
    image.save(path)
    return path


@pytest.fixture
def store() -> MemoryTTLStore:
    return MemoryTTLStore()


@pytest.fixture
def image_config() -> ImageCaptchaConfig:
    return ImageCaptchaConfig(
        ttl_seconds=60,
        token_ttl_seconds=300,
        tolerance_px=10,
        signing_secret=SECRET,
        signing_algorithm="HS256",
        default_background_size=Size(360, 200),
        default_piece_size=Size(60, 60),
    )


@pytest.fixture
def email_config() -> EmailCaptchaConfig:
    return EmailCaptchaConfig(
        ttl_seconds=300,
        token_ttl_seconds=300,
        code_length=6,
        signing_secret=SECRET,
        signing_algorithm="HS256",
    )


@pytest.fixture
def image_service(image_config, store, source_image) -> ImageCaptchaService:
    generator = PuzzleGenerator(shape_rng=Random(11), offset_rng=Random(5))
    return ImageCaptchaService(image_config, store, StaticImageSource([source_image]), generator=generator)


@pytest.fixture
def email_service(email_config, store) -> EmailCaptchaService:
    return EmailCaptchaService(email_config, store)


class FlakyRedisClient:
    """In-memory stand-in for ``redis.asyncio.Redis`` that fails chosen commands.

    Commands named in ``failing`` raise a connection error; ``calls`` counts
    every attempt so tests can check nothing was retried.
    """

    def __init__(self):
        self.backend = MemoryTTLStore()
        self.failing = set()
        self.calls = Counter()

    def _attempt(self, command: str):
        self.calls[command] += 1
        if command in self.failing:
            raise RedisConnectionError("Connection refused")

    async def setex(self, key, ttl_seconds, value):
        self._attempt("setex")
        await self.backend.set(key, value, ttl_seconds)

    async def get(self, key):
        self._attempt("get")
        return await self.backend.get(key)

    async def delete(self, key):
        self._attempt("delete")
        await self.backend.delete(key)

    def register_script(self, script):
        async def compare_and_delete(keys, args):
            self._attempt("evalsha")
            return int(await self.backend.delete_if_equals(keys[0], args[0]))

        return compare_and_delete

    async def aclose(self):
        pass


@pytest.fixture
def flaky_client() -> FlakyRedisClient:
    return FlakyRedisClient()


@pytest.fixture
def flaky_image_service(image_config, flaky_client, source_image) -> ImageCaptchaService:
    generator = PuzzleGenerator(shape_rng=Random(11), offset_rng=Random(5))
    store = RedisTTLStore(flaky_client)
    return ImageCaptchaService(image_config, store, StaticImageSource([source_image]), generator=generator)


@pytest.fixture
def flaky_email_service(email_config, flaky_client) -> EmailCaptchaService:
    return EmailCaptchaService(email_config, RedisTTLStore(flaky_client))
