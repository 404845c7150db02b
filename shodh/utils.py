import inspect
import logging
from dataclasses import dataclass
from typing import Optional


def setup_logging(name: Optional[str] = None):
    """Configure and setup logging for the application"""

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logger = logging.getLogger(name or __name__)
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        logger.addHandler(console_handler)

    return logger


class ShodhError(Exception):
    """
    An Exception whose message has been sanitized, i.e. it can be shown
    to the user as-is.
    """

    def __init__(self, message):
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class AuthError(ShodhError):
    pass


@dataclass
class Notification:
    """A toast shown to the user."""

    title: str
    description: str
    variant: str = "default"  # default | destructive

    @property
    def destructive(self) -> bool:
        return self.variant == "destructive"

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "variant": self.variant}

    @classmethod
    def from_dict(cls, data: dict) -> "Notification":
        return cls(data["title"], data["description"], data.get("variant", "default"))


def error_notification(description: str) -> Notification:
    return Notification(title="Error", description=description, variant="destructive")


async def maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result
