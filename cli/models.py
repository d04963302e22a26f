"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal, Optional


@dataclass(frozen=True)
class GenerateCommand:
    """Create a sparse test file of a given size."""

    path: str
    size: int
    command: Literal["generate"] = "generate"


@dataclass(frozen=True)
class RootsCommand:
    """Compute fragment roots of a local file without uploading."""

    path: str
    fragment_size: Optional[int] = None
    command: Literal["roots"] = "roots"


@dataclass(frozen=True)
class UploadCommand:
    """Upload a file; unset options fall back to the config file."""

    path: str
    fragment_size: Optional[int] = None
    replicas: Optional[int] = None
    finality: Optional[str] = None
    trust: Optional[str] = None
    mode: Optional[str] = None
    command: Literal["upload"] = "upload"


@dataclass(frozen=True)
class DownloadCommand:
    """Download fragments by manifest or explicit roots."""

    output_path: str
    manifest_path: Optional[str] = None
    roots: tuple[str, ...] = ()
    command: Literal["download"] = "download"


@dataclass(frozen=True)
class VerifyCommand:
    """Check a local file against a manifest."""

    path: str
    manifest_path: str
    command: Literal["verify"] = "verify"


CommandRequest = (
    GenerateCommand
    | RootsCommand
    | UploadCommand
    | DownloadCommand
    | VerifyCommand
)
