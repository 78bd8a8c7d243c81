import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

import aiofiles  # type: ignore[import-untyped]
import anyio
from loguru import logger

from coreason_rharness.composer import DOCUMENT_SENTINEL, PLOT_SENTINEL
from coreason_rharness.config import HarnessConfig
from coreason_rharness.exceptions import ArtifactMissingError
from coreason_rharness.models import (
    Artifact,
    ArtifactPaths,
    InteractiveDocument,
    OutputMode,
    ProcessOutput,
    RasterImage,
    VectorImage,
)

_SVG_ROOT = re.compile(r"<svg\b[^>]*>")
_SIZE_ATTR = re.compile(r"""\s(?:width|height)\s*=\s*(?:"[^"]*"|'[^']*')""")

Rasterizer = Callable[[str], bytes]


class ObjectStorage(Protocol):
    """Protocol for object storage backends (e.g., S3)."""

    async def upload_file(self, file_path: Path, object_name: str) -> str:
        """Uploads a file to object storage and returns an access URL.

        Args:
            file_path: The local path to the file.
            object_name: The destination object key.

        Returns:
            str: The URL to access the uploaded file.
        """
        ...


def svg_to_png(markup: str) -> bytes:
    """Rasterizes SVG markup to PNG bytes with cairosvg."""
    # Imported here: cairosvg needs the system cairo library at import time.
    import cairosvg  # type: ignore[import-untyped]

    png: bytes = cairosvg.svg2png(bytestring=markup.encode("utf-8"))
    return png


def make_responsive(markup: str) -> str:
    """Drops fixed width/height from the root <svg> element, keeping its viewBox."""
    match = _SVG_ROOT.search(markup)
    if not match:
        return markup
    tag = _SIZE_ATTR.sub("", match.group(0))
    return markup[: match.start()] + tag + markup[match.end() :]


def remove_document(path: Path) -> None:
    """Deletes a document file and the dependency folder htmlwidgets writes beside it."""
    path.unlink(missing_ok=True)
    lib_dir = path.with_name(f"{path.stem}_files")
    if lib_dir.is_dir():
        for child in sorted(lib_dir.rglob("*"), reverse=True):
            if child.is_dir():
                child.rmdir()
            else:
                child.unlink()
        lib_dir.rmdir()


@dataclass
class Extraction:
    text: str
    artifacts: list[Artifact] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class ArtifactExtractor:
    """Turns the side effects of a script run into artifacts and clean text."""

    def __init__(
        self,
        config: HarnessConfig,
        storage: ObjectStorage | None = None,
        rasterizer: Rasterizer | None = None,
    ):
        """Initializes the ArtifactExtractor.

        Args:
            config: Harness configuration (thresholds, plot device, document URLs).
            storage: Optional ObjectStorage backend for publishing documents.
            rasterizer: SVG to PNG converter. Defaults to cairosvg.
        """
        self.config = config
        self.storage = storage
        self.rasterizer = rasterizer or svg_to_png
        self._benign = [re.compile(p) for p in config.benign_stderr_patterns]

    def _is_benign_line(self, line: str) -> bool:
        return any(p.search(line) for p in self._benign)

    def is_benign(self, stderr: str) -> bool:
        lines = [line for line in stderr.splitlines() if line.strip()]
        return all(self._is_benign_line(line) for line in lines)

    def significant_stderr(self, stderr: str) -> str:
        """Stderr with blank and benign lines dropped."""
        lines = [line for line in stderr.splitlines() if line.strip() and not self._is_benign_line(line)]
        return "\n".join(lines)

    def clean_text(self, output: ProcessOutput) -> str:
        """Stdout without sentinel markers, plus stderr unless it is only benign noise."""
        text = output.stdout
        for sentinel in (PLOT_SENTINEL, DOCUMENT_SENTINEL):
            text = re.sub(rf"{re.escape(sentinel)}[ \t]*\r?\n?", "", text)
        text = text.strip()

        stderr = output.stderr.strip()
        if stderr and not self.is_benign(stderr):
            text = f"{text}\n{stderr}" if text else stderr
        return text

    async def rasterize(self, markup: str) -> bytes | None:
        try:
            return await anyio.to_thread.run_sync(self.rasterizer, markup)
        except Exception as e:
            logger.error(f"Error converting SVG to PNG: {e}")
            return None

    async def extract_plot(self, plot_path: Path) -> Artifact:
        """Validates and reads the plot file, then removes it.

        Raises:
            ArtifactMissingError: If the file is absent or below the size threshold.
        """
        if not plot_path.exists():
            logger.error(f"Plot file does not exist: {plot_path}")
            raise ArtifactMissingError("Plot file was not created")

        size = plot_path.stat().st_size
        logger.debug(f"Plot file exists, size: {size} bytes")
        if size < self.config.min_plot_bytes:
            logger.error(f"Plot file is empty or too small ({size} bytes), likely an error occurred")
            plot_path.unlink(missing_ok=True)
            raise ArtifactMissingError("Plot generation failed - empty output")

        try:
            if plot_path.suffix.lower() == ".png":
                async with aiofiles.open(plot_path, "rb") as f:
                    data = await f.read()
                return RasterImage(data=data, media_type="image/png")

            async with aiofiles.open(plot_path, "r", encoding="utf-8") as f:
                markup = await f.read()
            raster = await self.rasterize(markup)
            return VectorImage(markup=make_responsive(markup), raster=raster)
        finally:
            plot_path.unlink(missing_ok=True)

    async def publish_document(self, document_path: Path, session_id: str) -> InteractiveDocument:
        """Exposes a document by reference. The file itself stays on disk.

        Raises:
            ArtifactMissingError: If the script announced a document that was never written.
        """
        if not document_path.exists():
            logger.error(f"HTML document does not exist: {document_path}")
            raise ArtifactMissingError("Interactive document was not created")

        reference: str | None = None
        if self.storage:
            try:
                reference = await self.storage.upload_file(document_path, f"{session_id}/{document_path.name}")
            except Exception as e:
                logger.warning(f"Failed to upload document {document_path.name}, serving locally: {e}")

        if reference is None:
            if self.config.document_base_url:
                base = self.config.document_base_url.rstrip("/")
                reference = f"{base}/{session_id}/{document_path.name}"
            else:
                reference = document_path.resolve().as_uri()

        logger.info(f"Document reference: {reference}")
        return InteractiveDocument(reference=reference, path=str(document_path))

    async def extract(
        self, mode: OutputMode, paths: ArtifactPaths, output: ProcessOutput, session_id: str
    ) -> Extraction:
        """Collects text and artifacts of one run. Missing artifacts become error strings."""
        extraction = Extraction(text=self.clean_text(output))

        if mode is OutputMode.PLOT:
            if output.exit_code == 0:
                try:
                    extraction.artifacts.append(await self.extract_plot(paths.plot_path))
                except ArtifactMissingError as e:
                    extraction.errors.append(str(e))
            else:
                paths.plot_path.unlink(missing_ok=True)

        if DOCUMENT_SENTINEL in output.stdout:
            try:
                extraction.artifacts.append(await self.publish_document(paths.document_path, session_id))
            except ArtifactMissingError as e:
                extraction.errors.append(str(e))

        return extraction
