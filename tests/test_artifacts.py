from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from coreason_rharness.artifacts import ArtifactExtractor, make_responsive, remove_document
from coreason_rharness.config import HarnessConfig
from coreason_rharness.exceptions import ArtifactMissingError
from coreason_rharness.models import (
    ArtifactPaths,
    InteractiveDocument,
    OutputMode,
    ProcessOutput,
    RasterImage,
    VectorImage,
)
from fakes import SVG_MARKUP


def out(stdout: str = "", stderr: str = "", exit_code: int = 0) -> ProcessOutput:
    return ProcessOutput(stdout=stdout, stderr=stderr, exit_code=exit_code, duration=0.1)


@pytest.fixture
def extractor(config: HarnessConfig, mock_rasterizer: Any) -> ArtifactExtractor:
    return ArtifactExtractor(config)


@pytest.fixture
def paths(tmp_path: Path) -> ArtifactPaths:
    return ArtifactPaths(plot_path=tmp_path / "plot_1.svg", document_path=tmp_path / "widget_1.html")


def test_make_responsive_strips_root_dimensions() -> None:
    markup = make_responsive(SVG_MARKUP)
    root = markup[markup.index("<svg") : markup.index(">", markup.index("<svg")) + 1]
    assert "width=" not in root
    assert "height=" not in root
    assert "viewBox='0 0 504.00 396.00'" in root
    # Inner elements keep their sizes.
    assert "<rect x='0' y='0' width='504.00' height='396.00'" in markup


def test_make_responsive_double_quotes() -> None:
    markup = '<svg xmlns="http://www.w3.org/2000/svg" width="7in" height="5in" viewBox="0 0 7 5"><g/></svg>'
    assert make_responsive(markup) == '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 7 5"><g/></svg>'


def test_make_responsive_without_svg() -> None:
    assert make_responsive("not svg") == "not svg"


@pytest.mark.asyncio
async def test_valid_svg_plot(extractor: ArtifactExtractor, paths: ArtifactPaths, mock_rasterizer: Any) -> None:
    paths.plot_path.write_text(SVG_MARKUP, encoding="utf-8")

    artifact = await extractor.extract_plot(paths.plot_path)

    assert isinstance(artifact, VectorImage)
    assert artifact.raster == b"\x89PNG\r\n\x1a\nfake"
    assert "width='504.00pt'" not in artifact.markup
    mock_rasterizer.assert_called_once_with(SVG_MARKUP)
    assert not paths.plot_path.exists()


@pytest.mark.asyncio
async def test_small_plot_is_rejected(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.plot_path.write_bytes(b"x" * 50)

    with pytest.raises(ArtifactMissingError, match="Plot generation failed - empty output"):
        await extractor.extract_plot(paths.plot_path)
    assert not paths.plot_path.exists()


@pytest.mark.asyncio
async def test_threshold_boundary(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.plot_path.write_text("<svg>" + "x" * 95, encoding="utf-8")
    assert paths.plot_path.stat().st_size == 100
    artifact = await extractor.extract_plot(paths.plot_path)
    assert isinstance(artifact, VectorImage)


@pytest.mark.asyncio
async def test_missing_plot(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    with pytest.raises(ArtifactMissingError, match="Plot file was not created"):
        await extractor.extract_plot(paths.plot_path)


@pytest.mark.asyncio
async def test_rasterization_failure_keeps_vector(config: HarnessConfig, paths: ArtifactPaths) -> None:
    def broken(markup: str) -> bytes:
        raise ValueError("cairo exploded")

    extractor = ArtifactExtractor(config, rasterizer=broken)
    paths.plot_path.write_text(SVG_MARKUP, encoding="utf-8")

    artifact = await extractor.extract_plot(paths.plot_path)

    assert isinstance(artifact, VectorImage)
    assert artifact.raster is None


@pytest.mark.asyncio
async def test_png_plot(config: HarnessConfig, tmp_path: Path) -> None:
    extractor = ArtifactExtractor(config)
    plot = tmp_path / "plot_1.png"
    plot.write_bytes(b"\x89PNG" + b"\0" * 200)

    artifact = await extractor.extract_plot(plot)

    assert isinstance(artifact, RasterImage)
    assert artifact.media_type == "image/png"
    assert artifact.data.startswith(b"\x89PNG")
    assert not plot.exists()


@pytest.mark.asyncio
async def test_document_file_uri(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.document_path.write_text("<html></html>")

    document = await extractor.publish_document(paths.document_path, "s1")

    assert isinstance(document, InteractiveDocument)
    assert document.reference == paths.document_path.resolve().as_uri()
    assert document.path == str(paths.document_path)
    assert paths.document_path.exists()


@pytest.mark.asyncio
async def test_document_base_url(tmp_path: Path, paths: ArtifactPaths) -> None:
    config = HarnessConfig(work_dir=tmp_path, document_base_url="https://host/widgets/")
    paths.document_path.write_text("<html></html>")

    document = await ArtifactExtractor(config).publish_document(paths.document_path, "s1")

    assert document.reference == "https://host/widgets/s1/widget_1.html"


@pytest.mark.asyncio
async def test_document_object_storage(config: HarnessConfig, paths: ArtifactPaths) -> None:
    storage = AsyncMock()
    storage.upload_file.return_value = "https://s3/presigned"
    paths.document_path.write_text("<html></html>")

    document = await ArtifactExtractor(config, storage=storage).publish_document(paths.document_path, "s1")

    assert document.reference == "https://s3/presigned"
    storage.upload_file.assert_awaited_once_with(paths.document_path, "s1/widget_1.html")


@pytest.mark.asyncio
async def test_document_upload_failure_falls_back(config: HarnessConfig, paths: ArtifactPaths) -> None:
    storage = AsyncMock()
    storage.upload_file.side_effect = RuntimeError("network down")
    paths.document_path.write_text("<html></html>")

    document = await ArtifactExtractor(config, storage=storage).publish_document(paths.document_path, "s1")

    assert document.reference.startswith("file://")


@pytest.mark.asyncio
async def test_document_missing(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    with pytest.raises(ArtifactMissingError, match="Interactive document was not created"):
        await extractor.publish_document(paths.document_path, "s1")


def test_remove_document_with_dependency_folder(tmp_path: Path) -> None:
    document = tmp_path / "widget_1.html"
    document.write_text("<html></html>")
    lib = tmp_path / "widget_1_files" / "htmlwidgets-1.6"
    lib.mkdir(parents=True)
    (lib / "htmlwidgets.js").write_text("//")

    remove_document(document)

    assert not document.exists()
    assert not (tmp_path / "widget_1_files").exists()


def test_clean_text_strips_sentinels(extractor: ArtifactExtractor) -> None:
    text = extractor.clean_text(out("  [1] 5\nPlot generated successfully\n"))
    assert text == "[1] 5"
    assert extractor.clean_text(out("HTML_WIDGET_GENERATED\n")) == ""


def test_clean_text_benign_stderr_dropped(extractor: ArtifactExtractor) -> None:
    stderr = (
        "Attaching package: 'dplyr'\n\n"
        "The following objects are masked from 'package:stats':\n"
        "WARNING: ignoring environment value of R_HOME\n"
    )
    assert extractor.clean_text(out("[1] 1\n", stderr)) == "[1] 1"


def test_clean_text_real_stderr_appended(extractor: ArtifactExtractor) -> None:
    stderr = "Warning message:\nIn log(-1) : NaNs produced\n"
    text = extractor.clean_text(out("[1] NaN\n", stderr))
    assert text == "[1] NaN\nWarning message:\nIn log(-1) : NaNs produced"


def test_significant_stderr(extractor: ArtifactExtractor) -> None:
    stderr = "Attaching package: 'dplyr'\nError: object 'y' not found\n\n"
    assert extractor.significant_stderr(stderr) == "Error: object 'y' not found"


@pytest.mark.asyncio
async def test_extract_plot_mode(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.plot_path.write_text(SVG_MARKUP, encoding="utf-8")

    extraction = await extractor.extract(OutputMode.PLOT, paths, out("Plot generated successfully\n"), "s1")

    assert extraction.text == ""
    assert extraction.errors == []
    assert len(extraction.artifacts) == 1
    assert isinstance(extraction.artifacts[0], VectorImage)


@pytest.mark.asyncio
async def test_extract_plot_mode_degraded(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.plot_path.write_bytes(b"x" * 50)

    extraction = await extractor.extract(
        OutputMode.PLOT, paths, out("Error: object 'nope' not found \nPlot generated successfully\n"), "s1"
    )

    assert extraction.artifacts == []
    assert extraction.errors == ["Plot generation failed - empty output"]
    assert "object 'nope' not found" in extraction.text
    assert not paths.plot_path.exists()


@pytest.mark.asyncio
async def test_extract_failed_run_discards_plot(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.plot_path.write_text(SVG_MARKUP, encoding="utf-8")

    extraction = await extractor.extract(OutputMode.PLOT, paths, out(exit_code=1), "s1")

    assert extraction.artifacts == []
    assert extraction.errors == []
    assert not paths.plot_path.exists()


@pytest.mark.asyncio
async def test_extract_plain_document(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    paths.document_path.write_text("<html></html>")

    extraction = await extractor.extract(OutputMode.PLAIN, paths, out("HTML_WIDGET_GENERATED\n"), "s1")

    assert extraction.text == ""
    assert len(extraction.artifacts) == 1
    assert isinstance(extraction.artifacts[0], InteractiveDocument)


@pytest.mark.asyncio
async def test_extract_plain_text_only(extractor: ArtifactExtractor, paths: ArtifactPaths) -> None:
    extraction = await extractor.extract(OutputMode.PLAIN, paths, out("[1] 5\n"), "s1")
    assert extraction.text == "[1] 5"
    assert extraction.artifacts == []
    assert extraction.errors == []
