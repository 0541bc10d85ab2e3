"""Tests for the directory pipeline: scanning, conversion and tag-writer hand-off."""

import contextlib
import subprocess
from collections import Counter
from collections.abc import Iterator
from pathlib import Path

import pytest
from loguru import logger
from PIL import Image

import picasa_tags.main as m
from picasa_tags.models import Diagnostic, DiagnosticKind, EmbedSettings, ToolDialect


INDEX = (
    "[Contacts2]\n"
    "abc123=Jane Doe;;\n"
    "[photo.png]\n"
    "faces=rect64(1000200030004000),abc123\n"
    "caption=Trip\n"
    "keywords=Paris, France\n"
    "[deleted.png]\n"
    "caption=old\n"
)


class RecordingWriter:
    """Tag writer stub that remembers every call."""

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[list[str], Path]] = []
        self._error = error

    def __call__(self, args: list[str], target: Path) -> None:
        self.calls.append((args, target))
        if self._error is not None:
            raise self._error


def _make_image(path: Path, size: tuple[int, int] = (40, 20), mode: str = "RGB") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size).save(path)


@pytest.fixture
def album(tmp_path: Path) -> Path:
    directory = tmp_path / "in" / "album"
    _make_image(directory / "photo.png")
    _make_image(directory / "other.png")
    (directory / ".picasa.ini").write_text(INDEX, encoding="utf-8")
    (tmp_path / "out").mkdir()
    return directory


def test_parse_extensions_normalizes_input() -> None:
    """Extensions lose dots and case, duplicates are dropped in order."""
    assert m._parse_extensions("PNG, .jpg ,png,") == ("png", "jpg")  # noqa: SLF001


def test_output_path_for_mirrors_tree_and_switches_extension(tmp_path: Path) -> None:
    """The relative location is kept; the extension follows the output format."""
    source = tmp_path / "in" / "a" / "b.JPG"
    out = tmp_path / "out"

    assert m.output_path_for(source, tmp_path / "in", out, "png") == out / "a" / "b.png"
    assert m.output_path_for(source, tmp_path / "in", out, "") == out / "a" / "b.JPG"


def test_scan_image_directories_groups_by_directory(tmp_path: Path) -> None:
    """Only allowed extensions are found, grouped per directory, output tree excluded."""
    _make_image(tmp_path / "b.JPG")
    _make_image(tmp_path / "sub" / "a.png")
    (tmp_path / "sub" / "notes.txt").write_text("x")
    _make_image(tmp_path / "out" / "copy.png")

    grouped = m.scan_image_directories(tmp_path, EmbedSettings(), exclude=tmp_path / "out")

    assert grouped == {tmp_path: ["b.JPG"], tmp_path / "sub": ["a.png"]}


def test_process_directory_embeds_indexed_images(album: Path) -> None:
    """Indexed images get tags; unindexed images are copied without a writer call."""
    root = album.parent
    out = root.parent / "out"
    writer = RecordingWriter()

    stats = m.process_directory(
        album,
        ["other.png", "photo.png"],
        input_root=root,
        output_root=out,
        settings=EmbedSettings(),
        writer=writer,
        output_format="",
    )

    assert stats == Counter(written=1, skipped=1)
    assert (out / "album" / "other.png").exists()
    assert len(writer.calls) == 1
    args, target = writer.calls[0]
    assert target == out / "album" / "photo.png"
    assert args[:3] == ["-XMP:Description=Trip", "-XMP:Subject=Paris", "-XMP:Subject=France"]
    assert args[3].startswith("-RegionInfo={AppliedToDimensions={W=40,H=20,Unit=pixel}")
    assert args[4].startswith("-RegionInfoMP={Regions=[{PersonDisplayName=Jane Doe,")


def test_process_directory_converts_to_jpeg(album: Path) -> None:
    """With an output format set the copy is re-encoded and renamed."""
    root = album.parent
    out = root.parent / "out"
    _make_image(album / "photo.png", mode="RGBA")
    writer = RecordingWriter()

    m.process_directory(
        album,
        ["photo.png"],
        input_root=root,
        output_root=out,
        settings=EmbedSettings(tool_dialect=ToolDialect.EXIV2),
        writer=writer,
        output_format="jpg",
        output_quality=90,
    )

    target = out / "album" / "photo.jpg"
    with Image.open(target) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"
    args, written_target = writer.calls[0]
    assert written_target == target
    assert args[0] == 'set Xmp.dc.description LangAlt "Trip"'


def test_process_directory_skips_directory_without_index(album: Path) -> None:
    """A missing index skips the whole directory without copying anything."""
    (album / ".picasa.ini").unlink()
    out = album.parent.parent / "out"
    writer = RecordingWriter()

    stats = m.process_directory(
        album,
        ["other.png", "photo.png"],
        input_root=album.parent,
        output_root=out,
        settings=EmbedSettings(),
        writer=writer,
    )

    assert stats == Counter(skipped=2)
    assert writer.calls == []
    assert not (out / "album").exists()


def test_process_directory_counts_writer_failures(album: Path) -> None:
    """A failing tag writer marks the file failed and processing continues."""
    writer = RecordingWriter(error=subprocess.CalledProcessError(1, ["exiv2"], stderr="boom"))

    stats = m.process_directory(
        album,
        ["photo.png"],
        input_root=album.parent,
        output_root=album.parent.parent / "out",
        settings=EmbedSettings(),
        writer=writer,
        output_format="",
    )

    assert stats == Counter(failed=1)


def test_run_rejects_identical_directories(tmp_path: Path) -> None:
    """Input and output must differ."""
    with pytest.raises(SystemExit):
        m.run(tmp_path, tmp_path, EmbedSettings())


def test_run_rejects_missing_output(tmp_path: Path) -> None:
    """The output directory has to exist already."""
    with pytest.raises(SystemExit):
        m.run(tmp_path, tmp_path / "missing", EmbedSettings())


def test_run_walks_tree_with_injected_writer(
    album: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """run() opens one writer for the whole tree and sums the per-directory counts."""
    writer = RecordingWriter()
    opened: list[ToolDialect] = []

    @contextlib.contextmanager
    def fake_open(dialect: ToolDialect, **_: str) -> Iterator[RecordingWriter]:
        opened.append(dialect)
        yield writer

    monkeypatch.setattr(m, "open_tag_writer", fake_open)
    root = album.parent

    stats = m.run(root, root.parent / "out", EmbedSettings(), output_format="png")

    assert opened == [ToolDialect.EXIFTOOL]
    assert stats["directories"] == 1
    assert stats["files"] == 2
    assert stats["written"] == 1
    assert [target.name for _, target in writer.calls] == ["photo.png"]


def test_log_diagnostics_maps_kinds_to_levels() -> None:
    """Nothing-to-embed is informational; dropped faces are warnings."""
    records: list[tuple[str, str]] = []
    handler_id = logger.add(
        lambda message: records.append(
            (message.record["level"].name, message.record["message"]),
        ),
        level="DEBUG",
    )
    try:
        m.log_diagnostics(
            [
                Diagnostic(kind=DiagnosticKind.NOTHING_TO_EMBED, message="x", image="a.png"),
                Diagnostic(kind=DiagnosticKind.DUPLICATE_FACE, message="y", face_id="abc"),
            ],
        )
    finally:
        logger.remove(handler_id)

    assert records == [("INFO", "nothing_to_embed"), ("WARNING", "duplicate_face")]
