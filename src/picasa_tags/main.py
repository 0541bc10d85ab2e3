#!/usr/bin/env python3
"""
Picasa Tags: CLI app to embed Picasa tags from .picasa.ini files into image files.

Picasa (desktop version) doesn't write tags to PNG or any other files except JPEG.
Instead, it stores captions, keywords and face tags in per-directory .picasa.ini files.
This app reads them and writes them into copies of the images as EXIF, IPTC and/or XMP,
including MWG and Windows Photo Gallery face regions. It walks the input directory
recursively and can optionally convert the images to another format on the way.

Requirements:
 - Exiftool (default) or exiv2 installed and available in PATH.

Tag support by various programs:
 - Picasa reads both MWG and WPG faces, but writes only MWG.
 - Windows Photo Gallery supports only WPG.
 - DigiKam reads Picasa-written MWG and WPG.
"""
# ruff: noqa: PLR0913

import contextlib
import os
import shutil
import subprocess
import sys
from collections import Counter
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from itertools import chain
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter
from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolExecuteError
from loguru import logger
from PIL import Image

from picasa_tags.ini import INDEX_FILENAME, read_index
from picasa_tags.models import (
    DEFAULT_IMAGE_EXTENSIONS,
    Diagnostic,
    DiagnosticKind,
    EmbedSettings,
    ImageRecord,
    ToolDialect,
)
from picasa_tags.records import build_image_records
from picasa_tags.serializer import serialize


LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
TagWriter = Callable[[list[str], Path], None]

# Configuration defaults
DEFAULT_EXIFTOOL_BINARY = os.getenv("EXIFTOOL_BINARY", "exiftool")
DEFAULT_EXIV2_BINARY = os.getenv("EXIV2_BINARY", "exiv2")
# Empty string keeps the original format and copies the file.
DEFAULT_OUTPUT_FORMAT = os.getenv("OUTPUT_FORMAT", "png")
# JPEG quality or PNG compression level.
DEFAULT_OUTPUT_QUALITY = int(os.getenv("OUTPUT_FORMAT_QUALITY", "9"))
PNG_MAX_COMPRESS_LEVEL = 9


# Cyclopts app
__version__ = "1.0.2"
app = App(
    name="picasa-tags",
    version=__version__,
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    # Remove default handler
    logger.remove()

    # Add file logging
    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-picasa_tags.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    # Add console logging
    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


def log_diagnostics(diagnostics: list[Diagnostic]) -> None:
    """Log core diagnostics; NOTHING_TO_EMBED is informational, the rest are warnings."""
    for diagnostic in diagnostics:
        level = "INFO" if diagnostic.kind.informational else "WARNING"
        logger.log(level, diagnostic.kind.value, detail=diagnostic.message, **diagnostic.context())


def _parse_extensions(image_extensions: str) -> tuple[str, ...]:
    """
    Normalize comma-separated extensions into lowercase names without dots.

    Examples:
        >>> _parse_extensions("jpg, .PNG ,jpg")
        ('jpg', 'png')

    """
    return tuple(
        dict.fromkeys(
            ext.strip().lstrip(".").lower()
            for ext in image_extensions.split(",")
            if ext.strip().lstrip(".")
        ),
    )


def scan_image_directories(
    input_root: Path,
    settings: EmbedSettings,
    *,
    exclude: Path | None = None,
) -> dict[Path, list[str]]:
    """
    Find image files below ``input_root``, grouped by directory.

    Args:
        input_root: Directory to walk recursively.
        settings: Supplies the image extension allow-list.
        exclude: Directory tree to leave out (the output tree when it is nested).

    Returns:
        Mapping of directory to sorted image file names, in path order.

    """
    grouped: dict[Path, list[str]] = {}
    for path in sorted(input_root.rglob("*")):
        if exclude is not None and (path == exclude or exclude in path.parents):
            continue
        if path.is_file() and settings.is_image_name(path.name):
            grouped.setdefault(path.parent, []).append(path.name)
    return grouped


def output_path_for(
    input_file: Path,
    input_root: Path,
    output_root: Path,
    output_format: str,
) -> Path:
    """
    Mirror ``input_file`` into the output tree, switching the extension when converting.

    Examples:
        >>> output_path_for(Path("/in/a/b.jpg"), Path("/in"), Path("/out"), "png")
        PosixPath('/out/a/b.png')

    """
    target = output_root / input_file.relative_to(input_root)
    return target.with_suffix(f".{output_format}") if output_format else target


def _pil_format(output_format: str) -> str:
    pil_format = Image.registered_extensions().get(f".{output_format.lower()}")
    if pil_format is None:
        msg = f"Unsupported output format: {output_format}"
        raise ValueError(msg)
    return pil_format


def convert_image(source: Path, target: Path, output_format: str, quality: int) -> None:
    """
    Copy ``source`` to ``target``, converting it when ``output_format`` is set.

    Conversion is unconditional, so it can also be used to re-compress PNG files.

    Args:
        source: Input image.
        target: Output path (its parent directory must exist).
        output_format: Target extension such as 'png' or 'jpg'; empty to copy as is.
        quality: JPEG/WEBP quality, or PNG compression level (capped at 9).

    """
    if not output_format:
        shutil.copy2(source, target)
        return

    pil_format = _pil_format(output_format)
    with Image.open(source) as opened:
        img: Image.Image = opened
        save_kwargs: dict[str, object] = {}
        if exif := img.info.get("exif"):
            save_kwargs["exif"] = exif

        if pil_format == "PNG":
            save_kwargs["compress_level"] = min(quality, PNG_MAX_COMPRESS_LEVEL)
        elif pil_format in {"JPEG", "WEBP"}:
            save_kwargs["quality"] = quality

        # JPEG has no alpha channel; composite onto white
        if pil_format == "JPEG":
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                alpha = img.convert("RGBA")
                bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
                img = Image.alpha_composite(bg, alpha).convert("RGB")
            else:
                img = img.convert("RGB")

        img.save(target, format=pil_format, **save_kwargs)

    logger.debug("image_converted", source=str(source), target=str(target), format=pil_format)


def read_pixel_dimensions(image_path: Path) -> tuple[int, int]:
    """Return ``(width, height)`` of an image in pixels."""
    with Image.open(image_path) as img:
        return img.size


@contextlib.contextmanager
def open_tag_writer(
    dialect: ToolDialect,
    *,
    exiftool_binary: str = DEFAULT_EXIFTOOL_BINARY,
    exiv2_binary: str = DEFAULT_EXIV2_BINARY,
) -> Iterator[TagWriter]:
    """
    Yield a function that writes rendered tag arguments into a file.

    exiftool runs as one long-lived process through pyexiftool. exiv2 is started once per
    file, with every modify command passed after its own ``-M``. Arguments are always
    passed as an argv list and never reach a shell.

    Raises (from the yielded writer):
        ExifToolExecuteError: If exiftool reports an error.
        subprocess.CalledProcessError: If exiv2 exits with a non-zero status.

    """
    if dialect is ToolDialect.EXIFTOOL:
        with ExifToolHelper(executable=exiftool_binary) as et:  # type: ignore[no-untyped-call]

            def write_exiftool(args: list[str], target: Path) -> None:
                et.execute("-preserve", "-overwrite_original", *args, str(target))

            yield write_exiftool
        return

    def write_exiv2(commands: list[str], target: Path) -> None:
        modify_args = chain.from_iterable(("-M", command) for command in commands)
        subprocess.run(  # noqa: S603
            [exiv2_binary, *modify_args, "modify", str(target)],
            capture_output=True,
            text=True,
            check=True,
        )

    yield write_exiv2


def _log_faces(record: ImageRecord, dimensions: tuple[int, int], *, verbose: bool) -> None:
    level = "INFO" if verbose else "DEBUG"
    width, height = dimensions
    for face in record.faces:
        x, y, w, h = face.rect.pixel_sized(width, height)
        logger.log(level, "face_rectangle", name=face.name, x=x, y=y, w=w, h=h)


def process_directory(
    directory: Path,
    image_names: list[str],
    *,
    input_root: Path,
    output_root: Path,
    settings: EmbedSettings,
    writer: TagWriter,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    output_quality: int = DEFAULT_OUTPUT_QUALITY,
    verbose: bool = False,
) -> Counter[str]:
    """
    Copy or convert the images of one directory and embed their index tags.

    Args:
        directory: Input directory holding the index file.
        image_names: Image file names found in ``directory``.
        input_root: Root of the input tree.
        output_root: Root of the output tree; ``directory`` is mirrored below it.
        settings: Embedding policy.
        writer: Tag writer from :func:`open_tag_writer`.
        output_format: Output extension; empty to copy files unchanged.
        output_quality: Quality/compression passed to the converter.
        verbose: Log face rectangles and tool arguments at INFO instead of DEBUG.

    Returns:
        Counter with 'written', 'skipped' and 'failed' file counts.

    """
    stats: Counter[str] = Counter()
    index_path = directory / INDEX_FILENAME
    table = read_index(index_path)
    if table is None:
        logger.warning(
            DiagnosticKind.INDEX_UNREADABLE.value,
            index_file=str(index_path),
            detail="Index doesn't exist or is not readable, skipping directory",
        )
        stats["skipped"] += len(image_names)
        return stats

    records, diagnostics = build_image_records(
        table,
        settings,
        file_exists=lambda name: (directory / name).exists(),
        index_file=str(index_path),
    )
    log_diagnostics(diagnostics)

    output_dir = output_root / directory.relative_to(input_root)
    output_dir.mkdir(parents=True, exist_ok=True)
    level = "INFO" if verbose else "DEBUG"

    for name in image_names:
        with logger.contextualize(file=name):
            source = directory / name
            target = output_path_for(source, input_root, output_root, output_format)
            try:
                convert_image(source, target, output_format, output_quality)
            except (OSError, ValueError) as exc:
                logger.exception("conversion_failed", error=str(exc), target=str(target))
                stats["failed"] += 1
                continue

            record = records.get(name)
            if record is None:
                logger.info("no_index_entry", detail="Not embedding tags")
                stats["skipped"] += 1
                continue

            try:
                dimensions = read_pixel_dimensions(target)
            except OSError as exc:
                logger.exception("dimension_lookup_failed", error=str(exc), target=str(target))
                stats["failed"] += 1
                continue

            _log_faces(record, dimensions, verbose=verbose)
            args, serialize_diagnostics = serialize(record, dimensions, settings, image=name)
            log_diagnostics(serialize_diagnostics)
            if not args:
                stats["skipped"] += 1
                continue

            logger.log(level, "tag_arguments", tool=settings.tool_dialect.value, args=args)
            try:
                writer(args, target)
            except (ExifToolExecuteError, subprocess.CalledProcessError, OSError) as exc:
                stderr = getattr(exc, "stderr", None)
                logger.exception("tag_write_failed", error=str(exc), stderr=stderr)
                stats["failed"] += 1
            else:
                logger.info("tags_written", target=str(target), faces=len(record.faces))
                stats["written"] += 1

    return stats


def _validate_directories(input_dir: Path, output_dir: Path) -> None:
    if not input_dir.is_dir():
        logger.error("input_not_a_directory", path=str(input_dir))
        raise SystemExit(1)
    if not output_dir.is_dir():
        logger.error("output_not_a_directory", path=str(output_dir))
        raise SystemExit(1)
    if input_dir.resolve() == output_dir.resolve():
        logger.error("input_and_output_are_the_same", path=str(input_dir.resolve()))
        raise SystemExit(1)


def run(
    input_dir: Path,
    output_dir: Path,
    settings: EmbedSettings,
    *,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    output_quality: int = DEFAULT_OUTPUT_QUALITY,
    exiftool_binary: str = DEFAULT_EXIFTOOL_BINARY,
    exiv2_binary: str = DEFAULT_EXIV2_BINARY,
    verbose: bool = False,
) -> Counter[str]:
    """Process every image directory below ``input_dir``; return the summed counters."""
    _validate_directories(input_dir, output_dir)
    if output_format:
        try:
            _pil_format(output_format)
        except ValueError:
            logger.error("unsupported_output_format", output_format=output_format)
            raise SystemExit(1) from None

    input_root = input_dir.resolve()
    output_root = output_dir.resolve()
    directories = scan_image_directories(input_root, settings, exclude=output_root)
    logger.info(
        "image_directories_discovered",
        directories=len(directories),
        files=sum(len(names) for names in directories.values()),
    )

    totals: Counter[str] = Counter()
    try:
        with open_tag_writer(
            settings.tool_dialect,
            exiftool_binary=exiftool_binary,
            exiv2_binary=exiv2_binary,
        ) as writer:
            for directory, image_names in directories.items():
                logger.info("processing_directory", directory=str(directory))
                totals["directories"] += 1
                totals["files"] += len(image_names)
                totals.update(
                    process_directory(
                        directory,
                        image_names,
                        input_root=input_root,
                        output_root=output_root,
                        settings=settings,
                        writer=writer,
                        output_format=output_format,
                        output_quality=output_quality,
                        verbose=verbose,
                    ),
                )
    except (OSError, ExifToolExecuteError) as exc:
        logger.exception("run_aborted", tool=settings.tool_dialect.value, error=str(exc))
        raise SystemExit(1) from exc

    return totals


@app.default
def embed(
    input_dir: Annotated[
        Path,
        Parameter(help="Directory tree to search for .picasa.ini files and images"),
    ],
    output_dir: Annotated[
        Path,
        Parameter(help="Existing directory that receives the tagged copies"),
    ],
    *,
    image_extensions: Annotated[
        str,
        Parameter(
            name=("--ext", "--extensions"),
            help="Comma-separated image file extensions to process (case insensitive)",
        ),
    ] = ",".join(DEFAULT_IMAGE_EXTENSIONS),
    tool: Annotated[
        Literal["exiftool", "exiv2"],
        Parameter(
            name=("--tool",),
            help="Tag writer: 'exiftool' or 'exiv2'",
        ),
    ] = "exiftool",
    exiftool_binary: Annotated[
        str,
        Parameter(name=("--exiftool-binary",), help="exiftool executable (name or path)"),
    ] = DEFAULT_EXIFTOOL_BINARY,
    exiv2_binary: Annotated[
        str,
        Parameter(name=("--exiv2-binary",), help="exiv2 executable (name or path)"),
    ] = DEFAULT_EXIV2_BINARY,
    output_format: Annotated[
        str,
        Parameter(
            name=("--output-format", "-f"),
            help="Convert images to this format (e.g. png, jpg); empty string keeps the original",
        ),
    ] = DEFAULT_OUTPUT_FORMAT,
    output_quality: Annotated[
        int,
        Parameter(
            name=("--output-quality", "-q"),
            help="JPEG quality or PNG compression level used when converting",
        ),
    ] = DEFAULT_OUTPUT_QUALITY,
    write_exif: Annotated[
        bool,
        Parameter(
            name=("--write-exif",),
            negative="--no-write-exif",
            help="Write the caption to EXIF:ImageDescription (ASCII only in some readers)",
        ),
    ] = False,
    write_iptc: Annotated[
        bool,
        Parameter(
            name=("--write-iptc",),
            negative="--no-write-iptc",
            help="Write caption and keywords to IPTC (ASCII only in some readers)",
        ),
    ] = False,
    write_xmp: Annotated[
        bool,
        Parameter(
            name=("--write-xmp",),
            negative="--no-write-xmp",
            help="Write caption, keywords and faces to XMP (faces need XMP)",
        ),
    ] = True,
    write_xmp_mwg: Annotated[
        bool,
        Parameter(
            name=("--write-mwg",),
            negative="--no-write-mwg",
            help="Write MWG face regions (used by Picasa)",
        ),
    ] = True,
    write_xmp_wpg: Annotated[
        bool,
        Parameter(
            name=("--write-wpg",),
            negative="--no-write-wpg",
            help="Write Windows Photo Gallery face regions (used by Windows)",
        ),
    ] = True,
    write_duplicate_faces: Annotated[
        bool,
        Parameter(
            name=("--write-duplicate-faces",),
            negative="--no-write-duplicate-faces",
            help="Keep repeated face ids in one image (some upload services reject them)",
        ),
    ] = False,
    write_unknown_faces: Annotated[
        bool,
        Parameter(
            name=("--write-unknown-faces",),
            negative="--no-write-unknown-faces",
            help="Write faces Picasa marks as unknown, named 'Unknown'",
        ),
    ] = False,
    append_keywords_to_caption: Annotated[
        bool,
        Parameter(
            name=("--append-keywords",),
            negative="--no-append-keywords",
            help="Append keywords to the caption for applications that show only captions",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        Parameter(
            name=("--verbose", "-v"),
            help="Log face rectangles (in pixels) and tool arguments at INFO level",
        ),
    ] = False,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Embed .picasa.ini captions, keywords and face tags into copies of the images.

    Requirements:
    - exiftool (default) or exiv2 installed and on PATH.

    Behavior:
    - Walks INPUT_DIR recursively and reads the .picasa.ini of every directory with images.
    - Copies (or converts, see --output-format) each image into the same relative
        location below OUTPUT_DIR and writes its tags there. Originals are never modified.
    - Stale index entries, unknown and duplicate faces are skipped with a warning.

    Exit status: returns 1 on bad arguments or if any file fails.

    Examples:
        picasa-tags ./Pictures ./Tagged
        picasa-tags ./Pictures ./Tagged --output-format "" --write-iptc --tool exiv2

    """
    # Setup logging
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )

    settings = EmbedSettings(
        write_exif=write_exif,
        write_iptc=write_iptc,
        write_xmp=write_xmp,
        write_xmp_mwg=write_xmp_mwg,
        write_xmp_wpg=write_xmp_wpg,
        write_duplicate_faces=write_duplicate_faces,
        write_unknown_faces=write_unknown_faces,
        append_keywords_to_caption=append_keywords_to_caption,
        tool_dialect=ToolDialect(tool),
        image_extensions=_parse_extensions(image_extensions) or DEFAULT_IMAGE_EXTENSIONS,
    )
    logger.info(
        "starting_picasa_tags",
        input_dir=str(input_dir),
        output_dir=str(output_dir),
        output_format=output_format or None,
        output_quality=output_quality,
        **settings.model_dump(mode="json"),
    )

    stats = run(
        input_dir,
        output_dir,
        settings,
        output_format=output_format,
        output_quality=output_quality,
        exiftool_binary=exiftool_binary,
        exiv2_binary=exiv2_binary,
        verbose=verbose,
    )

    # Summary
    logger.info(
        "processing_summary",
        directories=stats["directories"],
        total_files=stats["files"],
        written=stats["written"],
        skipped=stats["skipped"],
        failed=stats["failed"],
    )
    if stats["failed"]:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
