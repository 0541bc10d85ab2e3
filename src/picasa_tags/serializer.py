"""
Turn ImageRecords into tag-writer arguments.

``build_tags`` produces one ordered list of tags shared by both dialects; the
renderers only differ in syntax:

 - exiftool: one ``-Group:Tag=value`` flag per tag plus one structure flag per face
   schema (``-RegionInfo=`` for MWG, ``-RegionInfoMP=`` for Windows Photo Gallery).
 - exiv2: ``set``/``add`` modify commands with key paths and 1-based region indices.

Order matters: some consumers apply tags sequentially, so later tags with the same key
overwrite earlier ones.

References:
    - MWG guidance: http://www.metadataworkinggroup.org/
    - exiv2 modify commands: http://www.exiv2.org/sample.html

"""

import re
from collections.abc import Callable, Sequence
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from picasa_tags.models import (
    Diagnostic,
    DiagnosticKind,
    EmbedSettings,
    ImageRecord,
    ToolDialect,
)
from picasa_tags.rect import round_xmp


_XMP_SPECIAL_RE = re.compile(r"([|,{}\[\]])")


def escape_xmp(value: str) -> str:
    """
    Escape a value for use inside an exiftool XMP structure.

    Examples:
        >>> escape_xmp("Doe, Jane [x]")
        'Doe|, Jane |[x|]'

    """
    return _XMP_SPECIAL_RE.sub(r"|\1", value)


def escape_exiv_string(value: str) -> str:
    """
    Double-quote a string for an exiv2 ``set``/``add`` command.

    Arguments never pass through a shell, so only embedded quotes are escaped.

    Examples:
        >>> escape_exiv_string('The "Big" Day')
        '"The \\\\"Big\\\\" Day"'

    """
    return '"' + value.replace('"', '\\"') + '"'


def fold_keywords_into_caption(caption: str, keywords: Sequence[str]) -> str:
    """
    Append keywords to a caption for viewers that only show captions.

    Examples:
        >>> fold_keywords_into_caption("Trip", ["A", "B"])
        'Trip - A, B'
        >>> fold_keywords_into_caption("", ["A", "B"])
        'A, B'

    """
    if not keywords:
        return caption
    joined = ", ".join(keywords)
    return f"{caption} - {joined}" if caption else joined


class TagKind(StrEnum):
    EXIF_DESCRIPTION = "exif_description"
    IPTC_CAPTION = "iptc_caption"
    XMP_DESCRIPTION = "xmp_description"
    IPTC_KEYWORD = "iptc_keyword"
    XMP_SUBJECT = "xmp_subject"


class TextTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TagKind
    value: str


class MwgRegion(BaseModel):
    """MWG face region; the area is center-based, in normalized units."""

    model_config = ConfigDict(frozen=True)

    name: str
    x: str
    y: str
    w: str
    h: str
    type: str = "Face"
    unit: str = "normalized"


class MwgRegionList(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    regions: tuple[MwgRegion, ...]
    unit: str = "pixel"


class WpgRegion(BaseModel):
    """Windows Photo Gallery region; the rectangle is left, top, width, height."""

    model_config = ConfigDict(frozen=True)

    name: str
    rectangle: tuple[str, str, str, str]


class WpgRegionList(BaseModel):
    model_config = ConfigDict(frozen=True)

    regions: tuple[WpgRegion, ...]


Tag = TextTag | MwgRegionList | WpgRegionList


def build_tags(
    record: ImageRecord,
    dimensions: tuple[int, int],
    settings: EmbedSettings,
) -> list[Tag]:
    """
    Build the dialect-independent tag list for a record.

    Args:
        record: Record to embed.
        dimensions: Pixel ``(width, height)`` of the target file, written once as the
            MWG applied-to dimensions.
        settings: Which tag families and face schemas to write.

    Returns:
        Tags in emission order; empty if there is nothing to embed.

    """
    tags: list[Tag] = []

    caption = record.caption
    if settings.append_keywords_to_caption:
        caption = fold_keywords_into_caption(caption, record.keywords)

    # According to the MWG guidance these three are equivalent.
    if caption:
        if settings.write_exif:
            tags.append(TextTag(kind=TagKind.EXIF_DESCRIPTION, value=caption))
        if settings.write_iptc:
            tags.append(TextTag(kind=TagKind.IPTC_CAPTION, value=caption))
        if settings.write_xmp:
            tags.append(TextTag(kind=TagKind.XMP_DESCRIPTION, value=caption))

    for keyword in record.keywords:
        if settings.write_iptc:
            tags.append(TextTag(kind=TagKind.IPTC_KEYWORD, value=keyword))
        if settings.write_xmp:
            tags.append(TextTag(kind=TagKind.XMP_SUBJECT, value=keyword))

    if record.faces and settings.write_xmp and settings.write_xmp_mwg:
        regions = []
        for face in record.faces:
            center_x, center_y = face.rect.center
            regions.append(
                MwgRegion(
                    name=face.name,
                    x=round_xmp(center_x),
                    y=round_xmp(center_y),
                    w=round_xmp(face.rect.w),
                    h=round_xmp(face.rect.h),
                ),
            )
        width, height = dimensions
        tags.append(MwgRegionList(width=width, height=height, regions=tuple(regions)))

    if record.faces and settings.write_xmp and settings.write_xmp_wpg:
        tags.append(
            WpgRegionList(
                regions=tuple(
                    WpgRegion(name=face.name, rectangle=face.rect.rounded())
                    for face in record.faces
                ),
            ),
        )

    return tags


_EXIFTOOL_TEXT_TAGS = {
    TagKind.EXIF_DESCRIPTION: "EXIF:ImageDescription",
    TagKind.IPTC_CAPTION: "IPTC:Caption-Abstract",
    TagKind.XMP_DESCRIPTION: "XMP:Description",
    TagKind.IPTC_KEYWORD: "IPTC:Keywords",
    TagKind.XMP_SUBJECT: "XMP:Subject",
}


def _exiftool_mwg(tag: MwgRegionList) -> str:
    areas = ",".join(
        "{Area={"
        f"W={region.w},H={region.h},X={region.x},Y={region.y},Unit={region.unit}"
        "},"
        f"Name={escape_xmp(region.name)},Type={region.type}"
        "}"
        for region in tag.regions
    )
    return (
        "-RegionInfo={AppliedToDimensions={"
        f"W={tag.width},H={tag.height},Unit={tag.unit}"
        f"}},RegionList=[{areas}]}}"
    )


def _exiftool_wpg(tag: WpgRegionList) -> str:
    # Rectangle is a plain string holding commas, so they are escaped too.
    areas = ",".join(
        f"{{PersonDisplayName={escape_xmp(region.name)},Rectangle={'|, '.join(region.rectangle)}}}"
        for region in tag.regions
    )
    return f"-RegionInfoMP={{Regions=[{areas}]}}"


def render_exiftool(tags: Sequence[Tag]) -> list[str]:
    """
    Render tags as exiftool arguments.

    Examples:
        >>> render_exiftool([TextTag(kind=TagKind.XMP_SUBJECT, value="Paris")])
        ['-XMP:Subject=Paris']

    """
    args: list[str] = []
    for tag in tags:
        match tag:
            case TextTag(kind=kind, value=value):
                args.append(f"-{_EXIFTOOL_TEXT_TAGS[kind]}={value}")
            case MwgRegionList():
                args.append(_exiftool_mwg(tag))
            case WpgRegionList():
                args.append(_exiftool_wpg(tag))
    return args


_EXIV2_TEXT_TAGS = {
    TagKind.EXIF_DESCRIPTION: "set Exif.Image.ImageDescription Ascii",
    TagKind.IPTC_CAPTION: "set Iptc.Application2.Caption",
    TagKind.XMP_DESCRIPTION: "set Xmp.dc.description LangAlt",
    TagKind.IPTC_KEYWORD: "add Iptc.Application2.Keywords",
    # dc:subject is a bag, repeated sets append to it.
    TagKind.XMP_SUBJECT: "set Xmp.dc.subject",
}

_EXIV2_MWG_REGIONS = "Xmp.mwg-rs.Regions"
_EXIV2_MWG_LIST = f"{_EXIV2_MWG_REGIONS}/mwg-rs:RegionList"
_EXIV2_WPG_LIST = "Xmp.MP.RegionInfo/MPRI:Regions"


def _exiv2_mwg(tag: MwgRegionList) -> list[str]:
    dims = f"{_EXIV2_MWG_REGIONS}/mwg-rs:AppliedToDimensions"
    commands = [
        f"set {dims}/stDim:w {tag.width}",
        f"set {dims}/stDim:h {tag.height}",
        f"set {dims}/stDim:unit {tag.unit}",
        f'set {_EXIV2_MWG_LIST} ""',
    ]
    for index, region in enumerate(tag.regions, start=1):
        item = f"{_EXIV2_MWG_LIST}[{index}]"
        commands.extend(
            [
                f"set {item}/mwg-rs:Name {escape_exiv_string(region.name)}",
                f"set {item}/mwg-rs:Type {region.type}",
                f"set {item}/mwg-rs:Area/stArea:x {region.x}",
                f"set {item}/mwg-rs:Area/stArea:y {region.y}",
                f"set {item}/mwg-rs:Area/stArea:w {region.w}",
                f"set {item}/mwg-rs:Area/stArea:h {region.h}",
                f"set {item}/mwg-rs:Area/stArea:unit {region.unit}",
            ],
        )
    return commands


def _exiv2_wpg(tag: WpgRegionList) -> list[str]:
    commands = [f'set {_EXIV2_WPG_LIST} ""']
    for index, region in enumerate(tag.regions, start=1):
        item = f"{_EXIV2_WPG_LIST}[{index}]"
        commands.extend(
            [
                f"set {item}/MPReg:Rectangle {', '.join(region.rectangle)}",
                f"set {item}/MPReg:PersonDisplayName {escape_exiv_string(region.name)}",
            ],
        )
    return commands


def render_exiv2(tags: Sequence[Tag]) -> list[str]:
    """
    Render tags as exiv2 modify commands (each one is passed after ``-M``).

    Examples:
        >>> render_exiv2([TextTag(kind=TagKind.IPTC_KEYWORD, value="Paris")])
        ['add Iptc.Application2.Keywords "Paris"']

    """
    commands: list[str] = []
    for tag in tags:
        match tag:
            case TextTag(kind=kind, value=value):
                commands.append(f"{_EXIV2_TEXT_TAGS[kind]} {escape_exiv_string(value)}")
            case MwgRegionList():
                commands.extend(_exiv2_mwg(tag))
            case WpgRegionList():
                commands.extend(_exiv2_wpg(tag))
    return commands


RENDERERS: dict[ToolDialect, Callable[[Sequence[Tag]], list[str]]] = {
    ToolDialect.EXIFTOOL: render_exiftool,
    ToolDialect.EXIV2: render_exiv2,
}


def serialize(
    record: ImageRecord,
    dimensions: tuple[int, int],
    settings: EmbedSettings,
    *,
    image: str | None = None,
) -> tuple[list[str], list[Diagnostic]]:
    """
    Render a record for the dialect selected in ``settings``.

    Args:
        record: Record to embed.
        dimensions: Pixel ``(width, height)`` of the target file.
        settings: Embedding policy and tool dialect.
        image: Target file name, used in diagnostics.

    Returns:
        Tuple of (arguments, diagnostics). Empty arguments come with a
        NOTHING_TO_EMBED diagnostic and mean the tag writer should not be run.

    """
    tags = build_tags(record, dimensions, settings)
    if not tags:
        diagnostic = Diagnostic(
            kind=DiagnosticKind.NOTHING_TO_EMBED,
            message="No useful information found, not embedding tags",
            image=image,
        )
        return [], [diagnostic]
    return RENDERERS[settings.tool_dialect](tags), []
