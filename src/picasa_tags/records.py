"""
Assemble ImageRecords from the per-image sections of an index.

Per-image section format:

    [xscan-0173.png]
    faces=rect64(65723403d3b0e89c),84a18ca5ba06032e;rect64(3d600745f087703),f9ba0eb0b8dbac6a
    backuphash=14029
    caption=Jun. 2005
    keywords=La Villette,Paris,France
"""

import re
from collections.abc import Callable, Mapping

from loguru import logger

from picasa_tags.contacts import resolve_contacts
from picasa_tags.ini import IndexTable
from picasa_tags.models import (
    UNKNOWN_FACE_ID,
    ContactTable,
    Diagnostic,
    DiagnosticKind,
    EmbedSettings,
    FaceRegion,
    ImageRecord,
    normalize_face_id,
)
from picasa_tags.rect import Rectangle, decode_rect64


_FACE_RE = re.compile(r"^rect64\(([0-9a-f]{1,16})\),([0-9a-f]+)", re.IGNORECASE)


def split_keywords(raw_value: str | None) -> list[str]:
    """
    Split a comma-separated keyword value, trimming each entry and dropping blanks.

    Examples:
        >>> split_keywords("Paris, France ,Europe")
        ['Paris', 'France', 'Europe']
        >>> split_keywords(None)
        []

    """
    if raw_value is None:
        return []
    return [keyword.strip() for keyword in raw_value.split(",") if keyword.strip()]


def parse_faces_line(raw_value: str) -> list[tuple[str, Rectangle]]:
    """
    Parse a ``faces`` value into ``(face_id, rectangle)`` pairs in source order.

    Entries that don't look like ``rect64(<hex>),<hex id>`` are skipped.

    Examples:
        >>> parse_faces_line("rect64(1000200030004000),ABC123;garbage")
        [('abc123', Rectangle(x=0.0625, y=0.125, w=0.125, h=0.125))]

    """
    faces: list[tuple[str, Rectangle]] = []
    for entry in raw_value.split(";"):
        match = _FACE_RE.match(entry.strip())
        if not match:
            continue
        faces.append((normalize_face_id(match.group(2)), decode_rect64(match.group(1))))
    return faces


def _resolve_faces(
    raw_value: str,
    contacts: ContactTable,
    settings: EmbedSettings,
    *,
    image_name: str,
    index_file: str | None,
) -> tuple[list[FaceRegion], list[Diagnostic]]:
    faces: list[FaceRegion] = []
    seen: set[str] = set()
    diagnostics: list[Diagnostic] = []

    for face_id, rect in parse_faces_line(raw_value):
        if face_id == UNKNOWN_FACE_ID and not settings.write_unknown_faces:
            continue

        name = contacts.get(face_id)
        if name is None:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.UNKNOWN_FACE,
                    message=f'Unknown face "{face_id}" for image "{image_name}", skipping face',
                    index_file=index_file,
                    image=image_name,
                    face_id=face_id,
                ),
            )
            continue

        if face_id in seen and not settings.write_duplicate_faces:
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.DUPLICATE_FACE,
                    message=f'Duplicate face "{face_id}" for image "{image_name}", skipping face',
                    index_file=index_file,
                    image=image_name,
                    face_id=face_id,
                ),
            )
            continue

        seen.add(face_id)
        faces.append(FaceRegion(face_id=face_id, name=name, rect=rect))

    return faces, diagnostics


def build_image_record(
    section: Mapping[str, str],
    contacts: ContactTable,
    settings: EmbedSettings,
    *,
    image_name: str,
    index_file: str | None = None,
) -> tuple[ImageRecord, list[Diagnostic]]:
    """
    Build the record for one image section.

    Args:
        section: Key/value pairs of the image's index section.
        contacts: Contacts of the same index file.
        settings: Embedding policy (unknown and duplicate face handling).
        image_name: Section name, used in diagnostics.
        index_file: Index path, used in diagnostics.

    Returns:
        Tuple of (record, diagnostics). The record may be empty; dropped faces are
        reported as UNKNOWN_FACE or DUPLICATE_FACE diagnostics.

    """
    faces: list[FaceRegion] = []
    diagnostics: list[Diagnostic] = []
    if "faces" in section:
        faces, diagnostics = _resolve_faces(
            section["faces"],
            contacts,
            settings,
            image_name=image_name,
            index_file=index_file,
        )

    record = ImageRecord(
        caption=section.get("caption", ""),
        keywords=tuple(split_keywords(section.get("keywords"))),
        faces=tuple(faces),
    )
    return record, diagnostics


def build_image_records(
    table: IndexTable,
    settings: EmbedSettings,
    *,
    file_exists: Callable[[str], bool],
    index_file: str | None = None,
) -> tuple[dict[str, ImageRecord], list[Diagnostic]]:
    """
    Build records for every image section of a parsed index.

    Only sections named like image files (``settings.image_extensions``) are used.
    The index is known to keep stale entries for deleted files, so sections whose
    file is gone are skipped with an IMAGE_MISSING diagnostic.

    Args:
        table: Parsed index table.
        settings: Embedding policy.
        file_exists: Tells whether the image named by a section exists on disk.
        index_file: Index path, used in diagnostics.

    Returns:
        Tuple of (records keyed by image name in index order, diagnostics).

    """
    contacts, diagnostics = resolve_contacts(table, settings, index_file=index_file)
    records: dict[str, ImageRecord] = {}

    for image_name, section in table.items():
        if not settings.is_image_name(image_name):
            continue
        if not file_exists(image_name):
            diagnostics.append(
                Diagnostic(
                    kind=DiagnosticKind.IMAGE_MISSING,
                    message=f'"{image_name}" is listed in the index but doesn\'t exist, skipping',
                    index_file=index_file,
                    image=image_name,
                ),
            )
            continue

        record, face_diagnostics = build_image_record(
            section,
            contacts,
            settings,
            image_name=image_name,
            index_file=index_file,
        )
        diagnostics.extend(face_diagnostics)
        records[image_name] = record

    logger.debug(
        "image_records_built",
        index_file=index_file,
        records=len(records),
        contacts=len(contacts),
        diagnostics=len(diagnostics),
    )
    return records, diagnostics
