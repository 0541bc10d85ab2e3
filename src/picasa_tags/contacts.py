"""Face id to name resolution from the index's ``[Contacts2]`` section."""

from picasa_tags.ini import CONTACTS_SECTION, IndexTable
from picasa_tags.models import (
    UNKNOWN_FACE_ID,
    ContactTable,
    Diagnostic,
    DiagnosticKind,
    EmbedSettings,
    normalize_face_id,
)


def strip_contact_name(raw_value: str) -> str:
    """
    Drop the trailing semicolons Picasa appends to contact names.

    Examples:
        >>> strip_contact_name("Jane Doe;;")
        'Jane Doe'
        >>> strip_contact_name(";;")
        ''

    """
    return raw_value.rstrip(";")


def resolve_contacts(
    table: IndexTable,
    settings: EmbedSettings,
    *,
    index_file: str | None = None,
) -> tuple[ContactTable, list[Diagnostic]]:
    """
    Build the ContactTable for one index file.

    The unknown-person sentinel is mapped to ``settings.unknown_face_name`` when
    unknown faces are written, so those regions stay searchable. A contact entry
    for the sentinel in the index overrides that label.

    Args:
        table: Parsed index table.
        settings: Embedding policy.
        index_file: Index path, only used in diagnostics.

    Returns:
        Tuple of (contacts, diagnostics). A missing contacts section yields a
        NO_CONTACTS diagnostic; faces then fail to resolve but captions and keywords
        are still written.

    """
    names: dict[str, str] = {}
    diagnostics: list[Diagnostic] = []

    if settings.write_unknown_faces:
        names[UNKNOWN_FACE_ID] = settings.unknown_face_name

    section = table.get(CONTACTS_SECTION)
    if section is None:
        diagnostics.append(
            Diagnostic(
                kind=DiagnosticKind.NO_CONTACTS,
                message="No contacts section found, face tags will be unavailable",
                index_file=index_file,
            ),
        )
    else:
        for face_id, raw_name in section.items():
            names[normalize_face_id(face_id)] = strip_contact_name(raw_name)

    return ContactTable(names=names), diagnostics
