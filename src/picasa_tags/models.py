"""Data model shared by the index decoder, record builder and serializer."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from picasa_tags.rect import Rectangle


UNKNOWN_FACE_ID = "ffffffffffffffff"
DEFAULT_UNKNOWN_FACE_NAME = "Unknown"
DEFAULT_IMAGE_EXTENSIONS = ("jpeg", "jpg", "png")


def normalize_face_id(face_id: str) -> str:
    """Face identifiers are hex strings compared case-insensitively."""
    return face_id.strip().lower()


class ToolDialect(StrEnum):
    """External tag writers the serializer can target."""

    EXIFTOOL = "exiftool"
    EXIV2 = "exiv2"


class EmbedSettings(BaseModel):
    """Policy flags threaded through every decoding and serialization call."""

    model_config = ConfigDict(frozen=True)

    # EXIF and IPTC text tags may only hold ASCII in some readers.
    write_exif: bool = False
    write_iptc: bool = False
    # Face regions are only representable in XMP.
    write_xmp: bool = True
    write_xmp_mwg: bool = True
    write_xmp_wpg: bool = True
    # Some upload services reject files with duplicate faces.
    write_duplicate_faces: bool = False
    write_unknown_faces: bool = False
    append_keywords_to_caption: bool = False
    tool_dialect: ToolDialect = ToolDialect.EXIFTOOL
    image_extensions: tuple[str, ...] = DEFAULT_IMAGE_EXTENSIONS
    unknown_face_name: str = DEFAULT_UNKNOWN_FACE_NAME

    def is_image_name(self, name: str) -> bool:
        """
        Return True if ``name`` ends with one of the allowed extensions (any case).

        Examples:
            >>> EmbedSettings().is_image_name("IMG_0001.JPG")
            True
            >>> EmbedSettings().is_image_name("Contacts2")
            False

        """
        stem, dot, extension = name.rpartition(".")
        if not dot or not stem:
            return False
        allowed = {ext.lower().lstrip(".") for ext in self.image_extensions}
        return extension.lower() in allowed


class FaceRegion(BaseModel):
    """A named face rectangle. Identity is the face id, not the position."""

    model_config = ConfigDict(frozen=True)

    face_id: str
    name: str = ""
    rect: Rectangle


class ImageRecord(BaseModel):
    """Everything that gets embedded into one image file."""

    model_config = ConfigDict(frozen=True)

    caption: str = ""
    keywords: tuple[str, ...] = ()
    faces: tuple[FaceRegion, ...] = ()


class ContactTable(BaseModel):
    """Face id to display name mapping for one index file."""

    model_config = ConfigDict(frozen=True)

    names: dict[str, str] = Field(default_factory=dict)

    def __contains__(self, face_id: object) -> bool:
        return isinstance(face_id, str) and normalize_face_id(face_id) in self.names

    def __len__(self) -> int:
        return len(self.names)

    def get(self, face_id: str) -> str | None:
        return self.names.get(normalize_face_id(face_id))


class DiagnosticKind(StrEnum):
    """Non-fatal conditions reported by the decoder, builder and serializer."""

    INDEX_UNREADABLE = "index_unreadable"
    NO_CONTACTS = "no_contacts_section"
    IMAGE_MISSING = "image_missing"
    UNKNOWN_FACE = "unknown_face"
    DUPLICATE_FACE = "duplicate_face"
    NOTHING_TO_EMBED = "nothing_to_embed"

    @property
    def informational(self) -> bool:
        return self is DiagnosticKind.NOTHING_TO_EMBED


class Diagnostic(BaseModel):
    """Advisory message; callers decide whether to log, count or abort."""

    model_config = ConfigDict(frozen=True)

    kind: DiagnosticKind
    message: str
    index_file: str | None = None
    image: str | None = None
    face_id: str | None = None

    def context(self) -> dict[str, str]:
        """Structured fields for logging, without the empty ones."""
        fields = {"index_file": self.index_file, "image": self.image, "face_id": self.face_id}
        return {key: value for key, value in fields.items() if value is not None}
