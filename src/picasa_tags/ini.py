"""
Reader for Picasa's per-directory ``.picasa.ini`` index.

The format looks like INI but values may hold characters configparser rejects
(``=``, ``;``), so lines are split on the first ``=`` only.

    [Contacts2]
    1e85e978a76ab144=Fname1 Lname1;;
    [xscan-0173.png]
    faces=rect64(65723403d3b0e89c),84a18ca5ba06032e;rect64(3d600745f087703),f9ba0eb0b8dbac6a
    caption=Jun. 2005
    keywords=La Villette,Paris,France
"""

import re
from collections.abc import Iterable
from pathlib import Path

from loguru import logger


INDEX_FILENAME = ".picasa.ini"
CONTACTS_SECTION = "Contacts2"

_SECTION_RE = re.compile(r"^\[(.*?)\]$")

IndexTable = dict[str, dict[str, str]]


def parse_index(lines: Iterable[str]) -> IndexTable:
    """
    Parse index lines into a ``{section: {key: value}}`` table.

    Entries before the first section header go to the ``""`` section. A header alone
    creates an empty section. Later duplicate keys win. Lines without ``=`` are ignored.

    Examples:
        >>> parse_index(["stray=1", "[a.jpg]", "caption=x=y", "junk", "caption=z"])
        {'': {'stray': '1'}, 'a.jpg': {'caption': 'z'}}

    """
    table: IndexTable = {}
    section = ""
    for raw_line in lines:
        line = raw_line.strip()
        if match := _SECTION_RE.match(line):
            section = match.group(1)
            table.setdefault(section, {})
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        table.setdefault(section, {})[key] = value
    return table


def read_index(index_path: Path) -> IndexTable | None:
    """
    Read and parse an index file.

    Returns:
        The parsed table, or None if the file cannot be opened or decoded. Callers
        treat None as "skip this directory".

    """
    try:
        with index_path.open(encoding="utf-8-sig") as handle:
            table = parse_index(handle)
    except (OSError, UnicodeDecodeError) as exc:
        logger.debug("index_read_failed", index_file=str(index_path), error=str(exc))
        return None
    logger.debug("index_parsed", index_file=str(index_path), sections=len(table))
    return table
