"""
Directory listings, rendered as JSON, XML, HTML or plain text.
"""
import html
import os
import posixpath
import stat
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote

from pydantic import BaseModel
from starlette.responses import PlainTextResponse, Response

from .archive import ARCHIVE_EXTENSIONS

IGNORED_NAMES = {".DS_Store"}


# ============================================
# Listing models
# ============================================

class ListFile(BaseModel):
    name: str
    path: str
    isDir: bool = False
    accessible: bool = False
    size: int = 0
    mtime: Optional[datetime] = None


class DirectoryListing(BaseModel):
    path: str
    parent: str
    numFiles: int = 0
    numDirs: int = 0
    totalSize: int = 0
    archive: bool = False
    files: List[ListFile] = []


def format_size(size: int) -> str:
    """Human readable byte count, e.g. 1.2KB."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1000 or unit == "TB":
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{unit}"
        value /= 1000


def sort_files(files: List[ListFile], case_insensitive: bool = False,
               directories_first: bool = False) -> List[ListFile]:
    """Sort by name; optionally fold case and/or put directories before files."""
    def key(f: ListFile):
        name = f.name.lower() if case_insensitive else f.name
        if directories_first:
            return (not f.isDir, name)
        return (name,)

    return sorted(files, key=key)


def build_listing(directory: str, relative: str, archive: bool = False,
                  case_insensitive: bool = False, directories_first: bool = False) -> DirectoryListing:
    """
    Enumerate ``directory``.

    Names are read first and each entry is stat'ed on its own, so one entry
    that cannot be stat'ed shows up as inaccessible instead of failing the
    whole listing. ``relative`` is the root-relative path ("." for the root).
    Raises OSError when the directory itself cannot be read.
    """
    parent = ""
    if relative != ".":
        parent = "/" + posixpath.normpath(posixpath.join(relative, ".."))
        if parent == "/.":
            parent = "/"

    listing = DirectoryListing(path=relative, parent=parent, archive=archive)
    files = []
    for name in os.listdir(directory):
        if name in IGNORED_NAMES:
            continue
        entry = ListFile(name=name, path="/" + posixpath.normpath(posixpath.join(relative, name)))
        try:
            st = os.stat(os.path.join(directory, name))
        except OSError:
            files.append(entry)
            continue
        entry.accessible = True
        entry.isDir = stat.S_ISDIR(st.st_mode)
        entry.mtime = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        if entry.isDir:
            listing.numDirs += 1
        else:
            entry.size = st.st_size
            listing.numFiles += 1
            listing.totalSize += st.st_size
        files.append(entry)

    listing.files = sort_files(files, case_insensitive, directories_first)
    return listing


# ============================================
# Content negotiation
# ============================================

def negotiate(accept: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Pick a representation from the Accept header.

    Entries are tried in order and the first whose subtype is json, xml or
    html wins; quality values are not considered. Returns (format, content
    type), with (None, "text/plain") when nothing matches.
    """
    for entry in (accept or "").split(","):
        entry = entry.strip()
        parts = entry.split("/", 1)
        if len(parts) != 2:
            continue
        if parts[1] in ("json", "xml", "html"):
            return parts[1], entry
    return None, "text/plain"


def display_name(f: ListFile) -> str:
    return f.name + "/" if f.isDir else f.name


def render_text(listing: DirectoryListing) -> str:
    return "".join(f.name + "\n" for f in listing.files)


def render_json(listing: DirectoryListing) -> str:
    return listing.model_dump_json(indent=2)


def render_xml(listing: DirectoryListing) -> str:
    root = ET.Element("listing")
    for field in ("path", "parent", "numFiles", "numDirs", "totalSize", "archive"):
        value = getattr(listing, field)
        ET.SubElement(root, field).text = str(value).lower() if isinstance(value, bool) else str(value)
    files = ET.SubElement(root, "files")
    for f in listing.files:
        item = ET.SubElement(files, "file")
        for field, value in f.model_dump().items():
            if value is None:
                continue
            if isinstance(value, bool):
                text = str(value).lower()
            elif isinstance(value, datetime):
                text = value.isoformat()
            else:
                text = str(value)
            ET.SubElement(item, field).text = text
    ET.indent(root, space="  ")
    return ET.tostring(root, encoding="unicode")


HTML_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: sans-serif; margin: 2em; }}
table {{ border-collapse: collapse; }}
td, th {{ padding: 0.2em 1em; text-align: left; }}
td.size {{ text-align: right; color: #666; }}
.archive a {{ margin-right: 1em; }}
</style>
</head>
<body>
<h2>{title}</h2>
{archive}<table>
<tr><th>Name</th><th>Size</th></tr>
{parent}{rows}</table>
<p>{summary}</p>
</body>
</html>
"""


def render_html(listing: DirectoryListing) -> str:
    title = "/" if listing.path == "." else "/" + listing.path
    rows = []
    for f in listing.files:
        href = html.escape(quote(f.path + ("/" if f.isDir else "")), quote=True)
        name = html.escape(display_name(f))
        if not f.accessible:
            size = "?"
        elif f.isDir:
            size = "-"
        else:
            size = format_size(f.size)
        rows.append(f'<tr><td><a href="{href}">{name}</a></td><td class="size">{size}</td></tr>\n')

    parent = ""
    if listing.parent:
        parent = f'<tr><td><a href="{html.escape(listing.parent, quote=True)}">../</a></td><td></td></tr>\n'

    archive = ""
    if listing.archive:
        links = "".join(
            f'<a href="{html.escape(quote(title), quote=True)}{ext}">{ext}</a>' for ext in ARCHIVE_EXTENSIONS
        )
        archive = f'<p class="archive">Download: {links}</p>\n'

    summary = (
        f"{listing.numFiles} files, {listing.numDirs} directories, "
        f"{format_size(listing.totalSize)}"
    )
    return HTML_PAGE.format(
        title=html.escape(title),
        archive=archive,
        parent=parent,
        rows="".join(rows),
        summary=summary,
    )


RENDERERS = {
    "json": render_json,
    "xml": render_xml,
    "html": render_html,
}


def listing_response(directory: str, relative: str, accept: Optional[str], archive: bool = False,
                     case_insensitive: bool = False, directories_first: bool = False) -> Response:
    try:
        listing = build_listing(directory, relative, archive, case_insensitive, directories_first)
    except OSError as e:
        return PlainTextResponse(f"Cannot list directory: {e}", status_code=500)

    fmt, content_type = negotiate(accept)
    if fmt is None:
        body = render_text(listing)
    else:
        body = RENDERERS[fmt](listing)
    return Response(body, status_code=200, headers={"Content-Type": content_type})
