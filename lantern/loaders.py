"""Document loading utilities for local files."""

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Union

from bs4 import BeautifulSoup, Comment
from langchain_core.documents import Document as LCDocument
from langchain_community.document_loaders import PyMuPDFLoader, TextLoader

from .models import SourceText


logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".md", ".mdx", ".json", ".html", ".htm", ".pdf")

_CONTROL_CHARS = re.compile(r"[^\S\n]+|[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_text(text: str) -> str:
    """
    Normalise extracted text before chunking.

    Line endings become ``\\n``, runs of spaces and tabs collapse to one
    space, control characters are dropped, and more than one blank line in
    a row is reduced to a single paragraph break.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub(lambda m: " " if m.group(0).isspace() else "", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def strip_markdown(text: str) -> str:
    """Remove Markdown syntax, keeping the readable text."""
    text = re.sub(r"```[\s\S]*?```", "", text)
    text = re.sub(r"`([^`\n]*)`", r"\1", text)
    text = re.sub(r"^#{1,6}[ \t]+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^>[ \t]?", "", text, flags=re.MULTILINE)
    text = re.sub(r"^[ \t]*[*\-+][ \t]+", "", text, flags=re.MULTILINE)
    text = re.sub(r"^[ \t]*\d+\.[ \t]+", "", text, flags=re.MULTILINE)
    text = re.sub(r"!\[([^\]]*)\]\([^)]+\)", "", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"\*\*([^*\n]+)\*\*", r"\1", text)
    text = re.sub(r"\*([^*\n]+)\*", r"\1", text)
    text = re.sub(r"__([^_\n]+)__", r"\1", text)
    return text


_BLOCK_TAGS = ["br", "p", "div", "li", "tr", "section", "article", "h1", "h2", "h3", "h4", "h5", "h6"]


def strip_html(markup: str) -> str:
    """Visible text of an HTML page: scripts, styles and comments dropped, one line per block."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.append("\n")
    return soup.get_text()


def json_to_text(value: Any, indent: int = 0) -> str:
    """Render parsed JSON as indented ``key: value`` lines."""
    spacing = "  " * indent
    lines = []
    if isinstance(value, dict):
        for key, item in value.items():
            if isinstance(item, (dict, list)):
                lines.append(f"{spacing}{key}:")
                lines.append(json_to_text(item, indent + 1))
            else:
                lines.append(f"{spacing}{key}: {item}")
    elif isinstance(value, list):
        for i, item in enumerate(value, start=1):
            lines.append(f"{spacing}Item {i}:")
            lines.append(json_to_text(item, indent + 1))
    else:
        lines.append(f"{spacing}{value}")
    return "\n".join(lines)


def _load_file(path: Path, autodetect_encoding: bool) -> str:
    ext = path.suffix.lower()

    if ext == ".pdf":
        pages: List[LCDocument] = PyMuPDFLoader(str(path)).load()
        return "\n\n".join(page.page_content for page in pages if page.page_content.strip())

    docs = TextLoader(str(path), autodetect_encoding=autodetect_encoding).load()
    text = "\n".join(d.page_content for d in docs)

    if ext in (".md", ".mdx"):
        return strip_markdown(text)
    if ext in (".html", ".htm"):
        return strip_html(text)
    if ext == ".json":
        try:
            return json_to_text(json.loads(text))
        except json.JSONDecodeError:
            logger.debug("%s is not valid JSON, loading it as text", path)
    return text


def _expand(sources: Iterable[str], recursive: bool) -> List[Path]:
    paths: List[Path] = []
    for src in sources:
        path = Path(src)
        if path.is_dir():
            candidates = path.rglob("*") if recursive else path.glob("*")
            paths.extend(
                p for p in sorted(candidates)
                if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
            )
        elif path.exists():
            paths.append(path)
        else:
            logger.warning("File not found: %s", src)
    return paths


def load_sources(
    sources: Union[str, Sequence[str]],
    *,
    recursive: bool = True,
    autodetect_encoding: bool = True,
) -> List[SourceText]:
    """
    Load plain text from files and directories.

    Supported:
    - Text: .txt, plus .md/.mdx with Markdown syntax stripped
    - Markup and data: .html/.htm (tags stripped), .json (flattened)
    - PDF: PyMuPDF text extraction, pages joined with blank lines

    Unreadable files are logged and skipped, as are files that yield no text.

    Args:
        sources: Single path or list of paths (files or directories)
        recursive: Recursively scan directories
        autodetect_encoding: Auto-detect text file encoding

    Returns:
        One SourceText per file with ``name``, ``type``, ``size`` and ``source``
        metadata
    """
    if isinstance(sources, str):
        sources = [sources]

    out: List[SourceText] = []
    for path in _expand(sources, recursive):
        ext = path.suffix.lower() or ".txt"
        if ext not in SUPPORTED_EXTENSIONS:
            logger.warning("Unsupported file type %s: %s", ext, path)
            continue

        try:
            content = clean_text(_load_file(path, autodetect_encoding))
        except Exception:
            logger.warning("Failed to load %s", path, exc_info=True)
            continue

        if not content:
            logger.warning("No text extracted from %s", path)
            continue

        out.append(SourceText(
            content=content,
            metadata={
                "name": path.name,
                "type": ext,
                "size": path.stat().st_size,
                "source": str(path),
            },
        ))
        logger.debug("Loaded %s (%d chars)", path, len(content))

    logger.info("Loaded %d documents from %d sources", len(out), len(sources))
    return out
