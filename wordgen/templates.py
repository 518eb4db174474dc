"""Company template catalogue.

Maps template ids to Word template files (``.dotx`` or ``.docx``) in the
templates directory and loads them as python-docx documents to build on.
A template may also carry its own heading style set, used when the caller
does not supply a valid one.
"""

from __future__ import annotations

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING

from docx import Document as open_docx
from docx.opc.exceptions import PackageNotFoundError
from lxml import etree

from wordgen.models import HeaderStyleSet

if TYPE_CHECKING:
    from docx.document import Document

    from wordgen.settings import WordSettings

logger = logging.getLogger(__name__)

_CONTENT_TYPES_PART = "[Content_Types].xml"
_DOCUMENT_MAIN_CT = "application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"
# Main-part content types python-docx refuses to open as a document.
_TEMPLATE_MAIN_CTS = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.template.main+xml",
    "application/vnd.ms-word.template.macroEnabledTemplate.main+xml",
    "application/vnd.ms-word.document.macroEnabled.main+xml",
)
_CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"


@dataclass(frozen=True)
class TemplateRecord:
    id: str
    name: str
    description: str
    file_name: str
    header_styles: Optional[HeaderStyleSet] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateRecord:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            description=str(data.get("description", "")),
            file_name=str(data["file_name"]),
            header_styles=data.get("header_styles"),
        )


def _as_document_package(path: Path) -> io.BytesIO:
    """Return an in-memory copy of *path* whose main part is a document.

    Word templates differ from documents only by the main part's content
    type, so rewriting ``[Content_Types].xml`` is enough for python-docx.
    """
    out = io.BytesIO()
    with zipfile.ZipFile(path) as src, zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as dst:
        for info in src.infolist():
            data = src.read(info.filename)
            if info.filename == _CONTENT_TYPES_PART:
                root = etree.fromstring(data)
                for override in root.iter(f"{{{_CT_NS}}}Override"):
                    if override.get("ContentType") in _TEMPLATE_MAIN_CTS:
                        override.set("ContentType", _DOCUMENT_MAIN_CT)
                data = etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)
            dst.writestr(info, data)
    out.seek(0)
    return out


class TemplateCatalog:
    """Catalogue of company templates backed by a directory of files.

    Parameters
    ----------
    records:
        Catalogue entries; the first one is the default template.
    directory:
        Directory holding the template files.
    """

    def __init__(self, records: list[TemplateRecord], directory: str | Path) -> None:
        self._records = list(records)
        self._directory = Path(directory)
        logger.debug(
            "Template catalogue: %d template(s) in %s", len(self._records), self._directory
        )

    @classmethod
    def from_settings(cls, settings: WordSettings) -> TemplateCatalog:
        cfg = settings.templates
        records = [TemplateRecord.from_dict(item) for item in cfg.get("catalog", [])]
        return cls(records, cfg.get("directory", "word-templates"))

    @property
    def directory(self) -> Path:
        return self._directory

    def available(self) -> list[TemplateRecord]:
        return list(self._records)

    def get(self, template_id: str) -> Optional[TemplateRecord]:
        return next((r for r in self._records if r.id == template_id), None)

    def default(self) -> Optional[TemplateRecord]:
        return self._records[0] if self._records else None

    def file_path(self, template_id: str) -> Path:
        """Return the file backing *template_id*.

        Raises
        ------
        KeyError
            If the id is not in the catalogue.
        FileNotFoundError
            If the template file is missing.
        """
        record = self.get(template_id)
        if record is None:
            raise KeyError(f"Template ID not found: {template_id}")
        path = self._directory / record.file_name
        if not path.is_file():
            raise FileNotFoundError(f"Template file not found: {path}")
        return path

    def header_styles(self, template_id: Optional[str]) -> Optional[HeaderStyleSet]:
        record = self.get(template_id) if template_id else None
        return record.header_styles if record else None

    def load_document(self, template_id: str) -> Optional[Document]:
        """Open the template as a python-docx document, or ``None``.

        Unknown ids, missing files and unreadable packages are logged and
        reported as ``None`` so the caller can fall back to a blank document.
        """
        try:
            path = self.file_path(template_id)
        except (KeyError, FileNotFoundError) as exc:
            logger.warning("Template %s not available (%s), using default document", template_id, exc)
            return None

        try:
            if path.suffix.lower() in (".dotx", ".dotm", ".docm"):
                doc = open_docx(_as_document_package(path))
            else:
                doc = open_docx(str(path))
        except (PackageNotFoundError, zipfile.BadZipFile, etree.XMLSyntaxError, KeyError, ValueError, OSError) as exc:
            logger.error("Error loading template %s from %s: %s", template_id, path, exc)
            return None

        logger.info("Loaded template %s from %s", template_id, path)
        return doc
