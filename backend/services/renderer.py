"""
Config renderer.

Renders a device's resolved templates against its resolved variables and
packs the result into a gzip'd tar whose bytes depend only on the file
names and contents. The SHA-256 of those bytes is the bundle checksum, and
the checksum endpoint, the ETag and the download must all agree on it.
"""

import asyncio
import gzip
import hashlib
import io
import json
import logging
import tarfile
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from jinja2 import TemplateError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Device
from services import template_engine
from services.errors import RenderError
from services.groups import device_groups
from services.templates import ResolvedTemplate, resolve_templates
from services.variables import resolve
from utils.logging_utils import LogTimer

logger = logging.getLogger(__name__)

FILE_MODE = 0o644


@dataclass(frozen=True)
class TemplateSource:
    """Plain snapshot of a template, safe to hand to a worker thread."""

    id: int
    name: str
    path: str
    body: str
    type: str


@dataclass
class RenderedBundle:
    files: list[tuple[str, str]]
    archive: bytes
    checksum: str
    templates: list[dict[str, Any]] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)

    @property
    def etag(self) -> str:
        return f'"{self.checksum}"'


def build_context(device: Device, variables: Mapping[str, str], group_names: Sequence[str]) -> dict[str, Any]:
    return {
        "vars": dict(variables),
        "device": {
            "uuid": device.uuid,
            "name": device.name or "",
            "backend": device.backend,
            "mac_address": device.mac_address,
        },
        "groups": list(group_names),
    }


def render_files(sources: Sequence[TemplateSource], context: Mapping[str, Any]) -> list[tuple[str, str]]:
    """
    Render every template in order.

    A later template writing an earlier path replaces its content but keeps
    the earlier position.
    """
    files: dict[str, str] = {}
    for source in sources:
        try:
            content = template_engine.render_body(source.body, context)
        except TemplateError as e:
            raise RenderError(
                f"template '{source.name}': {e.message or e}",
                template_id=source.id,
            )
        except (TypeError, ValueError, ArithmeticError) as e:
            raise RenderError(
                f"template '{source.name}': {e}",
                template_id=source.id,
            )
        if source.type == "netjson":
            try:
                content = template_engine.canonical_json(content)
            except json.JSONDecodeError as e:
                raise RenderError(
                    f"template '{source.name}' did not render valid JSON: {e}",
                    template_id=source.id,
                )
        files[source.path] = content
    return list(files.items())


def pack_archive(files: Sequence[tuple[str, str]]) -> bytes:
    """Deterministic tar.gz: fixed metadata, members in the given order."""
    tar_buffer = io.BytesIO()
    with tarfile.open(fileobj=tar_buffer, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        for path, content in files:
            data = content.encode("utf-8")
            info = tarfile.TarInfo(name=path)
            info.size = len(data)
            info.mtime = 0
            info.mode = FILE_MODE
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            info.type = tarfile.REGTYPE
            tar.addfile(info, io.BytesIO(data))

    gz_buffer = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=gz_buffer, mtime=0) as gz:
        gz.write(tar_buffer.getvalue())
    return gz_buffer.getvalue()


def checksum_of(archive: bytes) -> str:
    return hashlib.sha256(archive).hexdigest()


def _render_sync(sources: Sequence[TemplateSource], context: Mapping[str, Any]) -> tuple[list[tuple[str, str]], bytes, str]:
    files = render_files(sources, context)
    try:
        archive = pack_archive(files)
    except ValueError as e:
        # ustar rejects over-long member names
        raise RenderError(f"cannot pack bundle: {e}")
    return files, archive, checksum_of(archive)


async def render(db: AsyncSession, device: Device) -> RenderedBundle:
    """Resolve state for ``device`` and build its bundle."""
    variables = await resolve(db, device.uuid)
    resolved: list[ResolvedTemplate] = await resolve_templates(db, device.uuid)
    groups = await device_groups(db, device.uuid)

    sources = [
        TemplateSource(
            id=entry.template.id,
            name=entry.template.name,
            path=entry.template.path,
            body=entry.template.body or "",
            type=entry.template.type,
        )
        for entry in resolved
    ]
    context = build_context(device, variables, [g.name for g in groups])

    with LogTimer(logger, f"Render {device.uuid}") as timer:
        files, archive, checksum = await asyncio.to_thread(_render_sync, sources, context)
        timer.add_info("file_count", len(files))
        timer.add_info("bytes", len(archive))
        timer.add_info("checksum", checksum)

    return RenderedBundle(
        files=files,
        archive=archive,
        checksum=checksum,
        templates=[entry.to_dict() for entry in resolved],
        variables=variables,
    )
