"""Handler managing plain files on the local filesystem."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Mapping

import structlog

from groundplan.core.errors import FatalProviderError, TransientProviderError
from groundplan.graph.schema import AttributeSpec, ResourceTypeSchema
from groundplan.handlers.base import HandlerContext, HandlerResult

logger = structlog.get_logger()

LOCAL_FILE_SCHEMA = ResourceTypeSchema(
    name="local_file",
    attributes={
        "path": AttributeSpec(type="string", required=True, replace=True),
        "content": AttributeSpec(type="string", required=True),
        "mode": AttributeSpec(type="string", description="octal permission bits, e.g. '0644'"),
    },
    outputs=("id", "sha256", "size"),
)


class LocalFileHandler:
    """
    ``local_file`` resources: the file at ``path`` holds ``content``.

    Relative paths resolve against ``root``. The external id is the
    resolved absolute path.
    """

    type_name = "local_file"
    schema = LOCAL_FILE_SCHEMA

    def __init__(self, root: str | Path = ".") -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = Path(path)
        if not target.is_absolute():
            target = self.root / target
        return target.resolve()

    @staticmethod
    def _outputs(target: Path, content: str) -> dict[str, Any]:
        data = content.encode("utf-8")
        return {
            "id": str(target),
            "sha256": hashlib.sha256(data).hexdigest(),
            "size": len(data),
        }

    @staticmethod
    def _write(target: Path, content: str, mode: str | None) -> None:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            if mode:
                target.chmod(int(mode, 8))
        except BlockingIOError as exc:
            raise TransientProviderError(f"{target} is busy: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise FatalProviderError(f"cannot write {target}: {exc}") from exc

    async def create(self, attributes: Mapping[str, Any], ctx: HandlerContext) -> HandlerResult:
        target = self._resolve(attributes["path"])
        content = attributes.get("content", "")
        await asyncio.to_thread(self._write, target, content, attributes.get("mode"))
        logger.info("local_file_written", resource=ctx.resource, path=str(target))
        return HandlerResult(external_id=str(target), outputs=self._outputs(target, content))

    async def read(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> HandlerResult | None:
        target = Path(external_id)
        try:
            content = await asyncio.to_thread(target.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise FatalProviderError(f"cannot read {target}: {exc}") from exc

        observed: dict[str, Any] = {"path": attributes.get("path", external_id), "content": content}
        if "mode" in attributes:
            observed["mode"] = f"{target.stat().st_mode & 0o777:04o}"
        return HandlerResult(
            external_id=external_id,
            outputs=self._outputs(target, content),
            attributes=observed,
        )

    async def update(
        self,
        external_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        ctx: HandlerContext,
    ) -> HandlerResult:
        target = Path(external_id)
        content = after.get("content", "")
        await asyncio.to_thread(self._write, target, content, after.get("mode"))
        logger.info("local_file_updated", resource=ctx.resource, path=str(target))
        return HandlerResult(external_id=external_id, outputs=self._outputs(target, content))

    async def destroy(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> None:
        target = Path(external_id)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except OSError as exc:
            raise FatalProviderError(f"cannot remove {target}: {exc}") from exc
        logger.info("local_file_removed", resource=ctx.resource, path=str(target))
