import os
import shutil
import tempfile
import uuid
from html import escape
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import msgspec

from compiletrace.errors import ModuleRenderFailure
from compiletrace.loggers.error_log import get_error_logger
from compiletrace.modules.base import CombinedOutput, LazyReference
from compiletrace.modules.html import link, page
from compiletrace.settings import ReportSettings

from .directory import COMPILE_DIRECTORY_PATH, compile_directory_json

INDEX_PATH = "index.html"
LAZY_INDEX_PATH = "lazy_artifacts.json"

Materializer = Callable[[LazyReference], str]


def check_relative(path: str) -> str:
    """
    Raises
    ------
    ValueError
        If `path` is absolute or escapes the report directory.
    """
    p = PurePosixPath(path)
    if p.is_absolute() or ".." in p.parts or not p.parts:
        raise ValueError(f"report path {path!r} must be relative and inside the report")
    return str(p)


def collect_files(
    combined: CombinedOutput,
    materialize: Materializer,
    index_html: str,
    settings: Optional[ReportSettings] = None,
) -> List[Tuple[str, str]]:
    """
    Final ``(relative path, content)`` list: eager files, then lazy
    artifacts (materialized, or placeholders plus `lazy_artifacts.json`),
    then `compile_directory.json` and the index page. On duplicate paths
    the first file wins.

    Raises
    ------
    ModuleRenderFailure
        If a lazy artifact fails to materialize.
    """
    settings = settings or ReportSettings()
    files: Dict[str, str] = {}
    for path, content in combined.unique_files():
        files.setdefault(check_relative(path), content)

    for ref in combined.lazy:
        path = check_relative(ref.path)
        if path in files:
            continue
        if settings.materialize_lazy:
            try:
                files[path] = materialize(ref)
            except Exception as e:
                raise ModuleRenderFailure(ref.module_id, e) from e
        else:
            files[path] = _placeholder(ref)

    if combined.lazy and not settings.materialize_lazy:
        files.setdefault(
            LAZY_INDEX_PATH,
            msgspec.json.format(
                msgspec.json.encode([r.to_wire() for r in combined.lazy]), indent=2
            ).decode("utf-8"),
        )

    files.setdefault(COMPILE_DIRECTORY_PATH, compile_directory_json(combined))
    files[INDEX_PATH] = index_html
    return list(files.items())


class ReportWriter:
    """
    Writes the final report directory.

    Everything is written into a staging directory next to `output_dir` and
    moved into place only once complete, so a failure never leaves a
    partially written report behind.

    Parameters
    ----------
    output_dir : Path
    settings : ReportSettings, optional
    overwrite : bool
        Replace an existing non-empty `output_dir`.
    """

    def __init__(
        self,
        output_dir: Path,
        settings: Optional[ReportSettings] = None,
        overwrite: bool = False,
    ):
        self.output_dir = Path(output_dir)
        self.settings = settings or ReportSettings()
        self.overwrite = overwrite
        self.logger = get_error_logger("ReportWriter")

    def write(
        self,
        files: List[Tuple[str, str]],
        extra_dirs: Optional[Mapping[str, Path]] = None,
    ) -> Path:
        """
        Write `files` (and copies of `extra_dirs`) into `output_dir`.

        Raises
        ------
        FileExistsError
            If `output_dir` exists, is not empty and `overwrite` is False.
        """
        target = self.output_dir
        if target.exists() and any(target.iterdir()) and not self.overwrite:
            raise FileExistsError(f"{target} exists and is not empty")

        target.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(
            tempfile.mkdtemp(prefix=f".{target.name}.staging-{uuid.uuid4().hex[:6]}-", dir=target.parent)
        )
        try:
            for rel, content in files:
                path = staging / check_relative(rel)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
            for name, src in (extra_dirs or {}).items():
                shutil.copytree(src, staging / check_relative(name))

            if target.exists():
                shutil.rmtree(target)
            os.replace(staging, target)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self.logger.debug(f"[CompileTrace] wrote {len(files)} files to {target}")
        return target


def _placeholder(ref: LazyReference) -> str:
    body = (
        f"<h1>{escape(ref.path)}</h1>\n"
        "<p>This artifact was not rendered with the report. "
        f"It is listed in {link(LAZY_INDEX_PATH)} and can be rendered from "
        f"the <code>{ref.file_type.filename}</code> intermediate stream.</p>"
    )
    return page(ref.path, body)
