from .directory import COMPILE_DIRECTORY_PATH, build_compile_directory
from .index import build_index_html
from .writer import ReportWriter, collect_files

__all__ = [
    "COMPILE_DIRECTORY_PATH",
    "ReportWriter",
    "build_compile_directory",
    "build_index_html",
    "collect_files",
]
