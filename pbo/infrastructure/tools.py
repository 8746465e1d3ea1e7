"""Adapters around the external collaborators.

Each adapter builds a command line, runs it to completion and raises
``ToolError`` on a non-zero exit or when the binary cannot be started. The
tools are treated as opaque: nothing here parses their output.
"""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from pbo.config.models import AppConfig, ToolsConfig

PAGE_GLOBS = {
    "tiff": "*.tif",
    "png": "*.png",
    "jpeg": "*.jpg",
}


class ToolError(RuntimeError):
    """An external tool exited non-zero or could not be executed."""

    def __init__(self, tool: str, command: Sequence[str], returncode: Optional[int] = None, stderr: str = ""):
        self.tool = tool
        self.command = list(command)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        if returncode is None:
            detail = f"could not execute: {self.stderr}"
        else:
            detail = f"exited with code {returncode}"
            if self.stderr:
                detail += f": {self.stderr.splitlines()[-1]}"
        super().__init__(f"{tool} {detail}")


class MissingToolError(RuntimeError):
    """A required executable is not on PATH."""


def run_tool(cmd: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    logger = logging.getLogger(__name__)
    tool = Path(cmd[0]).name
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"TOOL_CMD: {' '.join(cmd)}")
    start = time.monotonic()
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ToolError(tool, cmd, None, f"timed out after {e.timeout}s") from e
    except OSError as e:
        raise ToolError(tool, cmd, None, str(e)) from e
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"TOOL_END: {tool} code={result.returncode} elapsed={time.monotonic() - start:.2f}s")
    if result.returncode != 0:
        raise ToolError(tool, cmd, result.returncode, result.stderr)
    return result


class PdfToPpmAdapter:
    """Rasterizes every page of a document into the scratch directory."""

    def __init__(self, binary: str = "pdftoppm", dpi: int = 300, page_format: str = "tiff",
                 timeout: Optional[float] = None):
        self.binary = binary
        self.dpi = dpi
        self.page_format = page_format
        self.timeout = timeout

    @property
    def page_glob(self) -> str:
        return PAGE_GLOBS[self.page_format]

    def build_command(self, source: Path, scratch_dir: Path) -> List[str]:
        # pdftoppm appends "-<page>.<ext>" to the root it is given
        return [
            self.binary,
            f"-{self.page_format}",
            "-r", str(self.dpi),
            str(source),
            str(Path(scratch_dir) / "page"),
        ]

    def rasterize(self, source: Path, scratch_dir: Path) -> None:
        run_tool(self.build_command(source, scratch_dir), timeout=self.timeout)


class TesseractAdapter:
    """OCRs a manifest of page images and reassembles them into one searchable PDF."""

    def __init__(self, binary: str = "tesseract", timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout

    def build_command(self, manifest: Path, output_stem: Path) -> List[str]:
        # tesseract adds the .pdf extension itself
        return [self.binary, str(manifest), str(output_stem), "pdf"]

    def recognize(self, manifest: Path, output_stem: Path) -> Path:
        run_tool(self.build_command(manifest, output_stem), timeout=self.timeout)
        return Path(f"{output_stem}.pdf")


class Ps2PdfAdapter:
    """Rewrites a PDF with Ghostscript's PDFSETTINGS presets (ebook, screen)."""

    def __init__(self, binary: str = "ps2pdf", timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout

    def build_command(self, style: str, source: Path, destination: Path) -> List[str]:
        return [self.binary, f"-dPDFSETTINGS=/{style}", str(source), str(destination)]

    def compress(self, style: str, source: Path, destination: Path) -> None:
        run_tool(self.build_command(style, source, destination), timeout=self.timeout)


@dataclass
class Toolchain:
    rasterizer: PdfToPpmAdapter
    recognizer: TesseractAdapter
    compressor: Ps2PdfAdapter

    @classmethod
    def from_config(cls, config: AppConfig) -> "Toolchain":
        tools = config.tools
        return cls(
            rasterizer=PdfToPpmAdapter(
                binary=tools.pdftoppm,
                dpi=config.general.dpi,
                page_format=config.general.page_format,
                timeout=tools.timeout_s,
            ),
            recognizer=TesseractAdapter(binary=tools.tesseract, timeout=tools.timeout_s),
            compressor=Ps2PdfAdapter(binary=tools.ps2pdf, timeout=tools.timeout_s),
        )


def check_tools(tools: ToolsConfig, compress: str = "none") -> None:
    """Raises MissingToolError for the first required executable not found on PATH."""
    required = [tools.pdftoppm, tools.tesseract]
    if compress != "none":
        required.append(tools.ps2pdf)
    for binary in required:
        if shutil.which(binary) is None:
            raise MissingToolError(f"Could not find path to {binary}!")
