import subprocess
import pytest
from pathlib import Path
from unittest.mock import patch, MagicMock
from pbo.config.models import AppConfig, ToolsConfig
from pbo.infrastructure.tools import (
    MissingToolError,
    PdfToPpmAdapter,
    Ps2PdfAdapter,
    TesseractAdapter,
    ToolError,
    Toolchain,
    check_tools,
    run_tool,
)

def _completed(returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)

def test_pdftoppm_command():
    adapter = PdfToPpmAdapter()
    cmd = adapter.build_command(Path("/in/a.pdf"), Path("/tmp/pbo/1.a1"))
    assert cmd == ["pdftoppm", "-tiff", "-r", "300", "/in/a.pdf", "/tmp/pbo/1.a1/page"]
    assert adapter.page_glob == "*.tif"

def test_pdftoppm_command_png():
    adapter = PdfToPpmAdapter(binary="/usr/bin/pdftoppm", dpi=150, page_format="png")
    cmd = adapter.build_command(Path("a.pdf"), Path("s"))
    assert cmd[:4] == ["/usr/bin/pdftoppm", "-png", "-r", "150"]
    assert adapter.page_glob == "*.png"

def test_tesseract_command():
    cmd = TesseractAdapter().build_command(Path("/s/a1.lst"), Path("/out/a_fixed"))
    assert cmd == ["tesseract", "/s/a1.lst", "/out/a_fixed", "pdf"]

def test_ps2pdf_command():
    cmd = Ps2PdfAdapter().build_command("ebook", Path("/out/a_fixed.pdf"), Path("/out/a_fixed_ebook.pdf"))
    assert cmd == ["ps2pdf", "-dPDFSETTINGS=/ebook", "/out/a_fixed.pdf", "/out/a_fixed_ebook.pdf"]

def test_tesseract_recognize_returns_pdf_path():
    with patch("pbo.infrastructure.tools.subprocess.run", return_value=_completed()) as mock_run:
        out = TesseractAdapter(timeout=30).recognize(Path("/s/a1.lst"), Path("/out/a_fixed"))
    assert out == Path("/out/a_fixed.pdf")
    args, kwargs = mock_run.call_args
    assert args[0] == ["tesseract", "/s/a1.lst", "/out/a_fixed", "pdf"]
    assert kwargs["timeout"] == 30
    assert kwargs["capture_output"] is True

def test_run_tool_non_zero_exit():
    with patch("pbo.infrastructure.tools.subprocess.run", return_value=_completed(1, "warn\nfatal: bad pdf\n")):
        with pytest.raises(ToolError) as exc_info:
            run_tool(["/usr/bin/pdftoppm", "a.pdf"])
    err = exc_info.value
    assert err.tool == "pdftoppm"
    assert err.returncode == 1
    assert err.command == ["/usr/bin/pdftoppm", "a.pdf"]
    assert "fatal: bad pdf" in str(err)

def test_run_tool_missing_binary():
    with patch("pbo.infrastructure.tools.subprocess.run", side_effect=FileNotFoundError("No such file")):
        with pytest.raises(ToolError) as exc_info:
            run_tool(["tesseract", "x"])
    assert exc_info.value.returncode is None
    assert "could not execute" in str(exc_info.value)

def test_run_tool_timeout():
    timeout = subprocess.TimeoutExpired(cmd=["ps2pdf"], timeout=5)
    with patch("pbo.infrastructure.tools.subprocess.run", side_effect=timeout):
        with pytest.raises(ToolError, match="timed out"):
            run_tool(["ps2pdf", "a", "b"], timeout=5)

def test_adapter_propagates_tool_error():
    with patch("pbo.infrastructure.tools.subprocess.run", return_value=_completed(2)):
        with pytest.raises(ToolError):
            Ps2PdfAdapter().compress("screen", Path("a.pdf"), Path("b.pdf"))

def test_toolchain_from_config():
    config = AppConfig(
        general={"dpi": 200, "page_format": "png"},
        tools={"tesseract": "/opt/tess", "timeout_s": 60},
    )
    chain = Toolchain.from_config(config)
    assert chain.rasterizer.dpi == 200
    assert chain.rasterizer.page_format == "png"
    assert chain.recognizer.binary == "/opt/tess"
    assert chain.compressor.timeout == 60

def test_check_tools_all_present():
    with patch("pbo.infrastructure.tools.shutil.which", return_value="/usr/bin/x") as mock_which:
        check_tools(ToolsConfig(), compress="ebook")
    assert [c.args[0] for c in mock_which.call_args_list] == ["pdftoppm", "tesseract", "ps2pdf"]

def test_check_tools_missing():
    def which(name):
        return None if name == "tesseract" else f"/usr/bin/{name}"

    with patch("pbo.infrastructure.tools.shutil.which", side_effect=which):
        with pytest.raises(MissingToolError, match="Could not find path to tesseract!"):
            check_tools(ToolsConfig())

def test_check_tools_ps2pdf_only_needed_when_compressing():
    def which(name):
        return None if name == "ps2pdf" else f"/usr/bin/{name}"

    with patch("pbo.infrastructure.tools.shutil.which", side_effect=which):
        check_tools(ToolsConfig(), compress="none")
        with pytest.raises(MissingToolError):
            check_tools(ToolsConfig(), compress="screen")
