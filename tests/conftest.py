import threading
from types import SimpleNamespace
import pytest
import yaml
from pathlib import Path
from pbo.config.models import AppConfig
from pbo.infrastructure.event_bus import EventBus
from pbo.infrastructure.progress import ProgressChannel
from pbo.infrastructure.tools import ToolError

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(tmp_path, test_output_dir):
    """Returns a sample AppConfig object pointing at temporary directories."""
    return AppConfig(
        general={
            "threads": 2,
            "output_dir": str(test_output_dir),
            "temp_dir": str(tmp_path / "tmp"),
            "scratch_folder": "pbo",
            "compress": "none",
            "clean": True,
            "skip_existing": True,
            "reprocess": False,
            "dedupe": False,
            "lock_file": str(tmp_path / "pbo.lock"),
            "debug": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "pbo.yaml"

    content = {
        'general': {
            'threads': 3,
            'output_dir': str(tmp_path),
            'compress': 'ebook',
            'clean': False,
            'dedupe': True,
        },
        'tools': {
            'tesseract': '/opt/tesseract/bin/tesseract',
            'timeout_s': 600,
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus / Progress Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

class RecordingChannel(ProgressChannel):
    """ProgressChannel that also keeps every emitted event for assertions."""

    def __init__(self):
        super().__init__()
        self.events = []
        self._events_lock = threading.Lock()

    def emit(self, event):
        with self._events_lock:
            self.events.append(event)
        super().emit(event)

    def of_type(self, event_type):
        with self._events_lock:
            return [e for e in self.events if isinstance(e, event_type)]

@pytest.fixture
def progress():
    """Returns a ProgressChannel that records emitted events."""
    return RecordingChannel()

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def test_input_dir(tmp_path):
    """Creates a test input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir

@pytest.fixture
def test_output_dir(tmp_path):
    """Creates a test output directory."""
    output_dir = tmp_path / "output"
    output_dir.mkdir()
    return output_dir

@pytest.fixture
def dummy_pdf_files(test_input_dir):
    """Creates dummy PDF files with distinct content."""
    files = []
    for name in ("a", "b", "c"):
        f = test_input_dir / f"{name}.pdf"
        f.write_bytes(f"%PDF-1.4 dummy document {name}\n".encode() * 50)
        files.append(f)
    return files

# ============================================================================
# Fake external tools
# ============================================================================

class FakeRasterizer:
    """Writes two page images per document instead of running pdftoppm."""

    page_glob = "*.tif"

    def __init__(self, pages: int = 2, fail_on=(), delay: float = 0.0):
        self.pages = pages
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def rasterize(self, source, scratch_dir):
        with self._lock:
            self.calls.append((Path(source), Path(scratch_dir)))
        if self.delay:
            threading.Event().wait(self.delay)
        if Path(source).name in self.fail_on:
            raise ToolError("pdftoppm", ["pdftoppm", str(source)], 99, "Syntax Error: Couldn't find trailer dictionary")
        for n in range(1, self.pages + 1):
            (Path(scratch_dir) / f"page-{n}.tif").write_bytes(b"II*\x00 fake page")

class FakeRecognizer:
    """Writes '<stem>.pdf' listing the pages of the manifest."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []
        self.manifests = []
        self._lock = threading.Lock()

    def recognize(self, manifest, output_stem):
        pages = Path(manifest).read_text().splitlines()
        with self._lock:
            self.calls.append((Path(manifest), Path(output_stem)))
            self.manifests.append(pages)
        if Path(output_stem).name in self.fail_on:
            raise ToolError("tesseract", ["tesseract", str(manifest)], 1, "Error during processing.")
        out = Path(f"{output_stem}.pdf")
        out.write_bytes(f"%PDF-1.4 searchable, {len(pages)} pages\n".encode())
        return out

class FakeCompressor:
    """Copies the input with a style marker instead of running ps2pdf."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def compress(self, style, source, destination):
        with self._lock:
            self.calls.append((style, Path(source), Path(destination)))
        if self.fail:
            raise ToolError("ps2pdf", ["ps2pdf", str(source)], 1, "Unrecoverable error")
        Path(destination).write_bytes(Path(source).read_bytes() + f"% {style}\n".encode())

class FakeToolchain:
    def __init__(self, rasterizer=None, recognizer=None, compressor=None):
        self.rasterizer = rasterizer or FakeRasterizer()
        self.recognizer = recognizer or FakeRecognizer()
        self.compressor = compressor or FakeCompressor()

@pytest.fixture
def fake_toolchain():
    """Returns a toolchain whose adapters write files instead of running tools."""
    return FakeToolchain()

@pytest.fixture
def fakes():
    """Fake adapter classes, for tests that need failure injection or delays."""
    return SimpleNamespace(
        Rasterizer=FakeRasterizer,
        Recognizer=FakeRecognizer,
        Compressor=FakeCompressor,
        Toolchain=FakeToolchain,
    )
