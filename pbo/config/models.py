import os
import tempfile
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

COMPRESS_STYLES = ("none", "ebook", "screen")
PAGE_FORMATS = ("tiff", "png", "jpeg")


def _default_threads() -> int:
    return os.cpu_count() or 1


def _default_temp_dir() -> str:
    return tempfile.gettempdir()


def _default_lock_file() -> str:
    return os.path.join(tempfile.gettempdir(), "pbo.lock")


class GeneralConfig(BaseModel):
    threads: int = Field(default_factory=_default_threads, gt=0)
    output_dir: str = "./"
    temp_dir: str = Field(default_factory=_default_temp_dir)
    scratch_folder: str = "pbo"
    compress: str = "none"
    clean: bool = True
    skip_existing: bool = True
    reprocess: bool = False
    dedupe: bool = False
    dpi: int = Field(default=300, ge=50, le=1200)
    page_format: str = "tiff"
    lock_file: str = Field(default_factory=_default_lock_file)
    ignore_lock: bool = False
    bar: bool = False
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("compress")
    @classmethod
    def validate_compress(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in COMPRESS_STYLES:
            raise ValueError(f"Compress option invalid: {v}. Use one of {list(COMPRESS_STYLES)}")
        return v

    @field_validator("page_format")
    @classmethod
    def validate_page_format(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in PAGE_FORMATS:
            raise ValueError(f"Unsupported page_format: {v}. Use one of {list(PAGE_FORMATS)}")
        return v

    @field_validator("scratch_folder")
    @classmethod
    def validate_scratch_folder(cls, v: str) -> str:
        v = (v or "").strip().strip("/")
        if not v or "/" in v:
            raise ValueError("scratch_folder must be a single, non-empty directory name")
        return v

    @model_validator(mode="after")
    def apply_sanity_rules(self):
        # reprocess re-runs stages whose products already exist
        if self.reprocess:
            self.skip_existing = False
        if self.debug:
            self.bar = False
        return self


class ToolsConfig(BaseModel):
    """Executable names (or absolute paths) of the external collaborators."""
    pdftoppm: str = "pdftoppm"
    tesseract: str = "tesseract"
    ps2pdf: str = "ps2pdf"
    timeout_s: Optional[float] = Field(default=None, gt=0)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
