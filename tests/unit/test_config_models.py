import pytest
from pydantic import ValidationError
from pbo.config.models import AppConfig, GeneralConfig, ToolsConfig
from pbo.config.loader import load_config

def test_valid_config():
    data = {
        "general": {
            "threads": 4,
            "output_dir": "/srv/out",
            "compress": "screen",
            "dedupe": True,
        },
        "tools": {
            "ps2pdf": "/usr/local/bin/ps2pdf",
        }
    }
    config = AppConfig(**data)
    assert config.general.threads == 4
    assert config.general.compress == "screen"
    assert config.general.dedupe is True
    assert config.tools.ps2pdf == "/usr/local/bin/ps2pdf"
    assert config.tools.tesseract == "tesseract"

def test_config_defaults():
    gen = GeneralConfig()
    assert gen.threads >= 1
    assert gen.output_dir == "./"
    assert gen.scratch_folder == "pbo"
    assert gen.compress == "none"
    assert gen.clean is True
    assert gen.skip_existing is True
    assert gen.reprocess is False
    assert gen.dedupe is False
    assert gen.dpi == 300
    assert gen.page_format == "tiff"
    assert gen.lock_file.endswith("pbo.lock")
    assert gen.log_path is None

def test_invalid_threads():
    with pytest.raises(ValidationError):
        GeneralConfig(threads=0)

def test_compress_is_normalized():
    assert GeneralConfig(compress=" EBook ").compress == "ebook"

def test_invalid_compress():
    with pytest.raises(ValidationError, match="Compress option invalid"):
        GeneralConfig(compress="printer")

def test_invalid_page_format():
    with pytest.raises(ValidationError):
        GeneralConfig(page_format="bmp")

def test_scratch_folder_must_be_single_name():
    assert GeneralConfig(scratch_folder="/pbo/").scratch_folder == "pbo"
    with pytest.raises(ValidationError):
        GeneralConfig(scratch_folder="a/b")
    with pytest.raises(ValidationError):
        GeneralConfig(scratch_folder="  ")

def test_reprocess_disables_skip():
    gen = GeneralConfig(reprocess=True, skip_existing=True)
    assert gen.skip_existing is False

def test_debug_disables_bar():
    gen = GeneralConfig(debug=True, bar=True)
    assert gen.bar is False

def test_tools_timeout_must_be_positive():
    with pytest.raises(ValidationError):
        ToolsConfig(timeout_s=0)

def test_load_config(config_yaml_path, tmp_path):
    config = load_config(config_yaml_path)
    assert config.general.threads == 3
    assert config.general.output_dir == str(tmp_path)
    assert config.general.compress == "ebook"
    assert config.general.clean is False
    assert config.general.dedupe is True
    assert config.tools.tesseract == "/opt/tesseract/bin/tesseract"
    assert config.tools.timeout_s == 600

def test_load_config_without_path_uses_defaults():
    config = load_config(None)
    assert config == AppConfig()

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

def test_load_config_flat_file(tmp_path):
    conf = tmp_path / "flat.yaml"
    conf.write_text("threads: 7\ncompress: screen\n")
    config = load_config(conf)
    assert config.general.threads == 7
    assert config.general.compress == "screen"

def test_load_config_empty_file(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    config = load_config(conf)
    assert config.general.compress == "none"
