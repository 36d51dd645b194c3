import io
import os
from pathlib import Path

import pytest

APPMANIFEST = '''"AppState"
{{
	"appid"		"{app_id}"
	"Universe"		"1"
	"name"		"{name}"
	"StateFlags"		"{state}"
	"installdir"		"{installdir}"
	"LastUpdated"		"1700000000"
	"SizeOnDisk"		"{size}"
	"buildid"		"8123456"
	"UserConfig"
	{{
		"language"		"english"
	}}
}}
'''


def _touch(p: Path, data: bytes = b""):
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data or b"stub")


def _image(w=600, h=900, fmt="JPEG"):
    from PIL import Image
    buf = io.BytesIO()
    Image.new("RGB", (w, h), (12, 34, 56)).save(buf, format=fmt)
    return buf.getvalue()


def _write_manifest(library: Path, app_id: int, name: str, state: int = 4,
                    installdir=None, size: int = 1024, mtime=None, steamapps=True) -> Path:
    apps_dir = library / "steamapps" if steamapps else library
    apps_dir.mkdir(parents=True, exist_ok=True)
    p = apps_dir / f"appmanifest_{app_id}.acf"
    p.write_text(APPMANIFEST.format(app_id=app_id, name=name, state=state,
                                    installdir=installdir or name, size=size), encoding="utf-8")
    if mtime is not None:
        os.utime(p, (mtime, mtime))
    return p


def _write_library_folders(root: Path, *paths: Path, where="steamapps") -> Path:
    lines = ['"libraryfolders"', "{"]
    for i, p in enumerate(paths):
        escaped = str(p).replace("\\", "\\\\")
        lines += [
            f'\t"{i}"', "\t{",
            f'\t\t"path"\t\t"{escaped}"',
            f'\t\t"label"\t\t"lib{i}"',
            f'\t\t"contentid"\t\t"{1000 + i}"',
            '\t\t"apps"', "\t\t{", "\t\t}",
            "\t}",
        ]
    lines.append("}")
    vdf_path = root / where / "libraryfolders.vdf"
    vdf_path.parent.mkdir(parents=True, exist_ok=True)
    vdf_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return vdf_path


@pytest.fixture
def touch():
    return _touch


@pytest.fixture
def image_bytes():
    return _image


@pytest.fixture
def write_manifest():
    return _write_manifest


@pytest.fixture
def write_library_folders():
    return _write_library_folders


@pytest.fixture
def steam_root(tmp_path):
    root = tmp_path / "Steam"
    (root / "steamapps").mkdir(parents=True)
    return root


@pytest.fixture
def fake_popen():
    """Popen stand-in recording calls; the first `fail` calls raise FileNotFoundError."""
    def factory(fail=0):
        calls = []

        class _P:
            def __init__(self, argv, **kw):
                calls.append((argv, kw))
                if len(calls) <= fail:
                    raise FileNotFoundError(argv[0])

        return _P, calls
    return factory
