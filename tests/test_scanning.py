import time

from steamcrawler import LaunchRequest, create_context, launch, scan
from steamcrawler import scanning
from steamcrawler.models import LibraryFolder, SteamContext
from steamcrawler.paths import resolve_library_folders
from steamcrawler.scanning import build_catalog, iter_executables, pick_executable

NO_EXTRAS = {"DETECT_EXECUTABLES": False, "DETECT_ARTWORK": False}


def test_end_to_end_single_game(tmp_path, write_manifest, write_library_folders):
    root = tmp_path / "steam"
    write_library_folders(root, root)
    write_manifest(root, 440, "Team Fortress 2", state=4)

    ctx = create_context(steam_root=str(root), env={})
    catalog = scan(ctx)

    assert list(catalog.games) == [440]
    rec = catalog.games[440]
    assert rec.name == "Team Fortress 2"
    assert rec.state.installed
    assert catalog.warnings == []
    assert catalog.steam_root == root

    cmd = launch(LaunchRequest(440), catalog=catalog, ctx=ctx, dispatch=False)
    assert cmd.uri == "steam://rungameid/440"
    assert cmd.argv[-1] == cmd.uri


def test_missing_library_folder_gives_one_folder_warning(tmp_path, steam_root,
                                                         write_manifest, write_library_folders):
    gone = tmp_path / "Unplugged"
    write_library_folders(steam_root, steam_root, gone)
    write_manifest(steam_root, 10, "Counter-Strike")

    warnings = []
    folders = resolve_library_folders(steam_root, warnings)
    assert len(folders) == 2 and warnings == []

    catalog = build_catalog(folders, root=steam_root, config=NO_EXTRAS)
    assert list(catalog.games) == [10]
    assert [(w.kind, w.path) for w in catalog.warnings] == [("folder", str(gone))]


def _two_libraries(tmp_path, write_manifest, older_first=True):
    lib_a, lib_b = tmp_path / "LibA", tmp_path / "LibB"
    t_a, t_b = (1_000_000, 2_000_000) if older_first else (2_000_000, 1_000_000)
    write_manifest(lib_a, 570, "Dota 2 (A)", mtime=t_a)
    write_manifest(lib_b, 570, "Dota 2 (B)", mtime=t_b)
    return lib_a, lib_b


def test_duplicate_app_newest_manifest_wins(tmp_path, write_manifest):
    lib_a, lib_b = _two_libraries(tmp_path, write_manifest, older_first=True)
    catalog = build_catalog([LibraryFolder(lib_a), LibraryFolder(lib_b)], config=NO_EXTRAS)

    assert len(catalog) == 1
    assert catalog.games[570].name == "Dota 2 (B)"
    assert catalog.games[570].library == lib_b
    superseded = [w for w in catalog.warnings if w.kind == "superseded"]
    assert len(superseded) == 1
    assert superseded[0].path == str(lib_a)


def test_duplicate_resolution_ignores_scan_order(tmp_path, write_manifest):
    lib_a, lib_b = _two_libraries(tmp_path, write_manifest, older_first=False)
    for folders in ([lib_a, lib_b], [lib_b, lib_a]):
        for workers in (1, 8):
            catalog = build_catalog([LibraryFolder(p) for p in folders],
                                    config=dict(NO_EXTRAS, MAX_WORKERS=workers))
            assert catalog.games[570].name == "Dota 2 (A)"
            assert [w.path for w in catalog.warnings] == [str(lib_b)]


def test_bad_manifests_become_warnings(steam_root, write_manifest):
    write_manifest(steam_root, 220, "Half-Life 2")
    apps = steam_root / "steamapps"
    (apps / "appmanifest_1.acf").write_text("}", encoding="utf-8")
    (apps / "appmanifest_2.acf").write_text('"AppState" { "name" "No Id" }', encoding="utf-8")
    (apps / "appmanifest_3.acf").write_text(
        '"AppState"\n{\n\t"appid"\t"3"\n\t"name"\t"Half Written"\n\t"installdir"\t"hw"\n\t"State',
        encoding="utf-8")

    catalog = build_catalog([LibraryFolder(steam_root)], root=steam_root, config=NO_EXTRAS)

    assert sorted(catalog.games) == [3, 220]
    assert catalog.games[3].name == "Half Written"
    by_path = {}
    for w in catalog.warnings:
        by_path.setdefault(w.path.rsplit("/", 1)[-1], set()).add(w.kind)
    assert by_path["appmanifest_1.acf"] == {"malformed"}
    assert by_path["appmanifest_2.acf"] == {"skipped"}
    assert "truncated" in by_path["appmanifest_3.acf"]
    assert "appmanifest_220.acf" not in by_path


def test_folder_without_steamapps_is_scanned_directly(tmp_path, write_manifest):
    flat = tmp_path / "flat"
    write_manifest(flat, 440, "Team Fortress 2", steamapps=False)
    catalog = build_catalog([LibraryFolder(flat)], config=NO_EXTRAS)
    assert list(catalog.games) == [440]


def test_unlistable_folder_is_a_warning(tmp_path, write_manifest, monkeypatch):
    good, bad = tmp_path / "good", tmp_path / "bad"
    write_manifest(good, 1, "One")
    write_manifest(bad, 2, "Two")
    real = scanning.list_manifests

    def flaky(folder):
        if folder.path == bad:
            raise PermissionError("denied")
        return real(folder)

    monkeypatch.setattr(scanning, "list_manifests", flaky)
    catalog = build_catalog([LibraryFolder(good), LibraryFolder(bad)], config=NO_EXTRAS)
    assert list(catalog.games) == [1]
    assert [(w.kind, w.path) for w in catalog.warnings] == [("folder", str(bad))]


def test_slow_manifest_read_times_out(steam_root, write_manifest, monkeypatch):
    write_manifest(steam_root, 1, "One")

    def slow(*a, **kw):
        time.sleep(0.5)
        return None, []

    monkeypatch.setattr(scanning, "read_manifest", slow)
    catalog = build_catalog([LibraryFolder(steam_root)], config=dict(NO_EXTRAS, READ_TIMEOUT=0.05))
    assert len(catalog) == 0
    assert [w.kind for w in catalog.warnings] == ["unreadable"]


def test_executable_hint_skips_redistributables(steam_root, write_manifest, touch):
    write_manifest(steam_root, 620, "Portal 2", installdir="Portal 2")
    game = steam_root / "steamapps" / "common" / "Portal 2"
    touch(game / "_CommonRedist" / "vcredist" / "vcredist_x64.exe")
    touch(game / "bin" / "launcher.exe")
    touch(game / "bin" / "portal2.exe")
    touch(game / "bin" / "UnityCrashHandler64.exe")

    catalog = build_catalog([LibraryFolder(steam_root)], root=steam_root,
                            config={"DETECT_ARTWORK": False})
    assert catalog.games[620].executable == "bin/portal2.exe"


def test_executables_from_shallowest_level_only(tmp_path, touch):
    touch(tmp_path / "v1" / "chapter1.exe")
    touch(tmp_path / "v2" / "chapter2.exe")
    touch(tmp_path / "v2" / "deeper" / "chapter3.exe")
    assert list(iter_executables(tmp_path, {".exe"}, 3)) == ["v1/chapter1.exe", "v2/chapter2.exe"]
    assert list(iter_executables(tmp_path, {".exe"}, 0)) == []

    touch(tmp_path / "Launcher.exe")
    assert list(iter_executables(tmp_path, {".exe"}, 3)) == ["Launcher.exe"]


def test_pick_executable_prefers_game_name():
    execs = ["Launcher.exe", "hl2.exe", "HalfLife2.exe"]
    assert pick_executable(execs, "Half-Life 2", "Half-Life 2") == "HalfLife2.exe"
    assert pick_executable(["a.exe", "b.exe"], "Zzz") == "a.exe"
    assert pick_executable([], "x") is None


def test_artwork_from_library_cache(steam_root, write_manifest, touch, image_bytes):
    write_manifest(steam_root, 440, "Team Fortress 2")
    cache = steam_root / "appcache" / "librarycache"
    touch(cache / "440_header.jpg", image_bytes(460, 215))
    touch(cache / "440_library_600x900.jpg", image_bytes(600, 900))
    touch(cache / "440_icon.jpg", image_bytes(32, 32))

    catalog = build_catalog([LibraryFolder(steam_root)], root=steam_root,
                            config={"DETECT_EXECUTABLES": False})
    rec = catalog.games[440]
    assert rec.cover_path == cache / "440_library_600x900.jpg"
    assert rec.icon_path == cache / "440_icon.jpg"


def test_artwork_per_app_directory(steam_root, write_manifest, touch, image_bytes):
    write_manifest(steam_root, 730, "Counter-Strike 2")
    app_dir = steam_root / "appcache" / "librarycache" / "730"
    icon = app_dir / ("ab" * 20 + ".jpg")
    touch(icon, image_bytes(32, 32))
    touch(app_dir / "header.jpg", image_bytes(460, 215))

    catalog = build_catalog([LibraryFolder(steam_root)], root=steam_root,
                            config={"DETECT_EXECUTABLES": False})
    assert catalog.games[730].icon_path == icon
    assert catalog.games[730].cover_path == app_dir / "header.jpg"


def test_superscript_app_id_does_not_stop_scan(steam_root, write_manifest):
    write_manifest(steam_root, 220, "Half-Life 2")
    (steam_root / "steamapps" / "appmanifest_2.acf").write_text(
        '"AppState" { "appid" "²" "name" "Two" "StateFlags" "4" }', encoding="utf-8")

    catalog = build_catalog([LibraryFolder(steam_root)], root=steam_root, config=NO_EXTRAS)
    assert list(catalog.games) == [220]
    assert [(w.kind, w.path.rsplit("/", 1)[-1]) for w in catalog.warnings] == [("skipped", "appmanifest_2.acf")]


def test_reader_crash_becomes_warning(steam_root, write_manifest, monkeypatch):
    write_manifest(steam_root, 1, "One")
    write_manifest(steam_root, 2, "Two")
    real = scanning.read_manifest

    def crashy(manifest, folder, cfg):
        if manifest.name == "appmanifest_1.acf":
            raise RuntimeError("boom")
        return real(manifest, folder, cfg)

    monkeypatch.setattr(scanning, "read_manifest", crashy)
    catalog = build_catalog([LibraryFolder(steam_root)], config=NO_EXTRAS)
    assert list(catalog.games) == [2]
    assert [w.kind for w in catalog.warnings] == ["malformed"]


def test_scan_with_hand_built_context(steam_root, write_manifest):
    write_manifest(steam_root, 440, "Team Fortress 2")
    catalog = scan(SteamContext(root=steam_root, platform="linux"))
    assert list(catalog.games) == [440]
