import json

from scripts.image_uploader import main, parse_args


def test_parse_args_defaults():
    args = parse_args([])

    assert str(args.config) == "config/config.json"
    assert args.log_level is None
    assert not args.version


def test_version_exits_cleanly(capsys):
    assert main(["--version"]) == 0
    assert "Discord Image Uploader" in capsys.readouterr().out


def test_missing_config_exits_with_error(tmp_path):
    assert main(["--config", str(tmp_path / "missing.json")]) == 1


def test_invalid_config_exits_with_error(tmp_path):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"watcher": {"folder_path": str(tmp_path)}}))

    assert main(["--config", str(config)]) == 1


def test_unreachable_watch_folder_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps(
            {
                "discord": {"webhook_url": "https://discord.test/hook"},
                "watcher": {"folder_path": str(tmp_path / "missing")},
            }
        )
    )

    assert main(["--config", str(config)]) == 1


def test_undecodable_history_file_exits_with_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    watched = tmp_path / "watched"
    watched.mkdir()
    history_file = tmp_path / "history.json"
    history_file.write_bytes(b"\xff\xfe{}")
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps(
            {
                "discord": {"webhook_url": "https://discord.test/hook"},
                "watcher": {"folder_path": str(watched)},
                "history": {"file_path": str(history_file)},
            }
        )
    )

    assert main(["--config", str(config)]) == 1
