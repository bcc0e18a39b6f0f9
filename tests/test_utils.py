from __future__ import annotations

from pathlib import Path

import pytest

from utils.config import AppConfig, ConfigError, load_config
from utils.paths import join_relative, normalise_path, resolve_in_root, root_name


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.yml")
    assert isinstance(config, AppConfig)
    assert config.db_path == Path("digestcat.db")
    assert config.digest_algorithms == ["md5", "sha1"]
    assert config.workers == 1


def test_load_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "digestcat.yml"
    path.write_text("db_path: other.db\ndigest_algorithms: [SHA256, blake2b]\nworkers: 3\n")
    config = load_config(path)
    assert config.db_path == Path("other.db")
    assert config.digest_algorithms == ["sha256", "blake2b"]
    assert config.workers == 3


@pytest.mark.parametrize(
    "content",
    ["workers: 0\n", "chunk_size: -1\n", "digest_algorithms: [md5, md5]\n", "- just\n- a list\n", "db_path: [unclosed\n"],
)
def test_load_config_rejects_invalid(tmp_path: Path, content: str) -> None:
    path = tmp_path / "digestcat.yml"
    path.write_text(content)
    with pytest.raises(ConfigError):
        load_config(path)


def test_normalise_path(tmp_path: Path) -> None:
    test_path = tmp_path / "folder" / "file.txt"
    test_path.parent.mkdir(parents=True)
    test_path.write_text("data")
    resolved = normalise_path(Path(str(test_path)))
    assert resolved.exists()


def test_root_name_and_relative_paths(tmp_path: Path) -> None:
    assert root_name("/data/photos/") == "photos"
    assert root_name("/") == "/"
    assert join_relative(["a", "b", "c.txt"]) == "a/b/c.txt"
    assert resolve_in_root(str(tmp_path), "") == tmp_path.resolve()
    assert resolve_in_root(str(tmp_path), "a/b.txt") == tmp_path.resolve() / "a" / "b.txt"
