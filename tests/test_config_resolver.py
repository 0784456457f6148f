from pathlib import Path

import pytest

from psalm_supervisor.config_resolver import (
    ConfigResolver,
    combine_patterns,
    normalize_search_path,
    select_config,
)
from psalm_supervisor.errors import ConfigurationError, NoPatternsConfigured
from psalm_supervisor.workspace import LocalWorkspace, expand_braces, match_glob, path_is_within


class StaticSearch:
    def __init__(self, results: list[str]) -> None:
        self.results = results
        self.queries: list[str] = []

    def find_files(self, glob: str) -> list[str]:
        self.queries.append(glob)
        return list(self.results)


def test_prefers_match_inside_workspace_root() -> None:
    search = StaticSearch(["/other/psalm.xml", "/repo/psalm.xml"])
    result = ConfigResolver(search, platform="linux").resolve(["**/psalm.xml"], ["/repo"])

    assert result.selected == "/repo/psalm.xml"
    assert result.matches == ("/other/psalm.xml", "/repo/psalm.xml")
    assert result.patterns == ("**/psalm.xml",)
    assert search.queries == ["{**/psalm.xml}"]


def test_workspace_scenario_from_repo_root() -> None:
    search = StaticSearch(["/repo/psalm.xml", "/other/psalm.xml"])
    result = ConfigResolver(search, platform="linux").resolve(["**/psalm.xml"], ["/repo"])
    assert result.selected == "/repo/psalm.xml"


def test_falls_back_to_first_match() -> None:
    search = StaticSearch(["/a/psalm.xml", "/b/psalm.xml"])
    result = ConfigResolver(search, platform="linux").resolve(["psalm.xml"], ["/repo"])
    assert result.selected == "/a/psalm.xml"


def test_empty_matches_select_nothing() -> None:
    result = ConfigResolver(StaticSearch([]), platform="linux").resolve(["psalm.xml"], ["/repo"])
    assert result.matches == ()
    assert result.selected is None


def test_no_patterns_is_a_configuration_error() -> None:
    with pytest.raises(NoPatternsConfigured) as exc_info:
        ConfigResolver(StaticSearch(["/repo/psalm.xml"])).resolve([], ["/repo"])
    assert isinstance(exc_info.value, ConfigurationError)


def test_sibling_directory_with_common_prefix_is_not_inside_root() -> None:
    assert select_config(["/repo-other/psalm.xml", "/repo/psalm.xml"], "/repo") == "/repo/psalm.xml"
    assert select_config(["/repo-other/psalm.xml"], "/repo") == "/repo-other/psalm.xml"


@pytest.mark.parametrize(
    "matches, root",
    [
        (["/x/psalm.xml"], "/repo"),
        (["/x/psalm.xml", "/repo/sub/psalm.xml.dist", "/repo/psalm.xml"], "/repo"),
        (["/repo/psalm.xml"], None),
    ],
)
def test_selected_is_always_a_match(matches: list[str], root: str | None) -> None:
    selected = select_config(matches, root)
    assert selected in matches
    in_root = [m for m in matches if root and path_is_within(m, root)]
    if in_root:
        assert selected == in_root[0]


def test_windows_paths_are_normalized() -> None:
    assert normalize_search_path("/C:/repo/psalm.xml", platform="win32") == "C:\\repo\\psalm.xml"
    assert normalize_search_path("/repo/psalm.xml", platform="linux") == "/repo/psalm.xml"

    search = StaticSearch(["/D:/other/psalm.xml", "/C:/repo/psalm.xml"])
    result = ConfigResolver(search, platform="win32").resolve(["psalm.xml"], ["C:\\repo"])
    assert result.selected == "C:\\repo\\psalm.xml"


def test_combine_patterns() -> None:
    assert combine_patterns(["psalm.xml", "psalm.xml.dist"]) == "{psalm.xml,psalm.xml.dist}"


def test_expand_braces() -> None:
    assert expand_braces("{psalm.xml,psalm.xml.dist}") == ["psalm.xml", "psalm.xml.dist"]
    assert expand_braces("{psalm.xml,conf/{a,b}.xml}") == ["psalm.xml", "conf/a.xml", "conf/b.xml"]
    assert expand_braces("psalm.xml") == ["psalm.xml"]


def test_match_glob() -> None:
    assert match_glob("psalm.xml", "psalm.xml")
    assert not match_glob("sub/psalm.xml", "psalm.xml")
    assert match_glob("psalm.xml", "**/psalm.xml")
    assert match_glob("a/b/psalm.xml", "**/psalm.xml")
    assert match_glob("config/psalm.xml", "*/psalm.xml")
    assert not match_glob("a/b/psalm.xml", "*/psalm.xml")


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("<psalm/>", encoding="utf-8")
    return path


def test_local_workspace_search(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    other = tmp_path / "other"
    _touch(other / "psalm.xml")
    _touch(repo / "psalm.xml")
    _touch(repo / "tools" / "psalm.xml.dist")
    _touch(repo / ".git" / "psalm.xml")

    workspace = LocalWorkspace([str(other), str(repo)], active_document=str(repo / "src" / "Foo.php"))
    resolver = ConfigResolver(workspace)

    top_level = resolver.resolve(["psalm.xml", "psalm.xml.dist"], [str(repo), str(other)])
    assert top_level.matches == (str(other / "psalm.xml"), str(repo / "psalm.xml"))
    assert top_level.selected == str(repo / "psalm.xml")

    recursive = resolver.resolve(["**/psalm.xml.dist"], [str(repo)])
    assert recursive.matches == (str(repo / "tools" / "psalm.xml.dist"),)


def test_active_document_root(tmp_path: Path) -> None:
    a, b = tmp_path / "a", tmp_path / "b"
    a.mkdir()
    b.mkdir()
    workspace = LocalWorkspace([str(a), str(b)])
    assert workspace.active_document_root() == str(a)

    workspace.set_active_document(str(b / "src" / "Foo.php"))
    assert workspace.active_document_root() == str(b)

    workspace.set_active_document(str(tmp_path / "elsewhere.php"))
    assert workspace.active_document_root() == str(a)
