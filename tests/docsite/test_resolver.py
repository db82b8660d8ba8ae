"""Tests for docsite.registry and docsite.resolver."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from docsite.errors import FetchError, ResolutionError
from docsite.manifest import manifest_from_mapping
from docsite.registry import PackageIndex, load_index
from docsite.resolver import Resolution, resolve

DIGEST = "a" * 64


def _index(**packages: dict[str, str]) -> PackageIndex:
    data = {
        "packages": {
            name: {version: {"url": f"{name}-{version}.tar.gz", "sha256": DIGEST} for version in versions}
            for name, versions in packages.items()
        }
    }
    return PackageIndex.from_mapping(data, location="https://index.example/index.json")


class TestResolve:
    """Tests for resolve."""

    def test_picks_newest_matching_release(self) -> None:
        index = _index(libbar={"1.0.0": "", "1.1.0": "", "2.0.0": ""})
        manifest = manifest_from_mapping({"libbar": ">=1,<2"})
        resolution = resolve(manifest, index)
        assert resolution.identities == ("libbar@1.1.0",)
        assert resolution.manifest_digest == manifest.digest

    def test_exact_pin(self) -> None:
        index = _index(libbar={"1.0": "", "1.1": ""})
        resolution = resolve(manifest_from_mapping({"libbar": "1.0"}), index)
        assert resolution.identities == ("libbar@1.0",)

    def test_prereleases_are_skipped_unless_requested(self) -> None:
        index = _index(libbar={"1.0.0": "", "2.0.0rc1": ""})
        assert resolve(manifest_from_mapping({"libbar": "*"}), index).identities == ("libbar@1.0.0",)
        pinned = resolve(manifest_from_mapping({"libbar": ">=2.0.0rc1"}), index)
        assert pinned.identities == ("libbar@2.0.0rc1",)

    def test_result_is_sorted_by_name(self) -> None:
        index = _index(zeta={"1.0": ""}, alpha={"1.0": ""})
        resolution = resolve(manifest_from_mapping({"zeta": "*", "alpha": "*"}), index)
        assert resolution.identities == ("alpha@1.0", "zeta@1.0")

    def test_unsatisfiable_constraint(self) -> None:
        index = _index(libbar={"1.0.0": ""})
        with pytest.raises(ResolutionError) as exc_info:
            resolve(manifest_from_mapping({"libbar": ">=3"}), index)
        assert exc_info.value.context["available"] == ["1.0.0"]
        assert exc_info.value.exit_code == 10

    def test_unknown_package(self) -> None:
        with pytest.raises(ResolutionError, match="not present in the index"):
            resolve(manifest_from_mapping({"ghost": "*"}), _index(libbar={"1.0": ""}))

    def test_is_deterministic(self) -> None:
        index = _index(libbar={"1.0.0": "", "1.1.0": ""}, libbaz={"0.3.0": ""})
        manifest = manifest_from_mapping({"libbar": "*", "libbaz": "*"})
        assert resolve(manifest, index) == resolve(manifest, index)


class TestResolutionLock:
    """Tests for the lock document format."""

    def test_lock_document_restores_resolution(self) -> None:
        index = _index(libbar={"1.0.0": ""})
        resolution = resolve(manifest_from_mapping({"libbar": "*"}), index)
        restored = Resolution.from_json(resolution.to_json())
        assert restored == resolution

    def test_invalid_lock_document(self) -> None:
        with pytest.raises(ValueError, match="dependencies"):
            Resolution.from_json(json.dumps({"manifest_digest": "x"}))


class TestPackageIndex:
    """Tests for index parsing and loading."""

    def test_relative_urls_resolve_against_remote_index(self) -> None:
        index = _index(libbar={"1.0": ""})
        assert index.candidates("libbar")[0].url == "https://index.example/libbar-1.0.tar.gz"

    def test_relative_urls_resolve_against_local_index(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text(
            json.dumps({"packages": {"libbar": {"1.0": {"url": "a/libbar.tgz", "sha256": DIGEST}}}})
        )
        index = load_index(str(path), timeout=5.0)
        assert index.candidates("libbar")[0].url == (tmp_path.resolve() / "a" / "libbar.tgz").as_posix()

    def test_candidates_are_newest_first(self) -> None:
        index = _index(libbar={"1.0": "", "10.0": "", "2.0": ""})
        assert [str(entry.version) for entry in index.candidates("libbar")] == ["10.0", "2.0", "1.0"]

    @pytest.mark.parametrize(
        "document",
        [
            {},
            {"packages": []},
            {"packages": {"libbar": {"not-a-version": {"url": "x", "sha256": DIGEST}}}},
            {"packages": {"libbar": {"1.0": {"url": "x", "sha256": "short"}}}},
            {"packages": {"libbar": {"1.0": {"sha256": DIGEST}}}},
        ],
    )
    def test_malformed_index(self, document: dict[str, object]) -> None:
        with pytest.raises(ResolutionError):
            PackageIndex.from_mapping(document, location="index.json")

    def test_missing_local_index_is_a_fetch_error(self, tmp_path: Path) -> None:
        with pytest.raises(FetchError):
            load_index(str(tmp_path / "absent.json"), timeout=5.0)

    def test_invalid_json_is_a_resolution_error(self, tmp_path: Path) -> None:
        path = tmp_path / "index.json"
        path.write_text("{not json")
        with pytest.raises(ResolutionError, match="not valid JSON"):
            load_index(str(path), timeout=5.0)

    def test_remote_index(self) -> None:
        document = {"packages": {"libbar": {"1.0": {"url": "libbar.tgz", "sha256": DIGEST}}}}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/simple/index.json"
            return httpx.Response(200, json=document)

        with httpx.Client(transport=httpx.MockTransport(handler)) as client:
            index = load_index("https://index.example/simple/index.json", timeout=5.0, client=client)
        assert index.candidates("libbar")[0].url == "https://index.example/simple/libbar.tgz"

    def test_remote_index_http_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with httpx.Client(transport=transport) as client, pytest.raises(FetchError) as exc_info:
            load_index("https://index.example/index.json", timeout=5.0, client=client)
        assert exc_info.value.exit_code == 11
