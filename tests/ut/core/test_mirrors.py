"""镜像优先级与候选 URL 测试"""

from __future__ import annotations

import pytest

from modpull.core.exceptions import ValidationError
from modpull.core.mirrors import DEFAULT_MIRRORS, DIRECT_MIRROR_ID, MirrorPriority, extract_file_id


class TestExtractFileId:
    @pytest.mark.parametrize("url", [
        "https://gamebanana.com/mmdl/1380853",
        "http://gamebanana.com/mmdl/1380853",
        "https://gamebanana.com/dl/1380853",
        "http://gamebanana.com/dl/1380853",
    ])
    def test_known_prefixes(self, url: str) -> None:
        assert extract_file_id(url) == 1380853

    @pytest.mark.parametrize("url", [
        "https://gamebanana.com/mods/53697",
        "https://example.com/mmdl/1",
        "https://gamebanana.com/mmdl/abc",
        "https://gamebanana.com/mmdl/",
        "https://gamebanana.com/mmdl/4294967296",
    ])
    def test_unrecognised(self, url: str) -> None:
        assert extract_file_id(url) is None


class TestMirrorPriority:
    def test_default_order(self) -> None:
        assert MirrorPriority.parse().identifiers == ["gb", "jade", "wegfan", "otobot"]

    def test_reorder_and_restrict(self) -> None:
        priority = MirrorPriority.parse("wegfan, GB")
        assert priority.identifiers == ["wegfan", "gb"]
        assert [m.priority_rank for m in priority.mirrors] == [0, 1]

    def test_duplicates_collapse(self) -> None:
        assert MirrorPriority.parse("jade,gb,jade").identifiers == ["jade", "gb"]

    def test_sequence_input(self) -> None:
        assert MirrorPriority.parse(["otobot", "gb"]).identifiers == ["otobot", "gb"]

    def test_unknown_mirror_rejected(self) -> None:
        with pytest.raises(ValidationError, match="未知的镜像") as exc_info:
            MirrorPriority.parse("gb,nowhere")
        assert exc_info.value.details == ["nowhere"]

    @pytest.mark.parametrize("value", ["", " , ", []])
    def test_empty_rejected(self, value) -> None:
        with pytest.raises(ValidationError):
            MirrorPriority.parse(value)

    def test_candidate_urls(self) -> None:
        priority = MirrorPriority.parse("jade,gb")
        assert priority.candidate_urls("https://gamebanana.com/dl/42") == [
            ("jade", "https://celestemodupdater.0x0a.de/banana-mirror/42.zip"),
            ("gb", "https://gamebanana.com/mmdl/42"),
        ]

    def test_all_default_templates_use_file_id(self) -> None:
        urls = [url for _, url in MirrorPriority().candidate_urls("https://gamebanana.com/mmdl/7")]
        assert len(urls) == len(DEFAULT_MIRRORS)
        assert all("7" in url for url in urls)

    def test_direct_candidate_without_file_id(self) -> None:
        url = "https://example.com/files/mod.zip"
        assert MirrorPriority.parse("gb,jade").candidate_urls(url) == [(DIRECT_MIRROR_ID, url)]
