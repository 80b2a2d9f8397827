"""Tests for collaborator loading."""

from __future__ import annotations

import pytest

from fetchbeat.core.errors import ConfigError
from fetchbeat.core.protocols import Article, Collaborators, load_collaborators

NOT_A_BUNDLE = object()


class TestLoadCollaborators:
    def test_loads_factory(self):
        bundle = load_collaborators("tests._support.fakes:build_collaborators")
        assert isinstance(bundle, Collaborators)
        assert bundle.notifier is not None

    @pytest.mark.parametrize("path", ["tests._support.fakes", ":build", "tests._support.fakes:"])
    def test_malformed_path(self, path):
        with pytest.raises(ConfigError):
            load_collaborators(path)

    def test_missing_module(self):
        with pytest.raises(ConfigError) as exc_info:
            load_collaborators("no_such_module_anywhere:build")
        assert isinstance(exc_info.value.__cause__, ImportError)

    def test_missing_attribute(self):
        with pytest.raises(ConfigError):
            load_collaborators("tests._support.fakes:nope")

    def test_wrong_type(self):
        with pytest.raises(ConfigError):
            load_collaborators("tests.core.test_protocols:NOT_A_BUNDLE")


class TestArticle:
    def test_to_dict(self):
        article = Article(title="Launch", url="https://news.example/1", extra={"score": 3})
        assert article.to_dict() == {
            "title": "Launch",
            "url": "https://news.example/1",
            "source": "",
            "description": "",
            "published_at": None,
        }
