"""Tests for the command line entry point."""

from unittest import mock

import pytest

from facet_catalog import cli


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_import_arguments():
    args = cli.build_parser().parse_args(["import", "feed.xml", "--skip-index"])
    assert args.feed == "feed.xml"
    assert args.skip_index is True
    assert args.func is cli.cmd_import


def test_missing_feed_exits_with_error(tmp_path, session_factory, capsys):
    with mock.patch.object(cli, "_session", side_effect=lambda: session_factory()):
        code = cli.main(["import", str(tmp_path / "missing.xml"), "--skip-index"])
    assert code == 1
    assert "Feed file not found" in capsys.readouterr().err


def test_rebuild_index(catalog, session_factory, store, config, capsys):
    from facet_catalog.index_builder import FacetIndexBuilder

    with mock.patch.object(cli, "_session", side_effect=lambda: session_factory()), \
            mock.patch.object(cli, "_builder", return_value=FacetIndexBuilder(store, config)):
        code = cli.main(["rebuild-index"])
    assert code == 0
    assert "for 5 products" in capsys.readouterr().out
    assert store.members("facet:kolir:white") == {"4"}
