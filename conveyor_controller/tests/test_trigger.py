"""Tests for trigger evaluation."""

import pytest

from conftest import make_definition, make_event
from conveyor_controller.src.models.pipeline import FilterRule
from conveyor_controller.src.services.trigger import (
    branch_names,
    compile_path_pattern,
    evaluate,
    needs_changed_paths,
    ref_monitored,
    rules_match,
    compile_branch_pattern,
)

def rules(*texts):
    return [FilterRule.parse(text) for text in texts]

class TestBranchNames:
    def test_heads_ref(self):
        assert branch_names("refs/heads/main") == ["refs/heads/main", "main"]

    def test_pull_ref(self):
        assert branch_names("refs/pull/42/head") == ["refs/pull/42/head", "pull/42"]

    def test_other_ref_is_kept_as_is(self):
        assert branch_names("refs/notes/commits") == ["refs/notes/commits"]

class TestBranchFilter:
    def test_main_matches(self):
        definition = make_definition(branches=("+:pull/*", "+:refs/heads/main"))
        assert evaluate(make_event(ref="refs/heads/main"), [definition]) == [definition]

    def test_feature_branch_does_not_match(self):
        definition = make_definition(branches=("+:pull/*", "+:refs/heads/main"))
        assert evaluate(make_event(ref="refs/heads/feature-x"), [definition]) == []

    def test_pull_request_ref_matches_logical_name(self):
        definition = make_definition(branches=("+:pull/*",))
        assert evaluate(make_event(ref="refs/pull/7/head"), [definition]) == [definition]

    def test_star_crosses_slashes(self):
        assert rules_match(rules("+:feature/*"), ["feature/a/b"], compile_branch_pattern)

    def test_last_matching_rule_wins(self):
        assert not rules_match(rules("+:*", "-:release/*"), ["release/1.0"], compile_branch_pattern)
        assert rules_match(rules("-:release/*", "+:release/1.0"), ["release/1.0"], compile_branch_pattern)

    def test_only_excludes_includes_everything_else(self):
        filters = rules("-:gh-pages")
        assert rules_match(filters, ["main"], compile_branch_pattern)
        assert not rules_match(filters, ["gh-pages"], compile_branch_pattern)

    def test_empty_filter_matches_every_ref(self):
        definition = make_definition(branches=())
        assert evaluate(make_event(ref="refs/heads/anything"), [definition]) == [definition]

    def test_bare_pattern_is_an_include(self):
        definition = make_definition(branches=("main",))
        assert evaluate(make_event(ref="refs/heads/main"), [definition]) == [definition]

    def test_pattern_is_not_a_substring_match(self):
        definition = make_definition(branches=("+:main",))
        assert evaluate(make_event(ref="refs/heads/main-old"), [definition]) == []

class TestPathFilter:
    def test_no_path_filter_ignores_changes(self):
        definition = make_definition(paths=())
        event = make_event(changed=["src/app.js"])
        assert evaluate(event, [definition]) == [definition]

    def test_path_filter_needs_a_matching_change(self):
        definition = make_definition(branches=("+:pull/*",), paths=("+:.mergify.yml",))
        assert evaluate(make_event(ref="refs/pull/3/head", changed=[".mergify.yml", "README.md"]), [definition]) == [definition]
        assert evaluate(make_event(ref="refs/pull/3/head", changed=["README.md"]), [definition]) == []

    def test_empty_change_set_does_not_match(self):
        definition = make_definition(paths=("+:src/**",))
        assert evaluate(make_event(changed=[]), [definition]) == []

    def test_unknown_changes_do_not_satisfy_path_rules(self):
        definition = make_definition(paths=("+:src/**",))
        plain = make_definition(name="Tests", paths=())
        assert evaluate(make_event(changed=None), [definition, plain]) == [plain]

    def test_pull_request_touching_only_readme_skips_mergify(self):
        mergify = make_definition(name="Mergify Validation", branches=("+:pull/*",), paths=("+:.mergify.yml",))
        event = make_event(ref="refs/pull/7/head", changed=["README.md"])
        assert evaluate(event, [mergify]) == []
        assert needs_changed_paths([mergify])
        assert not needs_changed_paths([make_definition(paths=())])

    def test_excluded_paths(self):
        definition = make_definition(paths=("+:**", "-:docs/**"))
        assert evaluate(make_event(changed=["docs/index.md"]), [definition]) == []
        assert evaluate(make_event(changed=["docs/index.md", "src/x.py"]), [definition]) == [definition]

    @pytest.mark.parametrize("pattern,path,expected", [
        ("src/**", "src/a/b/c.py", True),
        ("src/*.py", "src/a/b.py", False),
        ("src/*.py", "src/b.py", True),
        ("**/*.yml", "config.yml", True),
        ("**/*.yml", "deep/er/config.yml", True),
        ("file?.txt", "file1.txt", True),
        (".mergify.yml", "xmergify.yml", False),
    ])
    def test_path_globs(self, pattern, path, expected):
        assert bool(compile_path_pattern(pattern).fullmatch(path)) is expected

def test_evaluate_returns_only_matching_definitions():
    tests = make_definition(name="Tests", branches=("+:pull/*", "+:refs/heads/main"))
    mergify = make_definition(name="Mergify Validation", branches=("+:pull/*",), paths=("+:.mergify.yml",))
    nightly = make_definition(name="Nightly", branches=("+:refs/heads/nightly",))

    matched = evaluate(make_event(ref="refs/heads/main", changed=[".mergify.yml"]), [tests, mergify, nightly])

    assert [d.name for d in matched] == ["Tests"]

def test_monitored_refs_follow_the_repository_branch_spec():
    monitored = rules("+:refs/heads/*", "+:refs/pull/*/head")
    assert ref_monitored("refs/heads/main", monitored)
    assert ref_monitored("refs/pull/12/head", monitored)
    assert not ref_monitored("refs/pull/12/merge", monitored)
    assert not ref_monitored("refs/tags/v1.0", monitored)
    assert ref_monitored("refs/tags/v1.0", [])
