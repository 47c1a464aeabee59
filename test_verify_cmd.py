"""
Unit tests for reconciliation: reference index, verdict classification, snapshot updates, rendering.
"""

import io

from rich.console import Console

from common import (
    EXTRA,
    MATCHED,
    MISMATCHED,
    MOVED,
    SKIPPED,
    FingerprintRecord,
    ReconciliationSummary,
    Verdict,
)
from console import Reporter
from verify_cmd import build_reference_index, reconcile


def _rec(digest: str, modified: int = 100, size: int = 10) -> FingerprintRecord:
    return FingerprintRecord(digest=digest, modified=modified, size=size)


def _kinds(result) -> dict:
    return {v.path: v.kind for v in result.verdicts}


def test_build_reference_index_groups_paths_by_digest():
    reference = {
        "a": _rec("h1"),
        "b": _rec("h2"),
        "c": _rec("h1"),
    }
    index = build_reference_index(reference)
    assert index == {"h1": ["a", "c"], "h2": ["b"]}


def test_identical_digests_are_all_matched():
    reference = {"a": _rec("h1"), "b": _rec("h2", modified=5)}
    current = {"a": _rec("h1", modified=999), "b": _rec("h2", modified=5)}

    result = reconcile(current, reference)

    assert _kinds(result) == {"a": MATCHED, "b": MATCHED}
    assert result.summary.matched == 2
    assert result.summary.mismatched == 0
    assert result.summary.has_mismatch is False


def test_changed_digest_with_same_mtime_is_mismatched():
    reference = {"a": _rec("old", modified=100)}
    current = {"a": _rec("new", modified=100)}

    result = reconcile(current, reference)

    (verdict,) = result.verdicts
    assert verdict.kind == MISMATCHED
    assert verdict.expected_digest == "old"
    assert verdict.found_digest == "new"
    assert result.summary.has_mismatch is True


def test_changed_digest_with_new_mtime_is_skipped_not_mismatched():
    reference = {"a": _rec("old", modified=100)}
    current = {"a": _rec("new", modified=200)}

    result = reconcile(current, reference)

    assert _kinds(result) == {"a": SKIPPED}
    assert result.summary.skipped == 1
    assert result.summary.has_mismatch is False
    # Without update the reference stays as it was.
    assert reference == {"a": _rec("old", modified=100)}


def test_skipped_file_overwrites_reference_on_update():
    reference = {"a": _rec("old", modified=100)}
    current = {"a": _rec("new", modified=200)}

    result = reconcile(current, reference, update=True)

    assert reference["a"] == _rec("new", modified=200)
    assert result.verdicts[0].updated is True


def test_new_path_with_known_digest_is_moved():
    reference = {"old/name.txt": _rec("h1")}
    current = {"new/name.txt": _rec("h1")}

    result = reconcile(current, reference)

    (verdict,) = result.verdicts
    assert verdict.kind == MOVED
    assert verdict.previous_paths == ("old/name.txt",)
    assert result.summary.moved == 1


def test_moved_lists_every_candidate():
    reference = {"x": _rec("h1"), "y": _rec("h1"), "z": _rec("h1")}
    current = {"w": _rec("h1")}

    result = reconcile(current, reference)

    assert set(result.verdicts[0].previous_paths) == {"x", "y", "z"}


def test_zero_byte_file_is_extra_even_when_empty_files_exist():
    reference = {"empty1": _rec("e", size=0), "empty2": _rec("e", size=0)}
    current = {"empty3": _rec("e", size=0)}

    result = reconcile(current, reference)

    assert _kinds(result) == {"empty3": EXTRA}
    assert result.summary.extra == 1
    assert result.summary.moved == 0


def test_unknown_digest_is_extra():
    result = reconcile({"n": _rec("fresh")}, {"a": _rec("h1")})
    assert _kinds(result) == {"n": EXTRA}
    assert result.verdicts[0].updated is False


def test_update_inserts_moved_and_extra_but_never_deletes():
    reference = {
        "kept": _rec("k"),
        "gone": _rec("g"),
        "before": _rec("m"),
    }
    current = {
        "kept": _rec("k"),
        "after": _rec("m"),
        "brand_new": _rec("n"),
    }

    result = reconcile(current, reference, update=True)

    assert _kinds(result) == {"kept": MATCHED, "after": MOVED, "brand_new": EXTRA}
    assert set(reference) == {"kept", "gone", "before", "after", "brand_new"}
    assert reference["after"] == _rec("m")
    assert reference["brand_new"] == _rec("n")


def test_matched_and_mismatched_do_not_touch_reference_on_update():
    reference = {"a": _rec("h1"), "b": _rec("old", modified=7)}
    current = {"a": _rec("h1", modified=50), "b": _rec("new", modified=7)}

    reconcile(current, reference, update=True)

    assert reference == {"a": _rec("h1"), "b": _rec("old", modified=7)}


def test_move_detection_uses_pre_update_index():
    # "b" is inserted during the run; "c" shares its content but must not be
    # attributed to it since the index predates the update.
    reference = {"a": _rec("h1")}
    current = {"b": _rec("h2"), "c": _rec("h2")}

    result = reconcile(current, reference, update=True)

    assert _kinds(result) == {"b": EXTRA, "c": EXTRA}


def test_files_only_in_reference_are_not_reported():
    reference = {"a": _rec("h1"), "deleted": _rec("h9")}
    result = reconcile({"a": _rec("h1")}, reference)
    assert [v.path for v in result.verdicts] == ["a"]
    assert result.summary.as_dict() == {
        "matched": 1,
        "mismatched": 0,
        "skipped": 0,
        "moved": 0,
        "extra": 0,
    }


def _render(verdicts, **kwargs) -> str:
    buf = io.StringIO()
    reporter = Reporter(console=Console(file=buf, width=200), **kwargs)
    reporter.verdicts(verdicts)
    reporter.summary(ReconciliationSummary(matched=1, mismatched=1))
    return buf.getvalue()


def test_reporter_renders_mismatch_and_moved():
    output = _render(
        [
            Verdict(path="a", kind=MISMATCHED, found_digest="new", expected_digest="old"),
            Verdict(path="m", kind=MOVED, found_digest="h", previous_paths=("p1", "p2")),
        ]
    )
    assert "MISMATCH a" in output
    assert "expected: old" in output
    assert "found:    new" in output
    assert "MOVED m" in output
    assert "previously: p1, p2" in output
    assert "Summary" in output


def test_reporter_hides_candidates_above_threshold():
    moved = Verdict(path="m", kind=MOVED, found_digest="h", previous_paths=("p1", "p2", "p3"))

    hidden = _render([moved])
    assert "p1" not in hidden
    assert "one of 3 files" in hidden

    shown = _render([moved], max_moved_candidates=3)
    assert "previously: p1, p2, p3" in shown


def test_reporter_quiet_prints_nothing():
    output = _render(
        [
            Verdict(path="a", kind=MISMATCHED, found_digest="new", expected_digest="old"),
            Verdict(path="e", kind=EXTRA, found_digest="x", updated=True),
        ],
        quiet=True,
    )
    assert output == ""


def test_reporter_hides_matched_unless_requested():
    matched = [Verdict(path="ok.txt", kind=MATCHED, found_digest="h", expected_digest="h")]
    assert "ok.txt" not in _render(matched)
    assert "MATCHED ok.txt" in _render(matched, show_matched=True)


def test_reporter_prints_bracketed_and_colon_paths_verbatim():
    output = _render(
        [
            Verdict(path="a[/b]/c", kind=MISMATCHED, found_digest="new", expected_digest="old"),
            Verdict(path="music/[remastered] song.mp3", kind=EXTRA, found_digest="x"),
            Verdict(path="notes/:thumbs_up:.txt", kind=SKIPPED, found_digest="y"),
            Verdict(
                path="[bold]moved[/bold]",
                kind=MOVED,
                found_digest="h",
                previous_paths=("old[/x]", "[red]was here"),
            ),
        ]
    )
    assert "MISMATCH a[/b]/c" in output
    assert "EXTRA music/[remastered] song.mp3" in output
    assert "SKIPPED notes/:thumbs_up:.txt" in output
    assert "MOVED [bold]moved[/bold]" in output
    assert "previously: old[/x], [red]was here" in output


def test_reporter_message_is_not_markup():
    buf = io.StringIO()
    Reporter(console=Console(file=buf, width=200)).message("Updating reference file: /data/[/x]/:smile:.json")
    assert buf.getvalue() == "Updating reference file: /data/[/x]/:smile:.json\n"
