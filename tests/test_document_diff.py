from app.cvms.modules.documents.diff import ADDED, REMOVED, UNCHANGED, diff_lines, diff_summary


def _pairs(lines):
    return [(ln.type, ln.line) for ln in lines]


def test_identical_texts_are_unchanged():
    assert _pairs(diff_lines("a\nb", "a\nb")) == [(UNCHANGED, "a"), (UNCHANGED, "b")]


def test_changed_line_is_removed_then_added():
    assert _pairs(diff_lines("a\nb\nc", "a\nB\nc")) == [
        (UNCHANGED, "a"),
        (REMOVED, "b"),
        (ADDED, "B"),
        (UNCHANGED, "c"),
    ]


def test_length_differences_compare_against_empty_lines():
    assert _pairs(diff_lines("a", "a\nb")) == [(UNCHANGED, "a"), (ADDED, "b")]
    assert _pairs(diff_lines("a\nb", "a")) == [(UNCHANGED, "a"), (REMOVED, "b")]
    # an empty line opposite a missing one counts as unchanged
    assert _pairs(diff_lines("a\n", "a")) == [(UNCHANGED, "a"), (UNCHANGED, "")]


def test_positional_comparison_after_an_insert():
    lines = diff_lines("x\ny", "new\nx\ny")
    assert diff_summary(lines) == {ADDED: 3, REMOVED: 2, UNCHANGED: 0}


def test_none_is_treated_as_empty():
    assert _pairs(diff_lines(None, "a")) == [(ADDED, "a")]
