import pytest

from app.cvms.modules.risks.scoring import calculate_rpn, classify, risk_level_for_rpn
from app.cvms.modules.risks.service import add_tag, change_tag, normalize_tags, system_tag


@pytest.mark.parametrize(
    "rpn, level",
    [
        (1, "low"),
        (49, "low"),
        (50, "medium"),
        (199, "medium"),
        (200, "high"),
        (499, "high"),
        (500, "critical"),
        (1000, "critical"),
    ],
)
def test_level_thresholds(rpn, level):
    assert risk_level_for_rpn(rpn) == level


def test_classify_multiplies_the_three_factors():
    score = classify(5, 5, 2)
    assert score.rpn == 50
    assert score.level == "medium"
    assert classify(10, 10, 10).rpn == 1000


@pytest.mark.parametrize("bad", [0, 11, -1, 2.5, "5", True, None])
def test_factors_outside_range_are_rejected(bad):
    with pytest.raises(ValueError):
        calculate_rpn(bad, 5, 5)


def test_tags_are_trimmed_and_deduplicated():
    assert normalize_tags(" a, b ,a,, c") == ["a", "b", "c"]
    assert normalize_tags(None) == []
    tags = add_tag(["x"], system_tag("SAP"))
    assert tags == ["x", "sistema:SAP"]
    assert add_tag(tags, "x") == tags
    assert change_tag("CR-1") == "mudança:CR-1"
