from app.cvms.modules.rtm.coverage import coverage_stats, execution_stats, link_stats


def _req(rid, priority="medium"):
    return {"id": rid, "code": f"URS-{rid}", "priority": priority}


def _tc(tid, status="pending", result=None):
    return {"id": tid, "status": status, "result": result}


def test_empty_inputs_give_zero_percentages():
    stats = coverage_stats([], [], [])
    assert stats.total_requirements == 0
    assert stats.coverage_percentage == 0
    assert stats.execution_percentage == 0
    assert stats.pass_rate == 0


def test_coverage_execution_and_pass_rate():
    reqs = [_req(1, "high"), _req(2, "high"), _req(3, "low")]
    tests = [_tc(10, "passed", "passed"), _tc(11, "failed", "failed"), _tc(12)]
    links = [
        {"requirement_id": 1, "test_case_id": 10},
        {"requirement_id": 2, "test_case_id": 11},
        {"requirement_id": 2, "test_case_id": 12},
    ]
    stats = coverage_stats(reqs, tests, links)

    assert stats.covered_requirements == 2
    assert [r["id"] for r in stats.uncovered_requirements] == [3]
    assert stats.coverage_percentage == 67  # 2/3 rounded half-up
    assert stats.passed_requirements == 1
    assert stats.failed_requirements == 1
    assert stats.pending_requirements == 1
    assert stats.execution_percentage == 100
    assert stats.pass_rate == 50
    assert stats.by_priority["high"].total == 2
    assert stats.by_priority["high"].covered == 2
    assert stats.by_priority["high"].passed == 1
    assert stats.by_priority["low"].covered == 0
    assert list(stats.by_priority) == ["high", "medium", "low"]


def test_links_to_unknown_requirements_are_ignored():
    stats = coverage_stats([_req(1)], [_tc(10, "passed", "passed")], [{"requirement_id": 99, "test_case_id": 10}])
    assert stats.covered_requirements == 0
    assert stats.coverage_percentage == 0


def test_link_to_missing_test_case_counts_as_pending():
    links = [{"requirement_id": 1, "test_case_id": 99}]
    stats = coverage_stats([_req(1), _req(2)], [_tc(10, "passed", "passed")], links)
    assert stats.covered_requirements == 1
    assert stats.pending_requirements == 1
    assert stats.passed_requirements == 0
    assert stats.coverage_percentage == 50


def test_half_rounds_up():
    reqs = [_req(i) for i in range(1, 9)]
    links = [{"requirement_id": i, "test_case_id": 1} for i in range(1, 6)]
    # 5/8 = 62.5%
    assert coverage_stats(reqs, [_tc(1)], links).coverage_percentage == 63


def test_execution_and_link_stats():
    tests = [_tc(1, "passed", "passed"), _tc(2, "blocked", "blocked"), _tc(3)]
    ex = execution_stats(tests)
    assert (ex.passed, ex.failed, ex.blocked, ex.pending) == (1, 0, 1, 1)

    links = [{"requirement_id": 1, "test_case_id": 1}, {"requirement_id": 2, "test_case_id": 3}]
    ls = link_stats(links, tests)
    assert ls.total_links == 2
    assert ls.covered_requirements == 2
    assert ls.tested_requirements == 1
    assert ls.passed_links == 1
    assert ls.failed_links == 0
