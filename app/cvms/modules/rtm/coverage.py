"""
Requirements-traceability coverage statistics.

Pure functions over plain mappings so they can be fed either from ORM rows
(see service.coverage_inputs) or from test fixtures:

- requirement: {"id", "priority", ...}
- test case:   {"id", "status", "result", ...}
- link:        {"requirement_id", "test_case_id"}

Percentages use half-up rounding (0.5 -> 1) and are 0 when the denominator is 0.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from app.cvms.constants import PRIORITIES
from app.cvms.utils import percentage

EXECUTED_STATUSES = ("passed", "failed")


@dataclass(frozen=True)
class PriorityCoverage:
    total: int = 0
    covered: int = 0
    passed: int = 0


@dataclass(frozen=True)
class CoverageStats:
    total_requirements: int
    covered_requirements: int
    uncovered_requirements: list[Mapping[str, Any]]
    passed_requirements: int
    failed_requirements: int
    pending_requirements: int
    coverage_percentage: int
    execution_percentage: int
    pass_rate: int
    by_priority: dict[str, PriorityCoverage] = field(default_factory=dict)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["uncovered_requirements"] = [dict(r) for r in self.uncovered_requirements]
        return data


@dataclass(frozen=True)
class ExecutionStats:
    passed: int
    failed: int
    blocked: int
    pending: int


@dataclass(frozen=True)
class LinkStats:
    total_links: int
    covered_requirements: int
    tested_requirements: int
    passed_links: int
    failed_links: int


def _index_tests(test_cases: Iterable[Mapping[str, Any]]) -> dict[Any, Mapping[str, Any]]:
    return {tc["id"]: tc for tc in test_cases}


def _is_pending(tc: Mapping[str, Any]) -> bool:
    status = tc.get("status")
    return status == "pending" or (not tc.get("result") and status not in EXECUTED_STATUSES)


def coverage_stats(
    requirements: Iterable[Mapping[str, Any]],
    test_cases: Iterable[Mapping[str, Any]],
    links: Iterable[Mapping[str, Any]],
) -> CoverageStats:
    requirements = list(requirements)
    tests = _index_tests(test_cases)
    req_ids = {r["id"] for r in requirements}
    links = [lk for lk in links if lk["requirement_id"] in req_ids]

    covered: set = set()
    passed: set = set()
    failed: set = set()
    pending: set = set()
    for lk in links:
        rid = lk["requirement_id"]
        covered.add(rid)
        # a link to an unknown test case counts as pending
        tc = tests.get(lk["test_case_id"]) or {}
        if tc.get("result") == "passed":
            passed.add(rid)
        if tc.get("result") == "failed":
            failed.add(rid)
        if _is_pending(tc):
            pending.add(rid)

    by_priority: dict[str, PriorityCoverage] = {}
    for prio in reversed(PRIORITIES):  # high, medium, low
        in_prio = [r["id"] for r in requirements if r.get("priority") == prio]
        by_priority[prio] = PriorityCoverage(
            total=len(in_prio),
            covered=sum(1 for rid in in_prio if rid in covered),
            passed=sum(1 for rid in in_prio if rid in passed),
        )

    executed = len(passed) + len(failed)
    return CoverageStats(
        total_requirements=len(requirements),
        covered_requirements=len(covered),
        uncovered_requirements=[r for r in requirements if r["id"] not in covered],
        passed_requirements=len(passed),
        failed_requirements=len(failed),
        pending_requirements=len(pending),
        coverage_percentage=percentage(len(covered), len(requirements)),
        execution_percentage=percentage(executed, len(covered)),
        pass_rate=percentage(len(passed), executed),
        by_priority=by_priority,
    )


def execution_stats(test_cases: Iterable[Mapping[str, Any]]) -> ExecutionStats:
    test_cases = list(test_cases)
    return ExecutionStats(
        passed=sum(1 for t in test_cases if t.get("result") == "passed"),
        failed=sum(1 for t in test_cases if t.get("result") == "failed"),
        blocked=sum(1 for t in test_cases if t.get("result") == "blocked"),
        pending=sum(1 for t in test_cases if t.get("status") == "pending" or not t.get("result")),
    )


def link_stats(links: Iterable[Mapping[str, Any]], test_cases: Iterable[Mapping[str, Any]]) -> LinkStats:
    links = list(links)
    tests = _index_tests(test_cases)

    def _tc(lk: Mapping[str, Any]) -> Mapping[str, Any]:
        return tests.get(lk["test_case_id"]) or {}

    return LinkStats(
        total_links=len(links),
        covered_requirements=len({lk["requirement_id"] for lk in links}),
        tested_requirements=len(
            {lk["requirement_id"] for lk in links if _tc(lk).get("status") in EXECUTED_STATUSES}
        ),
        passed_links=sum(1 for lk in links if _tc(lk).get("result") == "passed"),
        failed_links=sum(1 for lk in links if _tc(lk).get("result") == "failed"),
    )
