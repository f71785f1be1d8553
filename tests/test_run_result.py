from arborist_permits.run_result import RunResult


def test_run_result_fields():
    result = RunResult(
        run_id="abc",
        run_day="2024-03-02",
        target_day="2024-03-01",
        started_at="2024-03-02T06:00:00+00:00",
        finished_at="2024-03-02T06:01:00+00:00",
        raw_count=3,
        incoming_count=2,
        new=["BLD-1"],
    )
    payload = result.to_dict()

    assert payload["run_id"] == "abc"
    assert payload["new"] == ["BLD-1"]
    assert payload["updated"] == []
    assert payload["geocode_stats"] == {}
    assert payload["warnings"] == []
    assert payload["errors"] == []
    # lists are copies
    payload["new"].append("X")
    assert result.new == ["BLD-1"]
