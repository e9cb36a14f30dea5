from cloudquery.drift.model import Resource, ResourceList, Result, Results


def _list(*ids):
    return ResourceList(Resource(i) for i in ids)


def test_ids_with_exclusion():
    resources = _list("a", "b", "c")
    assert resources.ids() == ["a", "b", "c"]
    assert resources.ids(Resource("a"), Resource("c")) == ["b"]


def test_walk_with_skipper():
    seen = []
    _list("a", "b", "c").walk(lambda r: seen.append(r.id), lambda r: r.id == "b")
    assert seen == ["a", "c"]
    everything = []
    _list("x", "y").walk(lambda r: everything.append(r.id), None)
    assert everything == ["x", "y"]


def test_as_map():
    resources = ResourceList([Resource("a", [1, "x"]), Resource("b", [])])
    assert resources.as_map() == {"a": [1, "x"], "b": []}


def test_result_str_empty():
    result = Result(provider="aws", resource_type="ec2.instances")
    assert str(result).endswith("has no resources")


def test_result_str_single():
    result = Result(provider="aws", resource_type="ec2.instances", missing=_list("i-1"))
    assert str(result) == "aws:ec2.instances has 1 missing (i-1) resources"


def test_result_str_many():
    result = Result(provider="aws", resource_type="t", extra=_list("a", "b", "c"))
    text = str(result)
    assert "(a, b, ...)" in text
    assert "c" not in text.split("(")[1]


def test_no_results():
    results = Results(iac_name="Terraform")
    results.process()
    assert str(results) == "No results"
    assert results.exit_code() == 0
    assert results.total == 0


def test_drift_counts_and_exit_code():
    results = Results(
        iac_name="Terraform",
        data=[Result(provider="aws", resource_type="t1", extra=_list("b", "a")), None],
    )
    results.process()
    assert results.drifted == 2
    assert results.total == 2
    assert results.covered == 0
    assert results.exit_code() == 1
    lines = results.text.split("\n")
    assert lines[0] == "=== DRIFT RESULTS  ==="
    assert "=== SUMMARY ===" in lines
    listed = [line.strip() for line in lines if line.strip().startswith("- ")]
    assert listed[:2] == ["- a", "- b"]


def test_equal_listing_hidden_unless_list_managed():
    def build(list_managed):
        results = Results(
            iac_name="Terraform",
            list_managed=list_managed,
            data=[Result(provider="aws", resource_type="t1", equal=_list("xid"))],
        )
        results.process()
        return results

    hidden = build(False)
    shown = build(True)
    assert "xid" not in hidden.text
    assert "xid" in shown.text
    assert hidden.total == shown.total == 1
    assert hidden.exit_code() == 0


def test_coverage():
    results = Results(
        iac_name="Terraform",
        data=[
            Result(provider="aws", resource_type="t1", equal=_list("a")),
            Result(provider="aws", resource_type="t2", extra=_list("b")),
        ],
    )
    results.process()
    assert results.covered == 1
    assert results.total == 2
    assert results.coverage * results.total == results.covered
    assert "% covered by Terraform" in results.text


def test_debug_lists_unmatched_types():
    results = Results(
        iac_name="Terraform",
        debug=True,
        data=[
            Result(provider="aws", resource_type="t1", extra=_list("a")),
            Result(provider="aws", resource_type="t2", equal=_list("b"), missing=_list("c")),
        ],
    )
    results.process()
    last = results.text.split("\n")[-1]
    assert last.startswith("These types weren't matched: ")
    assert "aws:t1" in last
    assert "aws:t2" not in last