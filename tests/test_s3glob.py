import io
import json

import pytest

from cloudquery.drift.s3glob import glob_s3, load_states_from_s3
from cloudquery.tfstate import StateError

NOVEMBER_DAYS = ("15", "16", "17", "21")
DATED_STATES = [f"a/path/2021-11-{day}/object.tfstate" for day in NOVEMBER_DAYS]
TOP_STATE = "path/to/object.tfstate"
OBJECTS = [TOP_STATE, *DATED_STATES, "a/path/2021-11-17/object.gz", "a/path/drift.gz"]


class FakeS3:
    def __init__(self, objects, bodies=None, page_size=None):
        self.objects = list(objects)
        self.bodies = bodies or {}
        self.page_size = page_size
        self.list_calls = 0

    def list_objects_v2(self, **kwargs):
        self.list_calls += 1
        keys = [k for k in self.objects if k.startswith(kwargs.get("Prefix", ""))]
        if self.page_size is None:
            return {"Contents": [{"Key": k} for k in keys], "IsTruncated": False}
        start = int(kwargs.get("ContinuationToken", "0"))
        end = start + self.page_size
        page = {"Contents": [{"Key": k} for k in keys[start:end]], "IsTruncated": end < len(keys)}
        if end < len(keys):
            page["NextContinuationToken"] = str(end)
        return page

    def get_object(self, Bucket, Key):
        return {"Body": io.BytesIO(self.bodies[Key])}


@pytest.mark.parametrize("pattern", ["a/path/drift.gz", TOP_STATE + ".gz"])
def test_pattern_without_stars_returned_as_is(pattern):
    assert glob_s3(FakeS3(OBJECTS), "", pattern) == [pattern]


@pytest.mark.parametrize(
    "pattern, expected",
    [
        ("**/*.tfstate", [TOP_STATE, *DATED_STATES]),
        ("a/**/*.tfstate", DATED_STATES),
        ("a/**/2021-11-1*/*.tfstate", DATED_STATES[:3]),
        ("a/*/2021**.tfstate", DATED_STATES),
        ("a/**/2021-11-3*/*.tfstate", []),
    ],
    ids=["all-ext", "prefix-ext", "prefix-ext-1", "prefix-ext-singlefirst", "prefix-ext-none"],
)
def test_glob_matches(pattern, expected):
    assert sorted(glob_s3(FakeS3(OBJECTS), "", pattern)) == sorted(expected)


def test_trailing_star_includes_everything_under_prefix():
    matches = glob_s3(FakeS3(OBJECTS), "", "a/path/*")
    assert sorted(matches) == sorted(k for k in OBJECTS if k.startswith("a/path/"))


def test_glob_follows_pages():
    client = FakeS3(OBJECTS, page_size=2)
    matches = glob_s3(client, "", "**/*.tfstate")
    assert len(matches) == 5
    assert client.list_calls > 1


def _state(version=4):
    return json.dumps({"version": version, "resources": []}).encode()


def test_load_states_from_s3_loads_matches():
    bodies = {k: _state() for k in OBJECTS if k.endswith(".tfstate")}
    states = load_states_from_s3(FakeS3(OBJECTS, bodies), "terraform", "bucket", ["a/**/*.tfstate"])
    assert len(states) == 4
    assert all(s.state.version == "4" for s in states)


def test_load_states_from_s3_reports_parse_errors():
    client = FakeS3(["x.tfstate"], {"x.tfstate": b"not json"})
    with pytest.raises(StateError, match="parse s3://bucket/x.tfstate"):
        load_states_from_s3(client, "terraform", "bucket", ["*.tfstate"])


def test_load_states_from_s3_without_matches():
    with pytest.raises(ValueError, match="no matches for specified terraform state patterns"):
        load_states_from_s3(FakeS3(OBJECTS), "terraform", "bucket", ["zzz/*.tfstate"])