import io

import pytest

from cloudquery.tfstate import (
    Mode,
    StateError,
    UnsupportedStateVersion,
    load_state,
    validate_state_version,
)

STATE = """{
  "version": 4,
  "terraform_version": "1.0.10",
  "serial": 9,
  "lineage": "",
  "outputs": {},
  "resources": []
}"""


def test_load_state():
    data = load_state(io.StringIO(STATE))
    assert data.state.terraform_version == "1.0.10"
    assert data.state.serial == 9
    assert data.state.resources == []
    assert data.state.version == "4"


def test_load_state_from_bytes():
    data = load_state(io.BytesIO(STATE.encode()))
    assert data.state.serial == 9


def test_load_state_resources():
    doc = """{
      "version": 4,
      "resources": [
        {
          "mode": "managed",
          "type": "aws_instance",
          "name": "web",
          "provider": "provider.aws",
          "instances": [
            {"schema_version": 1, "attributes": {"id": "i-example"}, "dependencies": ["aws_vpc.main"]}
          ]
        }
      ]
    }"""
    data = load_state(io.StringIO(doc))
    resource = data.state.resources[0]
    assert resource.type == "aws_instance"
    assert resource.mode == Mode.MANAGED
    assert resource.mode.valid()
    instance = resource.instances[0]
    assert instance.attributes == {"id": "i-example"}
    assert instance.schema_version == 1
    assert instance.dependencies == ["aws_vpc.main"]


@pytest.mark.parametrize(
    "doc, expected_warning",
    [
        ('{"version": 4}', None),
        ("{}", "unspecified tfstate version"),
        ('{"version": "mama"}', "unknown tfstate version"),
    ],
)
def test_validate_state_version_allowed(doc, expected_warning):
    data = load_state(io.StringIO(doc))
    warning = validate_state_version(data)
    if expected_warning is None:
        assert warning is None
    else:
        assert expected_warning in warning


def test_validate_state_version_unsupported():
    data = load_state(io.StringIO('{"version": 3}'))
    with pytest.raises(UnsupportedStateVersion, match="unsupported tfstate version"):
        validate_state_version(data)


def test_invalid_json_raises():
    with pytest.raises(StateError, match="invalid tf state file"):
        load_state(io.StringIO("{not json"))


def test_wrong_field_type_raises():
    with pytest.raises(StateError):
        load_state(io.StringIO('{"serial": "nine"}'))


def test_mode_valid():
    assert Mode("managed").valid()
    assert Mode("data").valid()
    assert not Mode("bogus").valid()
    assert not Mode("").valid()