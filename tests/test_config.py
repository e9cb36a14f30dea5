import pytest

from cloudquery.drift.config import (
    BaseConfig,
    ConfigError,
    IACConfig,
    IACProvider,
    Placeholder,
    ProviderConfig,
    ProviderMatcher,
    ResourceACL,
    ResourceConfig,
    ResourceSelector,
    ResourceSelectors,
    TerraformSourceConfig,
    merge_dedup_slices,
    parse_resource_selectors,
    parse_tags,
    remove_ignored,
    replace_placeholder_in_slice,
)
from cloudquery.drift.model import Resource
from cloudquery.drift.table import (
    AWS_ACCOUNT_RESOLVER,
    PARENT_ID_RESOLVER,
    Column,
    ProviderSchema,
    ResolverMeta,
    Table,
    ValueType,
)
from cloudquery.versioning import parse_constraints

TF = IACProvider.TERRAFORM


def _sel(selector_id=None, type_="", tags=None):
    return ResourceSelector(type=type_, id=selector_id, tags=tags)


# --- apply_wild_provider ---------------------------------------------------


def _wild_provider():
    return ProviderConfig(
        ignore_resources=ResourceSelectors([_sel("foo")]),
        check_resources=ResourceSelectors([_sel("bar")]),
        account_ids=["baz"],
    )


@pytest.mark.parametrize(
    "dst,expected",
    [
        (
            ProviderConfig(),
            ProviderConfig(
                ignore_resources=ResourceSelectors([_sel("foo")]),
                check_resources=ResourceSelectors([_sel("bar")]),
                account_ids=["baz"],
            ),
        ),
        (
            ProviderConfig(
                check_resources=ResourceSelectors([_sel("qux")]), account_ids=["quux"]
            ),
            ProviderConfig(
                ignore_resources=ResourceSelectors([_sel("foo")]),
                check_resources=ResourceSelectors([_sel("qux")]),
                account_ids=["quux"],
            ),
        ),
        (
            ProviderConfig(
                ignore_resources=ResourceSelectors([_sel("qux")]),
                check_resources=ResourceSelectors([_sel("quux")]),
                account_ids=["quuz"],
            ),
            ProviderConfig(
                ignore_resources=ResourceSelectors([_sel("qux")]),
                check_resources=ResourceSelectors([_sel("quux")]),
                account_ids=["quuz"],
            ),
        ),
    ],
    ids=["empty", "partially-empty", "not-empty"],
)
def test_apply_wild_provider(dst, expected):
    dst.apply_wild_provider(_wild_provider())
    assert dst == expected


# --- apply_wild_resource ---------------------------------------------------


def _iac():
    return {
        TF: IACConfig(
            type="test", path="path", identifiers=["iac_a"], attribute_map=["at_b=iac_b"]
        )
    }


def _wild_resource():
    return ResourceConfig(
        identifiers=["id_a", "id_b", "id_c"],
        ignore_identifiers=["ig_a", "ig_b", "ig_c"],
        attributes=["at_a", "at_b", "at_c"],
        ignore_attributes=["igat_a", "igat_b", "igat_c"],
        deep=True,
        filters=["f_a", "f_b"],
        sets=["at_a"],
        iac=_iac(),
    )


@pytest.mark.parametrize(
    "dst,expected",
    [
        (ResourceConfig(), _wild_resource()),
        (
            ResourceConfig(identifiers=["did_a"], sets=["dat_a"]),
            ResourceConfig(
                identifiers=["did_a"],
                ignore_identifiers=["ig_a", "ig_b", "ig_c"],
                attributes=["at_a", "at_b", "at_c"],
                ignore_attributes=["igat_a", "igat_b", "igat_c"],
                deep=True,
                filters=["f_a", "f_b"],
                sets=["at_a", "dat_a"],
                iac=_iac(),
            ),
        ),
        (
            ResourceConfig(
                identifiers=["did_a"],
                ignore_identifiers=["dig_a", "dig_b", "dig_c"],
                attributes=["dat_a", "dat_b", "dat_c"],
                ignore_attributes=["digat_a"],
                deep=False,
                filters=["df_a", "f_a"],
                sets=["dat_a"],
                iac=_iac(),
            ),
            ResourceConfig(
                identifiers=["did_a"],
                ignore_identifiers=["dig_a", "dig_b", "dig_c", "ig_a", "ig_b", "ig_c"],
                attributes=["dat_a", "dat_b", "dat_c"],
                ignore_attributes=["digat_a", "igat_a", "igat_b", "igat_c"],
                deep=False,
                filters=["df_a", "f_a", "f_b"],
                sets=["at_a", "dat_a"],
                iac=_iac(),
            ),
        ),
    ],
    ids=["empty", "partially-empty", "not-empty"],
)
def test_apply_wild_resource(dst, expected):
    dst.apply_wild_resource(_wild_resource())
    assert dst == expected


def test_apply_wild_resource_merges_attribute_mapping():
    dst = ResourceConfig(iac={TF: IACConfig(attribute_mapping={"a": "own"})})
    wild = ResourceConfig(iac={TF: IACConfig(attribute_mapping={"a": "wild", "b": "wild_b"})})
    dst.apply_wild_resource(wild)
    assert dst.iac[TF].attribute_mapping == {"a": "own", "b": "wild_b"}


def test_apply_wild_resource_none_is_noop():
    dst = ResourceConfig(identifiers=["x"])
    dst.apply_wild_resource(None)
    assert dst == ResourceConfig(identifiers=["x"])


# --- interpolated_resource_map ---------------------------------------------


def test_interpolated_resource_map():
    prov = ProviderConfig(
        ignore_resources=ResourceSelectors([_sel("foo")]),
        check_resources=ResourceSelectors([_sel("bar")]),
        account_ids=["baz"],
        resources={
            "test": ResourceConfig(
                identifiers=["id1", "id2"],
                ignore_identifiers=["id2"],
                attributes=["a1", "a2"],
                ignore_attributes=["a1"],
                iac={TF: IACConfig(type="tf_test")},
            ),
            "test2": ResourceConfig(
                identifiers=["id3"],
                iac={IACProvider.CLOUDFORMATION: IACConfig(type="cf_test")},
            ),
        },
    )
    ret = prov.interpolated_resource_map(TF)
    assert ret == {
        "test": ResourceConfig(
            identifiers=["id1"],
            ignore_identifiers=["id2"],
            attributes=["a2"],
            ignore_attributes=["a1"],
            iac={TF: IACConfig(type="tf_test")},
        )
    }


# --- apply_provider ---------------------------------------------------------


def _base_provider():
    prov = ProviderConfig(
        name="aws",
        version=">=1.5.0",
        resources={
            "test1": ResourceConfig(iac={TF: IACConfig(type="tf_test1")}),
            "test2": ResourceConfig(iac={TF: IACConfig(type="tf_test2")}),
        },
    )
    prov.version_constraints = parse_constraints(prov.version)
    return prov


def _schema(version="1.6.0", with_tables=True):
    tables = (
        {"test1": Table(name="aws_test1"), "test2": Table(name="aws_test2")}
        if with_tables
        else {}
    )
    return ProviderSchema(name="aws", version=version, resource_tables=tables)


def _with(**changes):
    prov = _base_provider()
    for key, value in changes.items():
        setattr(prov, key, value)
    return prov


@pytest.mark.parametrize(
    "cfg,schema,expected_result,expected_resources",
    [
        (_with(name="not_aws"), _schema(with_tables=False), False, None),
        (_base_provider(), _schema("1.0.0", with_tables=False), False, None),
        (_base_provider(), _schema(), True, None),
        (
            _with(ignore_resources=ResourceSelectors([_sel("*", "test2")])),
            _schema(),
            True,
            ["test1"],
        ),
        (
            _with(check_resources=ResourceSelectors([_sel("*", "test2")])),
            _schema(),
            True,
            ["test2"],
        ),
        (
            _with(check_resources=ResourceSelectors([_sel(None, "*", {"key": "value"})])),
            _schema(),
            True,
            ["test1", "test2"],
        ),
    ],
    ids=[
        "name-mismatch",
        "old-version",
        "new-version",
        "ignore-some",
        "allow-some",
        "tag-filter-all",
    ],
)
def test_apply_provider(cfg, schema, expected_result, expected_resources):
    matcher = ProviderMatcher()
    assert matcher.apply_provider(cfg, schema) is expected_result
    if expected_resources is not None:
        assert cfg.resource_keys() == sorted(expected_resources)


def test_apply_provider_snapshot_prerelease_is_accepted():
    cfg = _base_provider()
    assert ProviderMatcher().apply_provider(cfg, _schema("1.6.0-SNAPSHOT-abc")) is True


def test_apply_provider_unknown_resource_raises():
    cfg = _base_provider()
    cfg.resources["nope"] = ResourceConfig()
    with pytest.raises(ConfigError, match="nope"):
        ProviderMatcher().apply_provider(cfg, _schema())


def test_apply_provider_bad_version_raises():
    with pytest.raises(ConfigError, match="could not parse provider version"):
        ProviderMatcher().apply_provider(_base_provider(), _schema("not-a-version"))


def test_find_provider():
    matcher = ProviderMatcher()
    good = _schema()
    assert matcher.find_provider(_base_provider(), [_schema("1.0.0"), good]) is good
    with pytest.raises(ConfigError, match="no suitable provider"):
        matcher.find_provider(_base_provider(), [_schema("1.0.0")])


def test_sub_resource_lookup():
    prov = ProviderConfig(
        name="aws",
        version=">=1.5.0",
        resources={
            "test1": ResourceConfig(iac={TF: IACConfig(type="tf_test1")}),
            "test2": ResourceConfig(iac={TF: IACConfig(type="tf_test2")}),
            "aws_test1_2": ResourceConfig(
                identifiers=[Placeholder.RESOURCE_OPTS_PRIMARY_KEYS.token],
                attributes=[Placeholder.RESOURCE_COLUMN_NAMES.token],
                ignore_attributes=["data3_ignored"],
                iac={TF: IACConfig(type="tf_test1_2")},
            ),
            "aws_test1_3": ResourceConfig(iac={TF: IACConfig(type="tf_test1_3")}),
        },
    )
    prov.version_constraints = parse_constraints(prov.version)

    sch = ProviderSchema(
        name="aws",
        version="1.6.0",
        resource_tables={
            "test1": Table(
                name="aws_test1",
                relations=[
                    Table(
                        name="aws_test1_2",
                        primary_keys=["parent_cq_id", "data1"],
                        columns=[
                            Column("parent_cq_id", ValueType.STRING, ResolverMeta(PARENT_ID_RESOLVER, True)),
                            Column("account_id", ValueType.STRING, ResolverMeta(AWS_ACCOUNT_RESOLVER, False)),
                            Column("data1", ValueType.STRING),
                            Column("data2", ValueType.STRING),
                            Column("data3_ignored", ValueType.STRING),
                        ],
                        relations=[
                            Table(name="aws_test1_3", relations=[Table(name="aws_test1_4")])
                        ],
                    )
                ],
            ),
            "test2": Table(name="aws_test2"),
        },
    )

    matcher = ProviderMatcher()
    assert matcher.apply_provider(prov, sch) is True
    assert prov.resource_keys() == ["aws_test1_2", "aws_test1_3", "test1", "test2"]

    ret = prov.interpolated_resource_map(TF)
    assert ret["aws_test1_2"].identifiers == ["data1"]
    assert ret["aws_test1_2"].attributes == ["data1", "data2"]

    tbl = matcher.lookup_resource("aws_test1_2", sch)
    assert tbl.non_cq_columns() == ["data1", "data2", "data3_ignored"]
    assert tbl.non_cq_primary_keys() == ["data1"]
    assert tbl.account_id_column() == "account_id"


# --- selectors and helpers --------------------------------------------------


def test_parse_resource_selectors_id_and_tags():
    sels = parse_resource_selectors(["ec2.instances:i-1", "*:[env=prod,team]"])
    assert sels[0] == ResourceSelector(type="ec2.instances", id="i-1")
    assert sels[1].type == "*"
    assert sels[1].id is None
    assert sels[1].tags == {"env": "prod", "team": ""} or sels[1].tags is None


@pytest.mark.parametrize(
    "entry,message",
    [
        ("noseparator", "type:id or type:"),
        (":id", "type can't be empty"),
        ("t:[a=b,]", "invalid empty tag"),
        ("t:[ab]", "invalid tag"),
    ],
)
def test_parse_resource_selectors_errors(entry, message):
    with pytest.raises(ConfigError, match=message):
        parse_resource_selectors([entry])


def test_parse_resource_selectors_short_brackets_is_id():
    assert parse_resource_selectors(["t:[]"])[0].id == "[]"


def test_parse_tags():
    assert parse_tags(["a=b", "c", "", "d=e=f"]) == {"a": "b", "c": "", "d": "e=f"}


def test_selectors_queries():
    sels = ResourceSelectors(
        [_sel("x", "t1"), _sel("*", "t2"), _sel(None, "t3", {"k": "v"})]
    )
    assert sels.by_type("t1") == [_sel("x", "t1")]
    assert sels.contains_instance("x")
    assert not sels.contains_instance("y")
    assert sels.all_instances()
    assert sels.has_tags()
    assert sels.contains_tags({"k": "v", "other": "1"})
    assert not sels.contains_tags({"k": "w"})
    assert not sels.contains_tags(None)


def test_acl_should_skip():
    acl = ResourceACL(
        allow_enabled=True,
        allow=ResourceSelectors([_sel("keep")]),
        ignore=ResourceSelectors([_sel(None, "", {"skip": "yes"})]),
    )
    assert not acl.should_skip(Resource(id="keep"))
    assert acl.should_skip(Resource(id="other"))
    assert acl.should_skip(Resource(id="keep", tags={"skip": "yes"}))
    assert acl.has_tag_filters()
    assert not ResourceACL().has_tag_filters()


def test_list_helpers():
    assert merge_dedup_slices(["b", "a"], ["a", "c"]) == ["a", "b", "c"]
    assert remove_ignored(["a", "b", "c"], ["b"]) == ["a", "c"]
    assert replace_placeholder_in_slice(
        Placeholder.RESOURCE_KEY, ["x", "y"], ["${resourceKey}", "z"]
    ) == ["x", "y", "z"]


def test_find_provider_in_base_config():
    aws = ProviderConfig(name="aws")
    base = BaseConfig(providers=[ProviderConfig(name="gcp"), aws])
    assert base.find_provider("aws") is aws
    assert base.find_provider("azure") is None


@pytest.mark.parametrize(
    "cfg,message",
    [
        (TerraformSourceConfig(backend="local"), "files not specified"),
        (TerraformSourceConfig(backend="s3"), "bucket not specified"),
        (TerraformSourceConfig(backend="s3", bucket="b"), "keys not specified"),
        (TerraformSourceConfig(backend="gcs"), "invalid backend type"),
    ],
)
def test_terraform_source_validate_errors(cfg, message):
    with pytest.raises(ConfigError, match=message):
        cfg.validate()


def test_terraform_source_validate_ok():
    cfg = TerraformSourceConfig(backend="s3", bucket="b", keys=["k"])
    assert cfg.validate() is None
    assert TerraformSourceConfig(backend="local", files=["f"]).validate() is None


@pytest.mark.parametrize(
    "value,display",
    [("terraform", "Terraform"), ("cloudformation", "Cloudformation")],
)
def test_iac_provider_display_name(value, display):
    assert str(IACProvider(value)) == display