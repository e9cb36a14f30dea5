"""Listing and loading Terraform states stored in an S3 bucket."""

from __future__ import annotations

import re
from typing import Any, Iterator, Sequence

from cloudquery.tfstate import Data, StateError, load_state

_STAR = "*"
_DOUBLE_STAR = "**"


def _list_keys(client: Any, bucket: str, prefix: str) -> Iterator[str]:
    """Yield every object key under prefix, following continuation tokens."""
    kwargs: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
    while True:
        page = client.list_objects_v2(**kwargs)
        for obj in page.get("Contents") or ():
            yield obj["Key"]
        if not page.get("IsTruncated"):
            return
        kwargs["ContinuationToken"] = page["NextContinuationToken"]


def glob_s3(client: Any, bucket: str, pattern: str) -> list[str]:
    """Resolve a "*" / "**" glob against the keys of a bucket.

    "*" matches within one path segment, "**" across segments. A pattern
    without any star is returned as is, without checking that it exists.
    """
    if _STAR not in pattern:
        return [pattern]

    star = pattern.index(_STAR)
    double_star = pattern.find(_DOUBLE_STAR)
    if double_star == -1 or star < double_star:
        prefix, rest = pattern[:star], pattern[star + 1 :]
    else:
        prefix, rest = pattern[:double_star], pattern[double_star + 2 :]

    matcher: re.Pattern[str] | None = None
    if rest:
        expr = re.escape(pattern)
        expr = expr.replace(re.escape(_DOUBLE_STAR), ".*?")
        expr = expr.replace(re.escape(_STAR), "[^/]+?")
        matcher = re.compile(expr, re.S)

    found = {
        key
        for key in _list_keys(client, bucket, prefix)
        if matcher is None or matcher.fullmatch(key)
    }
    return sorted(found)


def load_states_from_s3(
    client: Any, iac_id: str, bucket: str, keys: Sequence[str]
) -> list[Data]:
    """Load every state object matched by the key patterns."""
    states: list[Data] = []
    for glob_key in keys:
        for key in glob_s3(client, bucket, glob_key):
            body = client.get_object(Bucket=bucket, Key=key)["Body"]
            try:
                data = load_state(body)
            except StateError as exc:
                raise StateError(f"parse s3://{bucket}/{key}: {exc}") from exc
            finally:
                close = getattr(body, "close", None)
                if close is not None:
                    close()
            states.append(data)

    if not states:
        raise ValueError(f"no matches for specified {iac_id} state patterns")
    return states