"""Provider name parsing."""

DEFAULT_ORGANIZATION = "cloudquery"


def parse_provider_name(name: str) -> tuple[str, str]:
    """Split a provider name into (organization, provider).

    A bare name belongs to the default organization; "org/name" names an
    organization explicitly, which is lower-cased.
    """
    names = name.split("/")
    if len(names) == 2:
        return names[0].lower(), names[1]
    if len(names) == 1:
        return DEFAULT_ORGANIZATION, name
    raise ValueError(f"invalid provider name {name}")


def provider_repo_name(name: str) -> str:
    """Return the repository name that hosts the given provider."""
    return f"cq-provider-{name}"