[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cloudquery"
version = "0.1.0"
description = "Drift detection between cloud inventories and Terraform state, with provider registry helpers"
requires-python = ">=3.10"
dependencies = [
    "tabulate",
]
keywords = [
    "cloud",
    "inventory",
    "drift",
    "terraform",
    "infrastructure-as-code",
    "provider-registry",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cloudquery"]

[tool.hatch.build.targets.sdist]
include = [
    "cloudquery",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
