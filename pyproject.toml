[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gitpkgs"
version = "0.1.0"
description = "Store the dependency history of a git repository in SQLite and query it."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "git",
    "dependencies",
    "sqlite",
    "package-url",
    "history",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Version Control :: Git",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["gitpkgs"]

[tool.hatch.build.targets.sdist]
include = [
    "gitpkgs",
    "tests",
    "README.md",
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
