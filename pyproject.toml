[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lvlstore"
version = "0.1.0"
description = "Building blocks of a log-structured key-value store: internal keys, file names, version edits, write-ahead log, memtable and a user-key iterator."
requires-python = ">=3.10"
dependencies = [
    "sortedcontainers",
]
keywords = ["key-value", "storage", "lsm", "memtable", "write-ahead-log", "database"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["lvlstore"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
