[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gamedatahub"
version = "1.0.0"
description = "Game backend services for players, items and orders, a per-game request dispatcher and load-testing tools."
requires-python = ">=3.10"
dependencies = [
    "bcrypt",
]
keywords = ["game", "backend", "players", "items", "orders", "benchmark", "load-testing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["gamedatahub"]

[tool.hatch.build.targets.sdist]
include = ["gamedatahub", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
