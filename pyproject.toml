[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "numaudf"
version = "0.1.0"
description = "Building blocks for user-defined sources, sinks, source transformers and side inputs in streaming pipelines"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "streaming",
    "pipeline",
    "udf",
    "source",
    "sink",
    "side-input",
    "transformer",
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
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["numaudf"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
