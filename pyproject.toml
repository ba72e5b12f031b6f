[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cqlrouting"
version = "0.1.0"
description = "Token rings, replica placement, host selection and retry policies for CQL cluster clients"
requires-python = ">=3.10"
dependencies = []
keywords = ["cql", "cassandra", "token-ring", "load-balancing", "retry", "uuid", "lru"]
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
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cqlrouting"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
